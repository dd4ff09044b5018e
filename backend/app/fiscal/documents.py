"""
Receipt and invoice issuance for paid POS transactions.

`ensure_paid_transaction_documents` is idempotent and safe to call again after
any failure:

- a receipt/invoice number is allocated and stored on the transaction in the
  same DB transaction (row locked), so a retry reuses it and no number is lost;
- rendering and the S3 upload run outside any DB transaction;
- each document's PDF URL is written only if still unset, together with its
  audit entry, so a concurrent caller loses only the documents it raced on.
"""
from __future__ import annotations

import hashlib
import json
import re
import sys
from datetime import datetime, timezone
from typing import Optional

from ..config import settings
from ..db import get_conn
from ..storage.s3 import get_public_url, upload_bytes
from .audit_log import append_audit_log
from .cache import RecordCache
from .counters import next_number
from .lines import build_invoice_lines, build_receipt_lines
from .pdf import build_simple_pdf
from .policy import InvoicePolicy, has_required_invoice_buyer_data, invoice_buyer_data, should_issue_invoice
from .seller_settings import get_or_create_seller_settings
from .store import fetch_location, fetch_terminal, fetch_transaction, update_transaction_documents
from .vat import compute_vat_breakdown

PDF_CONTENT_TYPE = "application/pdf"
MISSING_BUYER = "missing_buyer"

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9._-]")

_LOG_EVENTS = {
    "ISSUE_RECEIPT": "pos.documents.receipt_issued",
    "ISSUE_INVOICE": "pos.documents.invoice_issued",
    "INVOICE_SKIPPED_MISSING_BUYER": "pos.documents.invoice_skipped",
}
_LOG_FIELDS = {"receipt_no", "invoice_no", "reason"}


def _json_log(level: str, event: str, **fields):
    rec = {"ts": datetime.now(timezone.utc).isoformat(), "level": level, "event": event, **fields}
    print(json.dumps(rec, default=str), file=sys.stderr)


def safe_key_segment(value: str) -> str:
    return _UNSAFE_KEY_CHARS.sub("_", value or "")


def document_key(kind: str, year: int, number: str) -> str:
    folder = {"receipt": "receipts", "invoice": "invoices"}[kind]
    return f"pos/{folder}/{year}/{safe_key_segment(number)}.pdf"


def _as_datetime(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def document_date(tx: dict) -> datetime:
    """Payment approval time, falling back to the row timestamps."""
    payment = tx.get("payment") or {}
    return (
        _as_datetime(payment.get("approved_at"))
        or _as_datetime(tx.get("updated_at"))
        or _as_datetime(tx.get("created_at"))
        or datetime.now(timezone.utc)
    )


def allocate_document_number(tx_id: str, kind: str, when: datetime) -> tuple[Optional[str], bool]:
    """
    Return `(number, already_issued)` for `kind` ("receipt" | "invoice").

    Reuses a number stored by an earlier, interrupted run. `already_issued` is
    True when another caller finished the PDF in the meantime.
    """
    no_col, url_col = f"{kind}_no", f"{kind}_pdf_url"
    with get_conn() as conn:
        with conn.cursor() as cur:
            row = fetch_transaction(cur, tx_id, for_update=True)
            if not row:
                return None, False
            if row.get(url_col):
                return row.get(no_col), True
            if row.get(no_col):
                return row[no_col], False
            number = next_number(cur, kind, when)
            update_transaction_documents(cur, tx_id, {no_col: number}, only_if_null=(no_col,))
            return number, False


def _render_and_upload(kind: str, number: str, when: datetime, lines: list[str]) -> dict:
    pdf = build_simple_pdf(lines, max_chars=settings.pdf_max_line_chars)
    key = document_key(kind, when.astimezone(timezone.utc).year, number)
    uploaded = upload_bytes(
        key=key,
        data=pdf,
        content_type=PDF_CONTENT_TYPE,
        filename=f"{safe_key_segment(number)}.pdf",
    )
    url = get_public_url(key) or (uploaded or {}).get("url") or key
    return {"key": key, "url": url, "sha256": hashlib.sha256(pdf).hexdigest(), "size": len(pdf)}


def document_state(tx: dict) -> dict:
    return {
        "tx_id": str(tx.get("id")),
        "status": tx.get("status"),
        "receipt": {
            "receipt_no": tx.get("receipt_no"),
            "pdf_url": tx.get("receipt_pdf_url"),
        },
        "invoice": {
            "invoice_no": tx.get("invoice_no"),
            "pdf_url": tx.get("invoice_pdf_url"),
            "skipped_reason": tx.get("invoice_skipped_reason"),
        },
    }


def ensure_paid_transaction_documents(
    tx_id: str,
    actor_admin_id: str,
    *,
    policy: Optional[InvoicePolicy] = None,
    lookups: Optional[RecordCache] = None,
) -> Optional[dict]:
    """
    Make sure a paid transaction has its receipt (always) and invoice (when the
    buyer type and amount require one and buyer data is complete).

    Returns the resulting document state, or None when the transaction does not
    exist or is not paid (nothing to do). Infrastructure errors propagate; call
    again to resume.
    """
    tx_id = str(tx_id)
    with get_conn() as conn:
        with conn.cursor() as cur:
            tx = fetch_transaction(cur, tx_id)
            if not tx or tx.get("status") != "paid":
                _json_log("info", "pos.documents.noop", tx_id=tx_id, status=(tx or {}).get("status"))
                return None

            def _lookup(kind, loader, key):
                if lookups is None:
                    return loader(cur, key)
                return lookups.get((kind, str(key)) if key else None, lambda: loader(cur, key))

            location = _lookup("location", fetch_location, tx.get("location_id"))
            terminal = _lookup("terminal", fetch_terminal, tx.get("terminal_id"))
            seller = get_or_create_seller_settings(cur)

    paid_at = document_date(tx)
    items = list(tx.get("items") or [])
    totals = tx.get("totals") or {}
    buyer = tx.get("buyer") or {}
    vat_lines = compute_vat_breakdown(items)

    # (fields, columns that must still be NULL, audit action, audit payload), one per document.
    writes: list[tuple[dict, list[str], str, dict]] = []

    # Receipt: always, exactly once.
    if not tx.get("receipt_pdf_url"):
        receipt_no, already_issued = allocate_document_number(tx_id, "receipt", paid_at)
        if receipt_no and not already_issued:
            lines = build_receipt_lines(
                seller=seller,
                tx_id=tx_id,
                receipt_no=receipt_no,
                created_at=paid_at,
                items=items,
                totals=totals,
                payment_method=(tx.get("payment") or {}).get("method") or "card",
                buyer=buyer,
                tse=tx.get("tse"),
                location_name=(location or {}).get("name"),
                terminal_label=(terminal or {}).get("label"),
                vat_lines=vat_lines,
            )
            doc = _render_and_upload("receipt", receipt_no, paid_at, lines)
            writes.append(
                (
                    {"receipt_no": receipt_no, "receipt_pdf_url": doc["url"]},
                    ["receipt_pdf_url"],
                    "ISSUE_RECEIPT",
                    {
                        "receipt_no": receipt_no,
                        "pdf_url": doc["url"],
                        "storage_key": doc["key"],
                        "pdf_sha256": doc["sha256"],
                        "settings_version": seller.version,
                    },
                )
            )

    # Invoice: only when legally required.
    gross_cents = int(totals.get("gross_cents") or 0)
    if should_issue_invoice(buyer.get("type"), gross_cents, policy) and not tx.get("invoice_pdf_url"):
        invoice_buyer = invoice_buyer_data(buyer)
        complete = has_required_invoice_buyer_data(
            buyer_type=invoice_buyer["type"],
            name=invoice_buyer["name"],
            billing_address=invoice_buyer["billing_address"],
            company=invoice_buyer["company"],
        )
        if not complete:
            # Record the skip once; later runs see the stored reason and stay quiet.
            if tx.get("invoice_skipped_reason") != MISSING_BUYER:
                writes.append(
                    (
                        {"invoice_skipped_reason": MISSING_BUYER},
                        ["invoice_pdf_url"],
                        "INVOICE_SKIPPED_MISSING_BUYER",
                        {"reason": MISSING_BUYER, "buyer_type": invoice_buyer["type"], "gross_cents": gross_cents},
                    )
                )
        else:
            invoice_no, already_issued = allocate_document_number(tx_id, "invoice", paid_at)
            if invoice_no and not already_issued:
                lines = build_invoice_lines(
                    seller=seller,
                    tx_id=tx_id,
                    invoice_no=invoice_no,
                    created_at=paid_at,
                    items=items,
                    totals=totals,
                    buyer=invoice_buyer,
                    tse=tx.get("tse"),
                    vat_lines=vat_lines,
                )
                doc = _render_and_upload("invoice", invoice_no, paid_at, lines)
                writes.append(
                    (
                        {"invoice_no": invoice_no, "invoice_pdf_url": doc["url"], "invoice_skipped_reason": None},
                        ["invoice_pdf_url"],
                        "ISSUE_INVOICE",
                        {
                            "invoice_no": invoice_no,
                            "pdf_url": doc["url"],
                            "storage_key": doc["key"],
                            "pdf_sha256": doc["sha256"],
                            "settings_version": seller.version,
                        },
                    )
                )

    if not writes:
        return document_state(tx)

    landed: list[tuple[str, dict]] = []
    lost: list[str] = []
    with get_conn() as conn:
        with conn.cursor() as cur:
            for fields, guard, action, payload in writes:
                if update_transaction_documents(cur, tx_id, fields, only_if_null=guard):
                    append_audit_log(cur, actor_admin_id=actor_admin_id, action=action, tx_id=tx_id, payload=payload)
                    landed.append((action, payload))
                else:
                    lost.extend(fields)
            latest = fetch_transaction(cur, tx_id)
    if lost:
        _json_log("warning", "pos.documents.concurrent_issue", tx_id=tx_id, fields=sorted(lost))
    for action, payload in landed:
        _json_log("info", _LOG_EVENTS[action], tx_id=tx_id, **{k: v for k, v in payload.items() if k in _LOG_FIELDS})
    return document_state(latest or tx)
