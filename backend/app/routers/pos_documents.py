from dataclasses import asdict
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from typing import Optional
from uuid import UUID
import json
import sys

from ..db import get_conn
from ..deps import get_current_admin
from ..fiscal.audit_log import list_audit_logs_for_transaction, verify_full_chain
from ..fiscal.cache import RecordCache
from ..fiscal.documents import PDF_CONTENT_TYPE, document_state, ensure_paid_transaction_documents
from ..fiscal.policy import InvoicePolicy
from ..fiscal.seller_settings import get_or_create_seller_settings, update_seller_settings
from ..fiscal.store import fetch_transaction, update_transaction_documents
from ..fiscal.vat import line_gross_cents
from ..storage.s3 import key_from_url, presign_get, s3_enabled
from ..validation import CurrencyCode, DocumentKind, EmailAddress, Locale

router = APIRouter(prefix="/pos", tags=["pos-documents"])

AUDIT_VERIFY_BATCH = 2000


def _json_log(level: str, event: str, **fields):
    rec = {"ts": datetime.now(timezone.utc).isoformat(), "level": level, "event": event, **fields}
    print(json.dumps(rec, default=str), file=sys.stderr)


class SellerIn(BaseModel):
    company_name: Optional[str] = Field(None, max_length=200)
    address_line1: Optional[str] = Field(None, max_length=200)
    address_line2: Optional[str] = Field(None, max_length=200)
    email: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, max_length=64)


class TaxIn(BaseModel):
    steuernummer: Optional[str] = Field(None, max_length=64)
    ust_id: Optional[str] = Field(None, max_length=64)
    finanzamt: Optional[str] = Field(None, max_length=200)


class SellerSettingsPatch(BaseModel):
    brand_name: Optional[str] = Field(None, min_length=1, max_length=120)
    logo_url: Optional[str] = Field(None, max_length=1000)
    seller: Optional[SellerIn] = None
    tax: Optional[TaxIn] = None
    receipt_footer_lines: Optional[list[str]] = Field(None, max_length=20)
    locale: Optional[Locale] = None
    currency: Optional[CurrencyCode] = None


class SendReceiptIn(BaseModel):
    email: Optional[EmailAddress] = None


def get_lookup_cache(request: Request) -> RecordCache:
    return request.app.state.pos_lookup_cache


def _parse_uuid(value: str, field_name: str) -> str:
    try:
        return str(UUID((value or "").strip()))
    except Exception:
        raise HTTPException(status_code=400, detail=f"{field_name} must be a valid UUID")


def _audit_out(entry: dict) -> dict:
    return {
        "id": str(entry["id"]),
        "created_at": entry.get("created_at"),
        "actor_admin_id": entry.get("actor_admin_id"),
        "action": entry.get("action"),
        "prev_hash": entry.get("prev_hash") or "",
        "hash": entry.get("hash") or "",
        "payload": entry.get("payload") or {},
    }


def _transaction_out(tx: dict) -> dict:
    items = []
    for idx, line in enumerate(tx.get("items") or [], start=1):
        items.append({**line, "line_no": idx, "line_gross_cents": line_gross_cents(line)})
    documents = document_state(tx)
    return {
        "id": str(tx["id"]),
        "status": tx.get("status"),
        "created_at": tx.get("created_at"),
        "updated_at": tx.get("updated_at"),
        "location_id": str(tx["location_id"]) if tx.get("location_id") else None,
        "terminal_id": str(tx["terminal_id"]) if tx.get("terminal_id") else None,
        "items": items,
        "totals": tx.get("totals") or {},
        "buyer": tx.get("buyer") or None,
        "payment": tx.get("payment") or None,
        "tse": tx.get("tse") or None,
        "receipt": {
            **documents["receipt"],
            "request_email": tx.get("receipt_request_email"),
            "email_queued_at": tx.get("receipt_email_queued_at"),
        },
        "invoice": documents["invoice"],
    }


@router.post("/transactions/{tx_id}/documents")
def issue_transaction_documents(
    tx_id: str,
    admin=Depends(get_current_admin),
    lookups: RecordCache = Depends(get_lookup_cache),
):
    """
    Issue the receipt (and invoice when required) for a paid transaction.
    Safe to call repeatedly; already issued documents are returned unchanged.
    """
    tx_id = _parse_uuid(tx_id, "tx_id")
    with get_conn() as conn:
        with conn.cursor() as cur:
            tx = fetch_transaction(cur, tx_id)
    if not tx:
        raise HTTPException(status_code=404, detail="transaction not found")
    if tx.get("status") != "paid":
        raise HTTPException(status_code=409, detail=f"transaction is {tx.get('status')}, documents require paid")

    state = ensure_paid_transaction_documents(
        tx_id,
        admin["user_id"],
        policy=InvoicePolicy.from_settings(),
        lookups=lookups,
    )
    if state is None:
        # Status changed between the check and the run (e.g. refunded).
        raise HTTPException(status_code=409, detail="transaction is no longer paid")
    return {"documents": state}


@router.get("/transactions/{tx_id}")
def get_transaction_detail(tx_id: str, _admin=Depends(get_current_admin)):
    tx_id = _parse_uuid(tx_id, "tx_id")
    with get_conn() as conn:
        with conn.cursor() as cur:
            tx = fetch_transaction(cur, tx_id)
            if not tx:
                raise HTTPException(status_code=404, detail="transaction not found")
            audit = list_audit_logs_for_transaction(cur, tx_id)
    return {"transaction": _transaction_out(tx), "audit": [_audit_out(e) for e in audit]}


@router.post("/transactions/{tx_id}/receipt/send")
def send_transaction_receipt(
    tx_id: str,
    data: Optional[SendReceiptIn] = None,
    _admin=Depends(get_current_admin),
):
    """
    Queue the issued receipt for email delivery. The address comes from the
    request, else the one stored on an earlier request, else the buyer's.
    """
    tx_id = _parse_uuid(tx_id, "tx_id")
    with get_conn() as conn:
        with conn.cursor() as cur:
            tx = fetch_transaction(cur, tx_id, for_update=True)
            if not tx:
                raise HTTPException(status_code=404, detail="transaction not found")
            if tx.get("status") != "paid":
                raise HTTPException(status_code=409, detail="transaction not paid")
            if not tx.get("receipt_pdf_url"):
                raise HTTPException(status_code=409, detail="receipt not issued")
            email = (
                (data.email if data else None)
                or (tx.get("receipt_request_email") or "").strip()
                or ((tx.get("buyer") or {}).get("email") or "").strip()
            )
            if not email:
                raise HTTPException(status_code=400, detail="no email address for receipt")
            queued_at = datetime.now(timezone.utc)
            update_transaction_documents(
                cur,
                tx_id,
                {"receipt_request_email": email, "receipt_email_queued_at": queued_at},
            )
    _json_log("info", "pos.documents.receipt_email_queued", tx_id=tx_id, receipt_no=tx.get("receipt_no"))
    return {
        "ok": True,
        "mode": "queued",
        "email": email,
        "queued_at": queued_at.isoformat(),
        "receipt_pdf_url": tx["receipt_pdf_url"],
    }


@router.get("/transactions/{tx_id}/documents/{kind}")
def download_transaction_document(tx_id: str, kind: DocumentKind, _admin=Depends(get_current_admin)):
    tx_id = _parse_uuid(tx_id, "tx_id")
    with get_conn() as conn:
        with conn.cursor() as cur:
            tx = fetch_transaction(cur, tx_id)
    if not tx:
        raise HTTPException(status_code=404, detail="transaction not found")
    url = tx.get(f"{kind}_pdf_url")
    number = tx.get(f"{kind}_no") or kind
    if not url:
        raise HTTPException(status_code=404, detail=f"{kind} not issued")

    key = key_from_url(url) if s3_enabled() else None
    if key:
        url = presign_get(key=key, filename=f"{number}.pdf", content_type=PDF_CONTENT_TYPE, disposition="inline")
    elif not url.startswith(("http://", "https://")):
        raise HTTPException(status_code=404, detail=f"{kind} storage unavailable")
    return RedirectResponse(url, status_code=307)


@router.get("/audit/verify")
def verify_audit_log(_admin=Depends(get_current_admin)):
    """Recompute the whole hash chain; reports the first broken entry if any."""
    with get_conn() as conn:
        with conn.cursor() as cur:
            report = verify_full_chain(cur, batch_size=AUDIT_VERIFY_BATCH)
    if not report.ok:
        _json_log("error", "pos.audit.chain_broken", entry_id=report.first_broken_id, reason=report.reason)
    return asdict(report)


@router.get("/settings")
def get_seller_settings(_admin=Depends(get_current_admin)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"settings": get_or_create_seller_settings(cur).to_dict()}


@router.put("/settings")
def put_seller_settings(data: SellerSettingsPatch, _admin=Depends(get_current_admin)):
    patch = data.model_dump(exclude_unset=True)
    for nested in ("seller", "tax"):
        if patch.get(nested) is not None:
            patch[nested] = {k: v for k, v in patch[nested].items() if v is not None}
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"settings": update_seller_settings(cur, patch).to_dict()}


@router.post("/lookups/invalidate")
def invalidate_lookups(
    _admin=Depends(get_current_admin),
    lookups: RecordCache = Depends(get_lookup_cache),
):
    """Drop cached location/terminal lookups after they were edited."""
    lookups.invalidate()
    return {"ok": True}
