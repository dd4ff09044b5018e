"""
Text content of receipts (Beleg) and invoices (Rechnung).

Pure functions: given the same seller snapshot, transaction fields and document
number they always return the same lines. The only timestamp that appears is the
one passed in.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Mapping, Optional, Sequence

from ..config import settings
from .seller_settings import SellerSettingsSnapshot
from .vat import VatBreakdownLine, compute_vat_breakdown, format_cents, line_gross_cents

ELLIPSIS = "..."


def format_datetime(value) -> str:
    if value is None or value == "":
        return "-"
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d %H:%M:%S") + " UTC"


def truncate(value: str, max_chars: int) -> str:
    if len(value) <= max_chars:
        return value
    return value[:max_chars] + ELLIPSIS


def _section(out: list[str], title: str, body: Iterable[str]) -> None:
    out.append(f"==== {title.upper()} ====")
    out.extend(body)
    out.append("")


def _header(seller: SellerSettingsSnapshot, doc_label: str) -> list[str]:
    return [seller.brand_name, doc_label]


def _item_lines(items: Sequence[Mapping], currency: str) -> list[str]:
    out: list[str] = []
    for item in items:
        out.append(
            f"{item.get('qty')} x {item.get('title_snapshot') or '-'}"
            f" | unit {format_cents(int(item.get('unit_gross_cents') or 0), currency)}"
            f" | VAT {item.get('vat_rate')}%"
            f" | total {format_cents(line_gross_cents(item), currency)}"
        )
    return out or ["(no items)"]


def _vat_lines(vat_lines: Sequence[VatBreakdownLine], currency: str) -> list[str]:
    return [
        f"VAT {v.rate}%: net {format_cents(v.net_cents, currency)}"
        f" | VAT {format_cents(v.vat_cents, currency)}"
        f" | gross {format_cents(v.gross_cents, currency)}"
        for v in vat_lines
    ]


def _totals_lines(totals: Mapping, currency: str) -> list[str]:
    return [
        f"Net total: {format_cents(int(totals.get('net_cents') or 0), currency)}",
        f"VAT total: {format_cents(int(totals.get('vat_cents') or 0), currency)}",
        f"Gross total: {format_cents(int(totals.get('gross_cents') or 0), currency)}",
    ]


def _buyer_lines(buyer: Optional[Mapping]) -> list[str]:
    b = buyer or {}
    labels = (
        ("name", "Name"),
        ("company", "Company"),
        ("vat_id", "VAT ID"),
        ("email", "Email"),
        ("phone", "Phone"),
        ("billing_address", "Billing address"),
        ("shipping_address", "Shipping address"),
    )
    return [f"{label}: {str(b[key]).strip()}" for key, label in labels if str(b.get(key) or "").strip()]


def _seller_lines(seller: SellerSettingsSnapshot) -> list[str]:
    s = seller.seller
    out = [s.company_name, s.address_line1, s.address_line2]
    if s.email:
        out.append(f"Email: {s.email}")
    if s.phone:
        out.append(f"Phone: {s.phone}")
    if seller.tax.steuernummer:
        out.append(f"Steuernummer: {seller.tax.steuernummer}")
    if seller.tax.ust_id:
        out.append(f"USt-IdNr.: {seller.tax.ust_id}")
    if seller.tax.finanzamt:
        out.append(f"Finanzamt: {seller.tax.finanzamt}")
    return out


def _tse_lines(tse: Optional[Mapping]) -> list[str]:
    t = tse or {}
    if not (t.get("tx_id") or t.get("signature")):
        return ["TSE: not signed"]
    signature = str(t.get("signature") or "-")
    return [
        f"Provider: {t.get('provider') or '-'}",
        f"Serial: {t.get('serial') or '-'}",
        f"TSE transaction: {t.get('tx_id') or '-'}",
        f"Signature counter: {t.get('signature_counter') if t.get('signature_counter') is not None else '-'}",
        f"Log time: {format_datetime(t.get('log_time'))}",
        f"Signature: {truncate(signature, settings.tse_signature_max_chars)}",
    ]


def build_receipt_lines(
    *,
    seller: SellerSettingsSnapshot,
    tx_id: str,
    receipt_no: str,
    created_at: datetime,
    items: Sequence[Mapping],
    totals: Mapping,
    payment_method: str,
    buyer: Optional[Mapping] = None,
    tse: Optional[Mapping] = None,
    location_name: Optional[str] = None,
    terminal_label: Optional[str] = None,
    vat_lines: Optional[Sequence[VatBreakdownLine]] = None,
) -> list[str]:
    currency = seller.currency
    vat = compute_vat_breakdown(items) if vat_lines is None else vat_lines
    out: list[str] = []
    _section(out, "Receipt", _header(seller, "Receipt (Beleg)"))

    doc = [
        f"Receipt number: {receipt_no}",
        f"Date/Time: {format_datetime(created_at)}",
        f"Transaction: {tx_id}",
    ]
    if location_name:
        doc.append(f"Location: {location_name}")
    if terminal_label:
        doc.append(f"Terminal: {terminal_label}")
    _section(out, "Document", doc)

    _section(out, "Items", _item_lines(items, currency))
    _section(out, "VAT summary", _vat_lines(vat, currency))
    _section(out, "Totals", _totals_lines(totals, currency))
    _section(out, "Payment", [f"Payment method: {payment_method or '-'}"])

    buyer_body = _buyer_lines(buyer)
    if buyer_body:
        _section(out, "Buyer", buyer_body)

    _section(out, "Seller", _seller_lines(seller))
    _section(out, "TSE", _tse_lines(tse))
    if seller.receipt_footer_lines:
        _section(out, "Notes", seller.receipt_footer_lines)
    return out


def build_invoice_lines(
    *,
    seller: SellerSettingsSnapshot,
    tx_id: str,
    invoice_no: str,
    created_at: datetime,
    items: Sequence[Mapping],
    totals: Mapping,
    buyer: Mapping,
    tse: Optional[Mapping] = None,
    vat_lines: Optional[Sequence[VatBreakdownLine]] = None,
) -> list[str]:
    currency = seller.currency
    vat = compute_vat_breakdown(items) if vat_lines is None else vat_lines
    out: list[str] = []
    _section(out, "Invoice", _header(seller, "Invoice (Rechnung)"))
    _section(
        out,
        "Document",
        [
            f"Invoice number: {invoice_no}",
            f"Invoice date: {format_datetime(created_at)}",
            f"Related transaction: {tx_id}",
        ],
    )
    buyer_body = _buyer_lines(buyer)
    if buyer.get("type"):
        buyer_body.append(f"Buyer type: {buyer['type']}")
    _section(out, "Buyer", buyer_body or ["-"])
    _section(out, "Line items", _item_lines(items, currency))
    _section(out, "VAT summary", _vat_lines(vat, currency))
    _section(out, "Totals", _totals_lines(totals, currency))
    _section(out, "Seller", _seller_lines(seller))
    _section(out, "TSE", _tse_lines(tse))
    if seller.receipt_footer_lines:
        _section(out, "Notes", seller.receipt_footer_lines)
    return out
