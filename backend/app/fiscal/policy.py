from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from ..config import settings

BUYER_TYPES = ("b2b", "b2c")


@dataclass(frozen=True)
class InvoicePolicy:
    """Gross-amount thresholds (cents, inclusive) above which an invoice is mandatory."""

    b2b_threshold_cents: int = 20_000
    b2c_threshold_cents: int = 100_000

    @classmethod
    def from_settings(cls) -> "InvoicePolicy":
        return cls(
            b2b_threshold_cents=settings.invoice_b2b_threshold_cents,
            b2c_threshold_cents=settings.invoice_b2c_threshold_cents,
        )


def _clean(value) -> str:
    return str(value or "").strip()


def normalize_buyer_type(value) -> Optional[str]:
    t = _clean(value).lower()
    return t if t in BUYER_TYPES else None


def should_issue_invoice(buyer_type: Optional[str], gross_cents: int, policy: Optional[InvoicePolicy] = None) -> bool:
    p = policy or InvoicePolicy.from_settings()
    t = normalize_buyer_type(buyer_type)
    gross = int(gross_cents or 0)
    if t == "b2b":
        return gross >= p.b2b_threshold_cents
    if t == "b2c":
        return gross >= p.b2c_threshold_cents
    # Anonymous sales never require an invoice.
    return False


def invoice_buyer_data(buyer: Optional[Mapping]) -> dict:
    """Buyer fields relevant for an invoice; shipping address stands in for a missing billing address."""
    b = buyer or {}
    return {
        "type": normalize_buyer_type(b.get("type")),
        "name": _clean(b.get("name")) or None,
        "company": _clean(b.get("company")) or None,
        "email": _clean(b.get("email")) or None,
        "phone": _clean(b.get("phone")) or None,
        "vat_id": _clean(b.get("vat_id")) or None,
        "billing_address": _clean(b.get("billing_address")) or _clean(b.get("shipping_address")) or None,
        "shipping_address": _clean(b.get("shipping_address")) or None,
    }


def has_required_invoice_buyer_data(
    *,
    buyer_type: Optional[str],
    name: Optional[str],
    billing_address: Optional[str],
    company: Optional[str] = None,
) -> bool:
    if not _clean(name) or not _clean(billing_address):
        return False
    if normalize_buyer_type(buyer_type) == "b2b" and not _clean(company):
        return False
    return True
