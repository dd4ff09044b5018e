from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator, StringConstraints


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


# Canonical codes mirror the CHECK constraints in `backend/db/migrations/001_pos_documents.sql`.
CurrencyCode = Annotated[str, BeforeValidator(_to_upper_str), StringConstraints(pattern=r"^[A-Z]{3}$")]
DocumentKind = Annotated[Literal["receipt", "invoice"], BeforeValidator(_to_lower_str)]

# BCP 47-ish tags as used for receipt formatting (de-DE, en, ...).
Locale = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=16, pattern=r"^[A-Za-z]{2,3}(-[A-Za-z0-9]{2,8})*$")]

# Deliverable address only; no MX or DNS checks.
EmailAddress = Annotated[
    str,
    StringConstraints(strip_whitespace=True, to_lower=True, max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$"),
]
