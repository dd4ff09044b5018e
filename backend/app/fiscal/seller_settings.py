from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Mapping, Optional

from psycopg.types.json import Json

from ..config import settings

POS_SETTINGS_SCOPE = "default"

DEFAULT_BRAND_NAME = "ARTCLUB"
DEFAULT_SELLER = {
    "company_name": "Artclub Mixed Media GmbH",
    "address_line1": "Friedrichsruher Strasse 37",
    "address_line2": "14193 Berlin",
    "email": "support@artclub.wtf",
    "phone": "+49 176 41534464",
}
DEFAULT_FOOTER_LINES = ["Vielen Dank fuer Ihren Einkauf.", "Thank you for your purchase."]
DEFAULT_LOCALE = "de-DE"
DEFAULT_CURRENCY = "EUR"


@dataclass(frozen=True)
class SellerIdentity:
    company_name: str
    address_line1: str
    address_line2: str
    email: str
    phone: str


@dataclass(frozen=True)
class TaxIdentity:
    steuernummer: Optional[str] = None
    ust_id: Optional[str] = None
    finanzamt: Optional[str] = None


@dataclass(frozen=True)
class SellerSettingsSnapshot:
    brand_name: str
    seller: SellerIdentity
    tax: TaxIdentity = field(default_factory=TaxIdentity)
    logo_url: Optional[str] = None
    receipt_footer_lines: tuple[str, ...] = ()
    locale: str = DEFAULT_LOCALE
    currency: str = DEFAULT_CURRENCY
    version: Optional[str] = None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["receipt_footer_lines"] = list(self.receipt_footer_lines)
        return d


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _optional(value: Any) -> Optional[str]:
    return _text(value) or None


def snapshot_from_row(row: Optional[Mapping]) -> SellerSettingsSnapshot:
    """Map a `pos_settings` row (or nothing) to a fully defaulted snapshot."""
    r = row or {}
    seller = r.get("seller") or {}
    tax = r.get("tax") or {}
    updated_at = r.get("updated_at")
    return SellerSettingsSnapshot(
        brand_name=_text(r.get("brand_name")) or DEFAULT_BRAND_NAME,
        logo_url=_optional(r.get("logo_url")),
        seller=SellerIdentity(
            **{k: _text(seller.get(k)) or default for k, default in DEFAULT_SELLER.items()}
        ),
        tax=TaxIdentity(
            steuernummer=_optional(tax.get("steuernummer")),
            ust_id=_optional(tax.get("ust_id")),
            finanzamt=_optional(tax.get("finanzamt")),
        ),
        receipt_footer_lines=tuple(
            line for line in (_text(x) for x in (r.get("receipt_footer_lines") or [])) if line
        ),
        locale=_text(r.get("locale")) or DEFAULT_LOCALE,
        currency=_text(r.get("currency")).upper() or DEFAULT_CURRENCY,
        version=updated_at.isoformat() if hasattr(updated_at, "isoformat") else _optional(updated_at),
    )


def _environment(environment: Optional[str]) -> str:
    return (environment or "").strip() or settings.pos_settings_environment


def get_or_create_seller_settings(cur, environment: Optional[str] = None) -> SellerSettingsSnapshot:
    env = _environment(environment)
    cur.execute(
        """
        INSERT INTO pos_settings (scope, environment, receipt_footer_lines)
        VALUES (%s, %s, %s)
        ON CONFLICT (scope, environment) DO NOTHING
        """,
        (POS_SETTINGS_SCOPE, env, Json(DEFAULT_FOOTER_LINES)),
    )
    cur.execute(
        """
        SELECT brand_name, logo_url, seller, tax, receipt_footer_lines, locale, currency, updated_at
        FROM pos_settings
        WHERE scope = %s AND environment = %s
        """,
        (POS_SETTINGS_SCOPE, env),
    )
    return snapshot_from_row(cur.fetchone())


_PLAIN_COLUMNS = ("brand_name", "logo_url", "locale", "currency")
# NOT NULL columns; an explicit null resets them to the default.
_COLUMN_DEFAULTS = {"brand_name": DEFAULT_BRAND_NAME, "locale": DEFAULT_LOCALE, "currency": DEFAULT_CURRENCY}
_JSON_COLUMNS = ("seller", "tax", "receipt_footer_lines")


def update_seller_settings(cur, patch: Mapping, environment: Optional[str] = None) -> SellerSettingsSnapshot:
    """
    Apply a partial update. Nested `seller`/`tax` objects are merged key by key
    (JSONB `||`), footer lines are replaced as a whole.
    """
    current = get_or_create_seller_settings(cur, environment)
    sets: list[str] = []
    params: list = []
    for col in _PLAIN_COLUMNS:
        if col in patch:
            value = patch[col]
            if value is None:
                value = _COLUMN_DEFAULTS.get(col)
            if col == "currency" and value:
                value = str(value).strip().upper()
            sets.append(f"{col} = %s")
            params.append(value)
    for col in _JSON_COLUMNS:
        if col not in patch or patch[col] is None:
            continue
        if col == "receipt_footer_lines":
            sets.append(f"{col} = %s")
        else:
            sets.append(f"{col} = COALESCE({col}, '{{}}'::jsonb) || %s")
        params.append(Json(patch[col]))
    if not sets:
        return current

    sets.append("updated_at = now()")
    params.extend([POS_SETTINGS_SCOPE, _environment(environment)])
    cur.execute(
        f"""
        UPDATE pos_settings
        SET {", ".join(sets)}
        WHERE scope = %s AND environment = %s
        RETURNING brand_name, logo_url, seller, tax, receipt_footer_lines, locale, currency, updated_at
        """,
        params,
    )
    return snapshot_from_row(cur.fetchone())
