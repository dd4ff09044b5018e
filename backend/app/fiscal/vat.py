from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Mapping

# German VAT rates used at the POS (0 = exempt art sales, 7 = reduced, 19 = standard).
VAT_RATES = (0, 7, 19)


@dataclass(frozen=True)
class VatBreakdownLine:
    rate: int
    gross_cents: int
    net_cents: int
    vat_cents: int


def _require_cents(value, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field_name} must be an integer amount of cents")
    if value < 0:
        raise ValueError(f"{field_name} must be >= 0")
    return value


def normalize_vat_rate(value) -> int:
    try:
        rate = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"invalid VAT rate: {value!r}")
    if rate != value or rate not in VAT_RATES:
        raise ValueError(f"invalid VAT rate: {value!r}")
    return rate


def compute_net_cents(gross_cents: int, vat_rate: int) -> int:
    """
    Net part of a gross amount.

    Rounds half-up on the float quotient (`floor(x + 0.5)`), e.g. 119 cents at 19%
    is exactly 100 net, 1 cent at 19% is 1 net / 0 VAT. Changing the rounding mode
    changes issued documents by a cent, so keep it.
    """
    gross = _require_cents(gross_cents, "gross_cents")
    rate = normalize_vat_rate(vat_rate)
    if rate == 0:
        return gross
    return int(math.floor((gross * 100) / (100 + rate) + 0.5))


def line_gross_cents(item: Mapping) -> int:
    qty = _require_cents(item.get("qty"), "qty")
    unit = _require_cents(item.get("unit_gross_cents"), "unit_gross_cents")
    return qty * unit


def compute_vat_breakdown(items: Iterable[Mapping]) -> list[VatBreakdownLine]:
    """
    Group line items by VAT rate and split each bucket's gross once.

    Net/VAT are derived from the aggregated bucket gross, not summed per line, so
    many same-rate lines cannot drift by a cent each. Rates without lines are
    omitted; output is ordered by rate.
    """
    gross_by_rate: dict[int, int] = {}
    for item in items or []:
        rate = normalize_vat_rate(item.get("vat_rate"))
        gross_by_rate[rate] = gross_by_rate.get(rate, 0) + line_gross_cents(item)

    out: list[VatBreakdownLine] = []
    for rate in sorted(gross_by_rate):
        gross = gross_by_rate[rate]
        net = compute_net_cents(gross, rate)
        out.append(VatBreakdownLine(rate=rate, gross_cents=gross, net_cents=net, vat_cents=gross - net))
    return out


def format_cents(cents: int, currency: str = "EUR") -> str:
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(int(cents)), 100)
    return f"{currency} {sign}{whole}.{frac:02d}"
