from __future__ import annotations

from datetime import datetime, timezone

COUNTER_PREFIXES = {
    "receipt": "R",
    "invoice": "I",
}


def _utc_year(when: datetime) -> int:
    if when.tzinfo is None:
        # Naive timestamps from the DB driver are UTC.
        return when.year
    return when.astimezone(timezone.utc).year


def increment_counter(cur, scope: str, year: int) -> int:
    """
    Find-or-create the (scope, year) counter and bump it in one statement.

    The upsert takes the row lock, so concurrent callers (any process) serialize
    here and each gets a distinct value.
    """
    cur.execute(
        """
        INSERT INTO pos_sequence_counters (scope, year, value, created_at, updated_at)
        VALUES (%s, %s, 1, now(), now())
        ON CONFLICT (scope, year) DO UPDATE
          SET value = pos_sequence_counters.value + 1,
              updated_at = now()
        RETURNING value
        """,
        (scope, year),
    )
    row = cur.fetchone()
    if not row:
        raise RuntimeError(f"counter increment returned no row for {scope}/{year}")
    return int(row["value"])


def format_document_number(scope: str, year: int, value: int) -> str:
    prefix = COUNTER_PREFIXES.get(scope)
    if not prefix:
        raise ValueError(f"unknown counter scope: {scope}")
    return f"{prefix}-{year}-{max(1, int(value)):06d}"


def next_number(cur, scope: str, when: datetime) -> str:
    """Allocate the next receipt/invoice number, e.g. `I-2025-000001`."""
    if scope not in COUNTER_PREFIXES:
        raise ValueError(f"unknown counter scope: {scope}")
    year = _utc_year(when)
    value = increment_counter(cur, scope, year)
    return format_document_number(scope, year, value)
