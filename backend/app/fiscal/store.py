from __future__ import annotations

from datetime import datetime
from typing import Mapping, Optional, Sequence

_TX_COLUMNS = """
    id, status, location_id, terminal_id, items, totals, buyer, payment, tse,
    receipt_no, receipt_pdf_url, receipt_request_email, receipt_email_queued_at,
    invoice_no, invoice_pdf_url, invoice_skipped_reason,
    created_at, updated_at
"""

# Columns the document pipeline may write. Anything else is owned by checkout/payment flows.
DOCUMENT_COLUMNS = frozenset(
    {
        "receipt_no",
        "receipt_pdf_url",
        "receipt_request_email",
        "receipt_email_queued_at",
        "invoice_no",
        "invoice_pdf_url",
        "invoice_skipped_reason",
    }
)


def fetch_transaction(cur, tx_id: str, *, for_update: bool = False) -> Optional[dict]:
    cur.execute(
        f"""
        SELECT {_TX_COLUMNS}
        FROM pos_transactions
        WHERE id = %s
        {"FOR UPDATE" if for_update else ""}
        """,
        (tx_id,),
    )
    return cur.fetchone()


def fetch_location(cur, location_id: Optional[str]) -> Optional[dict]:
    if not location_id:
        return None
    cur.execute("SELECT id, name FROM pos_locations WHERE id = %s", (location_id,))
    return cur.fetchone()


def fetch_terminal(cur, terminal_id: Optional[str]) -> Optional[dict]:
    if not terminal_id:
        return None
    cur.execute("SELECT id, label, location_id FROM pos_terminals WHERE id = %s", (terminal_id,))
    return cur.fetchone()


def update_transaction_documents(
    cur,
    tx_id: str,
    updates: Mapping,
    *,
    only_if_null: Sequence[str] = (),
) -> bool:
    """
    Write document fields in one UPDATE. `only_if_null` turns it into a
    conditional write (e.g. never overwrite an existing `receipt_pdf_url`).
    Returns False when no row matched.
    """
    unknown = set(updates) - DOCUMENT_COLUMNS
    unknown |= set(only_if_null) - DOCUMENT_COLUMNS
    if unknown:
        raise ValueError(f"not a document column: {', '.join(sorted(unknown))}")
    if not updates:
        return False

    cols = sorted(updates)
    set_sql = ", ".join(f"{c} = %s" for c in cols)
    where_sql = "".join(f" AND {c} IS NULL" for c in only_if_null)
    params = [updates[c] for c in cols]
    params.append(tx_id)
    cur.execute(
        f"""
        UPDATE pos_transactions
        SET {set_sql}, updated_at = now()
        WHERE id = %s{where_sql}
        RETURNING id
        """,
        params,
    )
    return cur.fetchone() is not None


def list_transactions_missing_documents(
    cur,
    *,
    b2b_threshold_cents: int,
    b2c_threshold_cents: int,
    since: Optional[datetime] = None,
    limit: int = 200,
) -> list[str]:
    """
    Paid transactions without a receipt PDF, or whose buyer/amount requires an
    invoice that has no PDF yet and was not skipped for missing buyer data.
    """
    cur.execute(
        """
        SELECT id
        FROM pos_transactions
        WHERE status = 'paid'
          AND (
            receipt_pdf_url IS NULL
            OR (
              invoice_pdf_url IS NULL
              AND invoice_skipped_reason IS NULL
              AND (
                (buyer->>'type' = 'b2b' AND COALESCE((totals->>'gross_cents')::bigint, 0) >= %s)
                OR (buyer->>'type' = 'b2c' AND COALESCE((totals->>'gross_cents')::bigint, 0) >= %s)
              )
            )
          )
          AND (%s::timestamptz IS NULL OR created_at >= %s::timestamptz)
        ORDER BY created_at ASC
        LIMIT %s
        """,
        (b2b_threshold_cents, b2c_threshold_cents, since, since, limit),
    )
    return [str(r["id"]) for r in (cur.fetchall() or [])]
