from __future__ import annotations

import hashlib
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from psycopg.types.json import Json

AUDIT_ACTIONS = (
    "CREATE_TX",
    "UPDATE_PRICE",
    "CANCEL",
    "REFUND",
    "STORNO",
    "PAYMENT_MARK_PAID",
    "ISSUE_RECEIPT",
    "ISSUE_INVOICE",
    "INVOICE_SKIPPED_MISSING_BUYER",
    "SIGN_CONTRACT",
    "TSE_START",
    "TSE_FINISH",
)

# The chain head (last hash + entry count) lives in the counters table under a fixed key.
AUDIT_HASH_SCOPE = "audit_hash"
AUDIT_HASH_YEAR = 2000


@dataclass(frozen=True)
class AuditChainReport:
    ok: bool
    checked: int
    first_broken_id: Optional[str] = None
    reason: Optional[str] = None


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def _utc_ms(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def iso_ms(value: datetime) -> str:
    return _utc_ms(value).isoformat(timespec="milliseconds")


def _uuid_text(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(uuid.UUID(str(value)))


def entry_content(*, actor_admin_id, action: str, tx_id, payload) -> dict:
    return {
        "actor_admin_id": str(actor_admin_id) if actor_admin_id is not None else None,
        "action": action,
        "tx_id": _uuid_text(tx_id),
        "payload": payload if payload is not None else {},
    }


def compute_audit_hash(prev_hash: str, content: Mapping, created_at: datetime) -> str:
    raw = f"{prev_hash or ''}{canonical_json(content)}{iso_ms(created_at)}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def append_audit_log(
    cur,
    *,
    actor_admin_id: str,
    action: str,
    tx_id: Optional[str] = None,
    payload: Optional[Mapping] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Append one entry to the POS audit chain.

    The chain head row is locked for the rest of the surrounding DB transaction,
    so appends are strictly serialized and every entry links to its predecessor.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"unknown audit action: {action}")
    # Store exactly what gets hashed (JSON round trip drops tuples, datetimes, ...).
    body = json.loads(canonical_json(payload if payload is not None else {}))
    created_at = _utc_ms(now or datetime.now(timezone.utc))

    cur.execute(
        """
        INSERT INTO pos_sequence_counters (scope, year, value, last_hash, created_at, updated_at)
        VALUES (%s, %s, 0, '', now(), now())
        ON CONFLICT (scope, year) DO NOTHING
        """,
        (AUDIT_HASH_SCOPE, AUDIT_HASH_YEAR),
    )
    cur.execute(
        """
        SELECT value, last_hash
        FROM pos_sequence_counters
        WHERE scope = %s AND year = %s
        FOR UPDATE
        """,
        (AUDIT_HASH_SCOPE, AUDIT_HASH_YEAR),
    )
    head = cur.fetchone()
    if not head:
        raise RuntimeError("audit chain head missing")
    prev_hash = head.get("last_hash") or ""

    content = entry_content(actor_admin_id=actor_admin_id, action=action, tx_id=tx_id, payload=body)
    entry_hash = compute_audit_hash(prev_hash, content, created_at)

    cur.execute(
        """
        UPDATE pos_sequence_counters
        SET last_hash = %s, value = value + 1, updated_at = now()
        WHERE scope = %s AND year = %s
        """,
        (entry_hash, AUDIT_HASH_SCOPE, AUDIT_HASH_YEAR),
    )
    cur.execute(
        """
        INSERT INTO pos_audit_logs (actor_admin_id, action, tx_id, payload, prev_hash, hash, created_at)
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        RETURNING id, seq
        """,
        (content["actor_admin_id"], action, content["tx_id"], Json(body), prev_hash, entry_hash, created_at),
    )
    row = cur.fetchone() or {}
    return {
        "id": str(row.get("id")) if row.get("id") is not None else None,
        "seq": row.get("seq"),
        "action": action,
        "tx_id": content["tx_id"],
        "prev_hash": prev_hash,
        "hash": entry_hash,
        "created_at": created_at,
    }


_AUDIT_COLUMNS = "id, seq, actor_admin_id, action, tx_id, payload, prev_hash, hash, created_at"


def list_audit_logs_for_transaction(cur, tx_id: str) -> list[dict]:
    cur.execute(
        f"""
        SELECT {_AUDIT_COLUMNS}
        FROM pos_audit_logs
        WHERE tx_id = %s
        ORDER BY created_at ASC, seq ASC
        """,
        (tx_id,),
    )
    return list(cur.fetchall() or [])


def list_audit_chain(cur, *, after_seq: int = 0, limit: int = 5000) -> list[dict]:
    cur.execute(
        f"""
        SELECT {_AUDIT_COLUMNS}
        FROM pos_audit_logs
        WHERE seq > %s
        ORDER BY seq ASC
        LIMIT %s
        """,
        (after_seq, limit),
    )
    return list(cur.fetchall() or [])


def verify_audit_chain(entries: Iterable[Mapping], *, prev_hash: str = "") -> AuditChainReport:
    """
    Recompute every hash in insertion order. Stops at the first broken link.
    Pass `prev_hash` to continue verification from a known-good entry.
    """
    expected_prev = prev_hash or ""
    checked = 0
    for e in entries:
        entry_id = str(e.get("id"))
        if (e.get("prev_hash") or "") != expected_prev:
            return AuditChainReport(ok=False, checked=checked, first_broken_id=entry_id, reason="prev_hash_mismatch")
        content = entry_content(
            actor_admin_id=e.get("actor_admin_id"),
            action=e.get("action"),
            tx_id=e.get("tx_id"),
            payload=e.get("payload"),
        )
        if compute_audit_hash(expected_prev, content, e["created_at"]) != e.get("hash"):
            return AuditChainReport(ok=False, checked=checked, first_broken_id=entry_id, reason="hash_mismatch")
        expected_prev = e.get("hash") or ""
        checked += 1
    return AuditChainReport(ok=True, checked=checked)


def verify_full_chain(cur, *, batch_size: int = 2000) -> AuditChainReport:
    """Verify the whole chain from the first entry, reading it in `seq` batches."""
    checked = 0
    prev_hash = ""
    after_seq = 0
    while True:
        batch = list_audit_chain(cur, after_seq=after_seq, limit=batch_size)
        if not batch:
            return AuditChainReport(ok=True, checked=checked)
        report = verify_audit_chain(batch, prev_hash=prev_hash)
        checked += report.checked
        if not report.ok:
            return AuditChainReport(
                ok=False, checked=checked, first_broken_id=report.first_broken_id, reason=report.reason
            )
        prev_hash = batch[-1].get("hash") or ""
        after_seq = batch[-1]["seq"]
