import os
import sys


# Allow running pytest from either the repo root or from within `backend/`.
# Tests import `backend.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

import copy
import re
import uuid
from datetime import datetime, timezone

import pytest
from psycopg.types.json import Json


PAID_AT = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)


def _normalize_sql(sql) -> str:
    return " ".join(str(sql or "").lower().split())


def _unwrap(value):
    return value.obj if isinstance(value, Json) else value


class FakePosDb:
    """
    In-memory stand-in for the POS tables, good enough for the statements the
    document pipeline issues. Unknown SQL fails the test.
    """

    def __init__(self):
        self.transactions: dict[str, dict] = {}
        self.locations: dict[str, dict] = {}
        self.terminals: dict[str, dict] = {}
        self.counters: dict[tuple, dict] = {}
        self.settings_rows: dict[tuple, dict] = {}
        self.audit: list[dict] = []
        self.statements: list[tuple[str, tuple]] = []
        self.uploads: dict[str, bytes] = {}
        self.fail_uploads = 0

    def add_transaction(self, **fields) -> str:
        tx_id = str(fields.pop("id", None) or uuid.uuid4())
        row = {
            "id": tx_id,
            "status": "paid",
            "location_id": None,
            "terminal_id": None,
            "items": [{"title_snapshot": "Print", "qty": 2, "unit_gross_cents": 1190, "vat_rate": 19}],
            "totals": {"gross_cents": 2380, "net_cents": 2000, "vat_cents": 380},
            "buyer": None,
            "payment": {"method": "card", "provider": "sumup", "approved_at": PAID_AT.isoformat()},
            "tse": None,
            "receipt_no": None,
            "receipt_pdf_url": None,
            "receipt_request_email": None,
            "receipt_email_queued_at": None,
            "invoice_no": None,
            "invoice_pdf_url": None,
            "invoice_skipped_reason": None,
            "created_at": PAID_AT,
            "updated_at": PAID_AT,
        }
        row.update(fields)
        self.transactions[tx_id] = row
        return tx_id

    def connect(self):
        return _FakeConn(self)

    def upload_bytes(self, *, key, data, content_type, filename=None):
        if self.fail_uploads > 0:
            self.fail_uploads -= 1
            raise RuntimeError("s3 unavailable")
        self.uploads[key] = data
        return {"key": key, "etag": f"etag-{len(self.uploads)}", "url": f"s3://pos-docs/{key}"}

    def audit_actions(self, tx_id=None) -> list[str]:
        return [e["action"] for e in self.audit if tx_id is None or e["tx_id"] == tx_id]

    def count(self, fragment: str) -> int:
        return sum(1 for text, _ in self.statements if fragment in text)


class _FakeCursor:
    def __init__(self, db: FakePosDb):
        self.db = db
        self.rows: list[dict] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        text = _normalize_sql(sql)
        params = tuple(_unwrap(p) for p in (params or ()))
        self.db.statements.append((text, params))
        self.rows = []
        db = self.db

        if text.startswith("select") and "from pos_transactions where id = %s" in text:
            row = db.transactions.get(str(params[0]))
            self.rows = [copy.deepcopy(row)] if row else []
            return
        if text.startswith("update pos_transactions set"):
            set_part, where_part = text.split(" where ", 1)
            cols = re.findall(r"(\w+) = %s", set_part)
            null_cols = re.findall(r"and (\w+) is null", where_part)
            row = db.transactions.get(str(params[len(cols)]))
            if row is None or any(row.get(c) is not None for c in null_cols):
                return
            row.update(dict(zip(cols, params)))
            row["updated_at"] = datetime.now(timezone.utc)
            self.rows = [{"id": row["id"]}]
            return
        if "from pos_locations" in text:
            row = db.locations.get(str(params[0]))
            self.rows = [dict(row)] if row else []
            return
        if "from pos_terminals" in text:
            row = db.terminals.get(str(params[0]))
            self.rows = [dict(row)] if row else []
            return

        if text.startswith("insert into pos_sequence_counters"):
            counter = db.counters.setdefault((params[0], int(params[1])), {"value": 0, "last_hash": ""})
            if "do update" in text:
                counter["value"] += 1
                self.rows = [{"value": counter["value"]}]
            return
        if text.startswith("select value, last_hash from pos_sequence_counters"):
            counter = db.counters.get((params[0], int(params[1])))
            self.rows = [dict(counter)] if counter else []
            return
        if text.startswith("update pos_sequence_counters set last_hash"):
            counter = db.counters[(params[1], int(params[2]))]
            counter["last_hash"] = params[0]
            counter["value"] += 1
            return

        if text.startswith("insert into pos_audit_logs"):
            actor, action, tx_id, payload, prev_hash, entry_hash, created_at = params
            entry = {
                "id": str(uuid.uuid4()),
                "seq": len(db.audit) + 1,
                "actor_admin_id": actor,
                "action": action,
                "tx_id": tx_id,
                "payload": copy.deepcopy(payload),
                "prev_hash": prev_hash,
                "hash": entry_hash,
                "created_at": created_at,
            }
            db.audit.append(entry)
            self.rows = [{"id": entry["id"], "seq": entry["seq"]}]
            return
        if "from pos_audit_logs where tx_id = %s" in text:
            found = [e for e in db.audit if e["tx_id"] == str(params[0])]
            self.rows = copy.deepcopy(sorted(found, key=lambda e: (e["created_at"], e["seq"])))
            return
        if "from pos_audit_logs where seq > %s" in text:
            found = sorted((e for e in db.audit if e["seq"] > params[0]), key=lambda e: e["seq"])
            self.rows = copy.deepcopy(found[: params[1]])
            return

        if text.startswith("insert into pos_settings"):
            db.settings_rows.setdefault(
                (params[0], params[1]),
                {
                    "brand_name": "ARTCLUB",
                    "logo_url": None,
                    "seller": {},
                    "tax": {},
                    "receipt_footer_lines": list(params[2]),
                    "locale": "de-DE",
                    "currency": "EUR",
                    "updated_at": PAID_AT,
                },
            )
            return
        if text.startswith("select brand_name") and "from pos_settings" in text:
            row = db.settings_rows.get((params[0], params[1]))
            self.rows = [copy.deepcopy(row)] if row else []
            return
        if text.startswith("update pos_settings set"):
            set_part = text.split(" where ", 1)[0]
            assigned = re.findall(r"(\w+) = (coalesce\(\w+, '\{\}'::jsonb\) \|\| )?%s", set_part)
            row = db.settings_rows.get((params[len(assigned)], params[len(assigned) + 1]))
            if row is None:
                return
            for (col, merge), value in zip(assigned, params):
                if value is None and col in {"brand_name", "locale", "currency"}:
                    raise AssertionError(f"null written to NOT NULL column {col}")
                row[col] = {**(row.get(col) or {}), **value} if merge else copy.deepcopy(value)
            row["updated_at"] = datetime.now(timezone.utc)
            self.rows = [copy.deepcopy(row)]
            return

        raise AssertionError(f"unexpected SQL in test cursor: {text}")

    def fetchone(self):
        return self.rows[0] if self.rows else None

    def fetchall(self):
        return list(self.rows)


class _FakeConn:
    def __init__(self, db: FakePosDb):
        self.db = db

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def cursor(self):
        return _FakeCursor(self.db)


@pytest.fixture
def pos_db(monkeypatch):
    from backend.app.fiscal import documents
    from backend.app.routers import pos_documents

    db = FakePosDb()
    monkeypatch.setattr(documents, "get_conn", db.connect)
    monkeypatch.setattr(pos_documents, "get_conn", db.connect)
    monkeypatch.setattr(documents, "upload_bytes", db.upload_bytes)
    monkeypatch.setattr(documents, "get_public_url", lambda key: None)
    return db
