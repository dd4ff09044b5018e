#!/usr/bin/env python3
"""
Re-run document issuance for paid POS transactions that are still missing a
receipt PDF, or an invoice PDF their buyer/amount requires.

Safe to re-run: issuance is idempotent and reuses numbers allocated by an
interrupted run. Uses the same env vars as the API (DATABASE_URL, S3_*).
"""

import argparse
import sys
import time
from datetime import datetime, timezone

from backend.app.db import close_pools, get_conn
from backend.app.fiscal.documents import ensure_paid_transaction_documents
from backend.app.fiscal.policy import InvoicePolicy
from backend.app.fiscal.store import list_transactions_missing_documents
from backend.app.storage.s3 import s3_enabled

ACTOR_DEFAULT = "system:backfill"


def _parse_since(raw: str):
    if not raw:
        return None
    parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--since", default="", help="Only transactions created at/after this ISO date")
    parser.add_argument("--limit", type=int, default=200)
    parser.add_argument("--actor", default=ACTOR_DEFAULT, help="actor_admin_id recorded in the audit log")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    if not args.dry_run and not s3_enabled():
        print("S3 not configured. Set S3_ENDPOINT_URL/S3_ACCESS_KEY_ID/S3_SECRET_ACCESS_KEY/S3_BUCKET.", file=sys.stderr)
        return 2
    try:
        since = _parse_since(args.since)
    except ValueError:
        print(f"invalid --since: {args.since}", file=sys.stderr)
        return 2

    policy = InvoicePolicy.from_settings()
    with get_conn() as conn:
        with conn.cursor() as cur:
            tx_ids = list_transactions_missing_documents(
                cur,
                b2b_threshold_cents=policy.b2b_threshold_cents,
                b2c_threshold_cents=policy.b2c_threshold_cents,
                since=since,
                limit=max(1, args.limit),
            )

    done = 0
    failed = 0
    for tx_id in tx_ids:
        if args.dry_run:
            print(f"[dry-run] would issue documents for {tx_id}")
            continue
        # Uploads can fail transiently; the next attempt resumes with the same numbers.
        for attempt in range(1, 4):
            try:
                state = ensure_paid_transaction_documents(tx_id, args.actor, policy=policy)
                break
            except Exception as exc:
                if attempt >= 3:
                    print(f"error: {tx_id}: {exc}", file=sys.stderr)
                    state = None
                    failed += 1
                    break
                print(f"warn: {tx_id} failed (attempt {attempt}/3): {exc}", file=sys.stderr)
                time.sleep(0.4 * attempt)
        if state:
            done += 1
            print(
                f"{tx_id}: receipt={state['receipt']['receipt_no']} "
                f"invoice={state['invoice']['invoice_no'] or state['invoice']['skipped_reason'] or '-'}"
            )

    close_pools()
    mode = "would process" if args.dry_run else "processed"
    print(f"{mode} {len(tx_ids) if args.dry_run else done} transaction(s), failed={failed}")
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
