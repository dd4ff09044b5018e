#!/usr/bin/env python3
"""
Verify the POS audit hash chain end to end.

Exit codes: 0 chain intact, 1 chain broken (first broken entry is printed).
"""

import argparse
import sys

import psycopg
from psycopg.rows import dict_row

from backend.app.fiscal.audit_log import verify_full_chain

DB_URL_DEFAULT = "postgresql://localhost/artclub_pos"


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", default=DB_URL_DEFAULT)
    parser.add_argument("--batch-size", type=int, default=2000)
    args = parser.parse_args()

    with psycopg.connect(args.db, row_factory=dict_row) as conn:
        with conn.cursor() as cur:
            report = verify_full_chain(cur, batch_size=max(1, args.batch_size))

    if not report.ok:
        print(
            f"audit chain broken at entry {report.first_broken_id} ({report.reason}) after {report.checked} valid entries",
            file=sys.stderr,
        )
        return 1
    print(f"audit chain ok: {report.checked} entries")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
