#!/usr/bin/env python3
"""Delete session rows that expired or were revoked more than --days ago.

Run from cron (e.g. every 15 minutes) to keep the sessions table small.

Usage:
  python scripts/purge_expired_sessions.py --days 30
  python scripts/purge_expired_sessions.py --days 0 --dry-run
"""

from __future__ import annotations

import argparse
import os
import sys
from datetime import timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.panel.modules.sessions.service import purge_expired_sessions
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--days", type=int, default=0, help="Keep rows that ended within this many days")
    parser.add_argument("--dry-run", action="store_true", help="Report the count and roll back")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///trauma.db").strip()
    with script_session(db_url) as s:
        deleted = purge_expired_sessions(s, older_than=timedelta(days=args.days))
        if args.dry_run:
            s.rollback()
            print(f"[dry-run] Would delete {deleted} session row(s).")
            return
    print(f"Deleted {deleted} session row(s).")


if __name__ == "__main__":
    main()
