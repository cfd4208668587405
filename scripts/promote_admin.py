#!/usr/bin/env python3
"""Grant (or with --revoke, remove) the admin flag on a user (idempotent).

Usage:
  python scripts/promote_admin.py --username "jane"
"""

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.panel.models import User
from app.panel.utils import utcnow
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--username", required=True, help="Username to promote")
    parser.add_argument("--revoke", action="store_true", help="Remove admin instead of granting it")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///trauma.db").strip()
    with script_session(db_url) as s:
        user = s.query(User).filter(User.username == args.username).one_or_none()
        if not user:
            print(f"User not found: {args.username}")
            return
        target = not args.revoke
        if user.is_admin == target:
            print(f"No change: {args.username} is_admin={user.is_admin}")
            return
        user.is_admin = target
        user.updated_at = utcnow()
        print(f"{args.username}: is_admin={target}")


if __name__ == "__main__":
    main()
