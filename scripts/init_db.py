import os
import sys
from pathlib import Path

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.panel.models import User
from app.panel.security import hash_password
from app.panel.utils import utcnow
from scripts._db_utils import script_session


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the initial admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_username = (os.environ.get("ADMIN_USERNAME") or "trauma admin").strip()
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@trauma.network").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///trauma.db").strip()

    # Use a direct engine/session so this can run in release without building the Flask app.
    with script_session(db_url) as s:
        user = s.query(User).filter(User.username == admin_username).one_or_none()
        if not user:
            now = utcnow()
            user = User(
                username=admin_username,
                email=admin_email,
                password_hash=hash_password(admin_password),
                is_admin=True,
                is_banned=False,
                login_count=0,
                created_at=now,
                updated_at=now,
            )
            s.add(user)
            print("Admin user created.")
        else:
            if not user.is_admin:
                user.is_admin = True
                user.updated_at = utcnow()
            print("Admin user already exists.")

    print("Initialized database (seed_only).")
    print(f"Admin username: {admin_username}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
