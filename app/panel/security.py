from __future__ import annotations

import re
import threading
from datetime import datetime, timedelta

from flask import Request
from werkzeug.security import check_password_hash, generate_password_hash

from app.panel.constants import PASSWORD_MAX_LENGTH, PASSWORD_MIN_LENGTH
from app.panel.utils import utcnow

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    if not password_hash or not password or not isinstance(password, str):
        return False
    return check_password_hash(password_hash, password)


def password_errors(password: object) -> list[str]:
    if password is None or password == "":
        return ["Password is required."]
    if not isinstance(password, str):
        return ["Password must be a string."]
    if not (PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH):
        return [f"Password must be between {PASSWORD_MIN_LENGTH} and {PASSWORD_MAX_LENGTH} characters."]
    return []


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email))


def bearer_token(req: Request) -> str | None:
    """Token from `Authorization: Bearer <token>`, or None."""
    header = (req.headers.get("Authorization") or "").strip()
    if not header.lower().startswith("bearer "):
        return None
    token = header[7:].strip()
    return token or None


def client_ip(req: Request) -> str | None:
    """
    Peer address as seen by the WSGI server. Behind a proxy, TRUSTED_PROXY_HOPS
    wraps the app in ProxyFix so remote_addr is already the forwarded client.
    """
    return (req.remote_addr or "")[:45] or None


def user_agent(req: Request) -> str | None:
    return req.headers.get("User-Agent") or None


class LoginRateLimiter:
    """Sliding-window count of failed logins per client IP."""

    def __init__(self, limit: int, window_seconds: int) -> None:
        self.limit = limit
        self.window = timedelta(seconds=window_seconds)
        self._attempts: dict[str, list[datetime]] = {}
        self._lock = threading.Lock()

    def _recent(self, ip: str) -> list[datetime]:
        # Caller holds the lock. IPs with no attempts left in the window are dropped.
        cutoff = utcnow() - self.window
        recent = [t for t in self._attempts.get(ip, ()) if t > cutoff]
        if recent:
            self._attempts[ip] = recent
        else:
            self._attempts.pop(ip, None)
        return recent

    def is_limited(self, ip: str) -> bool:
        with self._lock:
            return len(self._recent(ip)) >= self.limit

    def record_failure(self, ip: str) -> None:
        with self._lock:
            attempts = self._recent(ip)
            attempts.append(utcnow())
            self._attempts[ip] = attempts

    def reset(self, ip: str) -> None:
        with self._lock:
            self._attempts.pop(ip, None)
