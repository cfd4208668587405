from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import jwt

if TYPE_CHECKING:
    from app.panel.models import User
    from app.panel.modules.sessions.models import LoginSession

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def issue_token(user: "User", session: "LoginSession", secret: str) -> str:
    """Signed JWT bound to a session row; expires together with the session."""
    payload = {
        "userId": user.id,
        "isAdmin": bool(user.is_admin),
        "sessionId": session.token,
        "iat": _as_utc(session.created_at),
        "exp": _as_utc(session.expires_at),
    }
    raw = jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)
    return raw if isinstance(raw, str) else raw.decode("utf-8")


def decode_token(token: str | None, secret: str) -> dict[str, Any] | None:
    if not token:
        return None
    try:
        return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.debug("JWT expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning("JWT invalid: %s", e)
        return None
