from __future__ import annotations

import re
import uuid
from collections.abc import Mapping
from datetime import timedelta

from flask import Blueprint, current_app, g, request
from sqlalchemy import func, or_

from app.panel.audit import record_action
from app.panel.db import db_session
from app.panel.models import User
from app.panel.modules.sessions.service import (
    create_session,
    find_active_session,
    revoke_session,
    touch_session,
)
from app.panel.rbac import require_auth
from app.panel.security import LoginRateLimiter, bearer_token, client_ip, user_agent, verify_password
from app.panel.tokens import decode_token, issue_token
from app.panel.utils import isoformat, json_error, utcnow

bp = Blueprint("auth", __name__)

# Client-supplied X-Request-ID values must fit audit_logs.request_id.
_REQUEST_ID_RE = re.compile(r"[A-Za-z0-9._:-]{1,64}")


def _rate_limiter() -> LoginRateLimiter:
    limiter = current_app.extensions.get("login_rate_limiter")
    if limiter is None:
        limiter = LoginRateLimiter(
            current_app.config.get("LOGIN_RATE_LIMIT", 5),
            current_app.config.get("LOGIN_RATE_WINDOW", 300),
        )
        current_app.extensions["login_rate_limiter"] = limiter
    return limiter


def _session_ttl() -> timedelta:
    return timedelta(days=int(current_app.config.get("SESSION_TTL_DAYS", 7)))


def _public_user(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "isAdmin": bool(user.is_admin),
        "lastLogin": isoformat(user.last_login),
        "loginCount": user.login_count or 0,
    }


def load_current_user() -> None:
    """
    Resolves g.current_user / g.current_session from the bearer JWT.
    The token only counts while its session row is active and the user is not banned.
    """
    g.current_user = None
    g.current_session = None

    token = bearer_token(request)
    if not token:
        return

    claims = decode_token(token, current_app.config["JWT_SECRET"])
    if not claims or not claims.get("sessionId"):
        return

    try:
        s = db_session()
        session = find_active_session(s, str(claims["sessionId"]))
        if session is None:
            current_app.logger.info("Rejected token for inactive session (request_id=%s)", g.request_id)
            return
        user = session.user
        if user is None or user.id != claims.get("userId") or user.is_banned:
            current_app.logger.warning(
                "Rejected token: user mismatch or banned (session_id=%s request_id=%s)", session.id, g.request_id
            )
            return
        touch_session(session)
        s.commit()
        g.current_user = user
        g.current_session = session
    except Exception as e:
        current_app.logger.error("load_current_user DB error (treating as anonymous): %s", e)
        g.current_user = None
        g.current_session = None


def assign_request_id() -> None:
    if getattr(g, "request_id", None):
        return
    supplied = (request.headers.get("X-Request-ID") or "").strip()
    g.request_id = supplied if _REQUEST_ID_RE.fullmatch(supplied) else uuid.uuid4().hex


def _credential(payload: Mapping, name: str) -> str:
    value = payload.get(name)
    return value if isinstance(value, str) else ""


@bp.post("/login")
def login():
    payload = request.get_json(silent=True)
    if payload is None:
        payload = request.form
    if not isinstance(payload, Mapping):
        return json_error("Request body must be a JSON object", 400)
    username = _credential(payload, "username").strip()
    password = _credential(payload, "password")
    ip = client_ip(request) or "unknown"

    if not username or not password:
        return json_error("Username and password are required", 400)

    limiter = _rate_limiter()
    if limiter.is_limited(ip):
        current_app.logger.warning("Login rate limit hit (ip=%s)", ip)
        return json_error("Too many login attempts. Please wait and try again.", 429)

    try:
        s = db_session()
        user = (
            s.query(User)
            .filter(or_(User.username == username, func.lower(User.email) == username.lower()))
            .first()
        )
        if not user or user.is_banned or not verify_password(user.password_hash, password):
            limiter.record_failure(ip)
            if not user:
                reason = "unknown user"
            elif user.is_banned:
                reason = "banned user"
            else:
                reason = "invalid password"
            record_action(
                s,
                action="login_failed",
                user=user,
                details=f"Failed login attempt - {reason}",
                metadata={"username": username},
            )
            s.commit()
            current_app.logger.warning("Failed login (username=%s ip=%s reason=%s)", username, ip, reason)
            return json_error("Invalid credentials", 401)

        session = create_session(s, user, ttl=_session_ttl(), ip_address=ip, user_agent=user_agent(request))
        now = utcnow()
        user.last_login = now
        user.login_count = (user.login_count or 0) + 1
        user.updated_at = now
        record_action(s, action="login", user=user, details="User logged in successfully")
        s.commit()
        limiter.reset(ip)

        token = issue_token(user, session, current_app.config["JWT_SECRET"])
        current_app.logger.info("Login ok (user_id=%s session_id=%s)", user.id, session.id)
        return {
            "success": True,
            "user": _public_user(user),
            "token": token,
            "expiresAt": isoformat(session.expires_at),
        }
    except Exception:
        current_app.logger.exception("Login crashed (username=%s request_id=%s)", username, getattr(g, "request_id", None))
        raise


@bp.get("/me")
@require_auth
def me():
    return {"success": True, "user": _public_user(g.current_user)}


@bp.post("/logout")
def logout():
    session = getattr(g, "current_session", None)
    user = getattr(g, "current_user", None)
    if session is not None and user is not None:
        s = db_session()
        revoke_session(session)
        record_action(s, action="logout", user=user, details="User logged out")
        s.commit()
        current_app.logger.info("Logout (user_id=%s session_id=%s)", user.id, session.id)
    return {"success": True, "message": "Logged out successfully"}


@bp.get("/check-session")
def check_session():
    if not bearer_token(request):
        return {"valid": False}, 401
    user = getattr(g, "current_user", None)
    if user is None:
        return {"valid": False}
    return {
        "valid": True,
        "user": {"id": user.id, "username": user.username, "isAdmin": bool(user.is_admin)},
    }
