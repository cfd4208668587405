from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_

from app.panel.audit import record_action
from app.panel.models import User
from app.panel.modules.sessions.service import revoke_user_sessions
from app.panel.security import hash_password, is_valid_email, password_errors
from app.panel.utils import parse_bool, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def _clean(value: Any) -> str:
    return (str(value) if value is not None else "").strip()


def _identity_conflicts(s: "Session", *, username: str | None, email: str | None, exclude_id: int | None = None) -> list[str]:
    errors = []
    if username:
        q = s.query(User).filter(User.username == username)
        if exclude_id is not None:
            q = q.filter(User.id != exclude_id)
        if q.first():
            errors.append("A user with this username already exists.")
    if email:
        q = s.query(User).filter(func.lower(User.email) == email.lower())
        if exclude_id is not None:
            q = q.filter(User.id != exclude_id)
        if q.first():
            errors.append("A user with this email already exists.")
    return errors


def validate_new_user(s: "Session", payload: dict) -> list[str]:
    """Validate a user-creation payload. Returns list of errors."""
    errors = []
    username = _clean(payload.get("username"))
    email = _clean(payload.get("email")).lower()
    password = payload.get("password") or ""

    if not username or not email or not password:
        errors.append("Username, email, and password are required.")
        return errors
    if len(username) > 150:
        errors.append("Username must be at most 150 characters.")
    if not is_valid_email(email):
        errors.append("Invalid email format.")
    errors.extend(password_errors(password))
    errors.extend(_identity_conflicts(s, username=username, email=email))
    return errors


def wants_admin(payload: dict) -> bool:
    if "isAdmin" in payload:
        return parse_bool(payload.get("isAdmin"))
    return _clean(payload.get("role")).lower() == "admin"


def create_user(s: "Session", payload: dict, actor: User) -> User:
    now = utcnow()
    user = User(
        username=_clean(payload.get("username")),
        email=_clean(payload.get("email")).lower(),
        password_hash=hash_password(payload.get("password") or ""),
        is_admin=wants_admin(payload),
        is_banned=False,
        login_count=0,
        created_at=now,
        updated_at=now,
    )
    s.add(user)
    s.flush()

    record_action(
        s,
        action="create_user",
        user=user,
        admin=actor,
        details=f"Created user {user.username} ({user.email})",
        metadata={"username": user.username, "email": user.email, "isAdmin": user.is_admin},
    )
    return user


def set_ban(s: "Session", user: User, actor: User, *, banned: bool, reason: str | None = None) -> int:
    """
    Ban or unban a user. Banning revokes all active sessions.
    Returns the number of sessions revoked.
    """
    user.is_banned = banned
    user.ban_reason = (reason or None) if banned else None
    user.updated_at = utcnow()

    revoked = revoke_user_sessions(s, user.id) if banned else 0
    metadata: dict[str, Any] = {"revokedSessions": revoked}
    if reason:
        metadata["reason"] = reason
    record_action(
        s,
        action="ban_user" if banned else "unban_user",
        user=user,
        admin=actor,
        details=f"{'Banned' if banned else 'Unbanned'} user {user.username} ({user.id})",
        metadata=metadata,
    )
    return revoked


def update_user(s: "Session", user: User, payload: dict, actor: User) -> tuple[list[str], list[str]]:
    """
    Apply a partial update. Returns (errors, changes); nothing is modified when errors is non-empty.
    """
    errors: list[str] = []
    is_self = user.id == actor.id

    new_username = _clean(payload["username"]) if "username" in payload else None
    new_email = _clean(payload["email"]).lower() if "email" in payload else None
    new_admin = parse_bool(payload["isAdmin"]) if payload.get("isAdmin") is not None else None
    new_banned = parse_bool(payload["isBanned"]) if payload.get("isBanned") is not None else None

    if is_self and new_admin is not None and new_admin != user.is_admin:
        errors.append("Cannot modify your own admin status.")
    if is_self and new_banned:
        errors.append("You cannot ban yourself.")
    if new_username is not None:
        if not new_username:
            errors.append("Username cannot be empty.")
        elif len(new_username) > 150:
            errors.append("Username must be at most 150 characters.")
    if new_email and not is_valid_email(new_email):
        errors.append("Invalid email format.")
    errors.extend(
        _identity_conflicts(
            s,
            username=new_username if new_username != user.username else None,
            email=new_email if new_email and new_email != (user.email or "").lower() else None,
            exclude_id=user.id,
        )
    )
    if errors:
        return errors, []

    changes: list[str] = []
    if new_username and new_username != user.username:
        changes.append(f'username from "{user.username}" to "{new_username}"')
        user.username = new_username
    if new_email is not None and (new_email or None) != user.email:
        changes.append(f'email from "{user.email}" to "{new_email or None}"')
        user.email = new_email or None

    admin_changed = new_admin is not None and new_admin != user.is_admin
    if admin_changed:
        changes.append(f"admin status to {'true' if new_admin else 'false'}")
        user.is_admin = new_admin

    ban_changed = new_banned is not None and new_banned != user.is_banned
    if ban_changed:
        changes.append(f"banned status to {'true' if new_banned else 'false'}")

    if not changes:
        return [], []

    user.updated_at = utcnow()
    record_action(
        s,
        action="update_user",
        user=user,
        admin=actor,
        details=f"Updated user: {', '.join(changes)}",
        metadata={"changes": changes},
    )
    if admin_changed:
        record_action(
            s,
            action="role_change",
            user=user,
            admin=actor,
            details=f"{'Granted' if user.is_admin else 'Revoked'} admin for {user.username} ({user.id})",
            metadata={"isAdmin": user.is_admin},
        )
    if ban_changed:
        set_ban(s, user, actor, banned=bool(new_banned), reason=_clean(payload.get("banReason")) or None)
    return [], changes


def reset_password(s: "Session", user: User, password: str, actor: User) -> int:
    """Set a new password and revoke the user's sessions. Returns sessions revoked."""
    user.password_hash = hash_password(password)
    user.updated_at = utcnow()
    revoked = revoke_user_sessions(s, user.id)
    record_action(
        s,
        action="reset_password",
        user=user,
        admin=actor,
        details=f"Reset password for user {user.username} ({user.id})",
        metadata={"revokedSessions": revoked},
    )
    return revoked


def delete_user(s: "Session", user: User, actor: User) -> None:
    # The subject row is going away, so the audit entry keeps its identity in details/metadata.
    record_action(
        s,
        action="delete_user",
        user=None,
        admin=actor,
        details=f"Deleted user {user.username} ({user.id})",
        metadata={"deletedUserId": user.id, "username": user.username, "email": user.email},
    )
    s.delete(user)


def search_users(s: "Session", search: str | None):
    q = s.query(User)
    term = (search or "").strip()
    if term:
        q = q.filter(
            or_(User.username.icontains(term, autoescape=True), User.email.icontains(term, autoescape=True))
        )
    return q
