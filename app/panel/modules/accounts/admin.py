from __future__ import annotations

from flask import Blueprint, abort, current_app, g, request

from app.panel.admin import serialize_audit_log
from app.panel.audit import record_action
from app.panel.constants import RECENT_ITEMS_LIMIT
from app.panel.db import db_session
from app.panel.models import AuditLog, User
from app.panel.modules.accounts.service import (
    create_user,
    delete_user,
    reset_password,
    search_users,
    set_ban,
    update_user,
    validate_new_user,
)
from app.panel.modules.sessions.models import LoginSession
from app.panel.modules.sessions.service import count_active_sessions, revoke_user_sessions
from app.panel.rbac import require_admin
from app.panel.security import password_errors
from app.panel.utils import json_error, page_args, pagination, parse_bool

bp = Blueprint("accounts", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_user_or_404(user_id: int) -> User:
    user = db_session().get(User, user_id)
    if not user:
        abort(404, description="User not found")
    return user


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ---------- List ----------
@bp.get("/users")
@require_admin
def users_list():
    s = db_session()
    page, limit = page_args(request.args, default_limit=10)
    search = (request.args.get("search") or "").strip()

    q = search_users(s, search)
    total = q.count()
    users = (
        q.order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    active = count_active_sessions(s, [u.id for u in users])

    data = []
    for u in users:
        row = u.to_dict()
        row["activeSessions"] = active.get(u.id, 0)
        data.append(row)
    return {"success": True, "data": data, "pagination": pagination(total, page, limit)}


# ---------- Create ----------
@bp.post("/users")
@require_admin
def users_create():
    s = db_session()
    actor = _current_user()
    payload = _payload()

    errors = validate_new_user(s, payload)
    if errors:
        return json_error(errors[0], 400, errors=errors)

    user = create_user(s, payload, actor)
    s.commit()
    current_app.logger.info("User created (user_id=%s by admin_id=%s)", user.id, actor.id)
    return {"success": True, "data": user.to_dict()}, 201


# ---------- Detail ----------
@bp.get("/users/<int:user_id>")
@require_admin
def user_detail(user_id: int):
    s = db_session()
    user = _get_user_or_404(user_id)

    sessions = (
        s.query(LoginSession)
        .filter(LoginSession.user_id == user.id)
        .order_by(LoginSession.updated_at.desc(), LoginSession.id.desc())
        .limit(RECENT_ITEMS_LIMIT)
        .all()
    )
    activity = (
        s.query(AuditLog)
        .filter(AuditLog.user_id == user.id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(RECENT_ITEMS_LIMIT)
        .all()
    )

    data = user.to_dict()
    data["activeSessions"] = count_active_sessions(s, [user.id]).get(user.id, 0)
    data["sessions"] = [x.to_dict() for x in sessions]
    data["activityLogs"] = [serialize_audit_log(x) for x in activity]
    return {"success": True, "data": data}


# ---------- Update ----------
@bp.put("/users/<int:user_id>")
@require_admin
def user_update(user_id: int):
    s = db_session()
    actor = _current_user()
    user = _get_user_or_404(user_id)

    errors, changes = update_user(s, user, _payload(), actor)
    if errors:
        return json_error(errors[0], 400, errors=errors)
    s.commit()
    if changes:
        current_app.logger.info("User updated (user_id=%s by admin_id=%s): %s", user.id, actor.id, "; ".join(changes))
    return {"success": True, "message": "User updated successfully", "user": user.to_dict()}


# ---------- Delete ----------
@bp.delete("/users/<int:user_id>")
@require_admin
def user_delete(user_id: int):
    s = db_session()
    actor = _current_user()
    if user_id == actor.id:
        return json_error("You cannot delete your own account", 400)
    user = _get_user_or_404(user_id)

    delete_user(s, user, actor)
    s.commit()
    current_app.logger.info("User deleted (user_id=%s by admin_id=%s)", user_id, actor.id)
    return {"success": True, "message": "User deleted successfully"}


# ---------- Ban / unban ----------
@bp.post("/users/<int:user_id>/ban")
@require_admin
def user_ban(user_id: int):
    s = db_session()
    actor = _current_user()
    payload = _payload()
    banned = parse_bool(payload.get("isBanned"), default=True)
    reason = str(payload.get("reason") or "").strip() or None

    if user_id == actor.id:
        return json_error("You cannot ban/unban yourself", 400)
    user = _get_user_or_404(user_id)

    revoked = set_ban(s, user, actor, banned=banned, reason=reason)
    s.commit()
    return {
        "success": True,
        "message": f"User {'banned' if banned else 'unbanned'} successfully",
        "data": {
            "id": user.id,
            "isBanned": user.is_banned,
            "banReason": user.ban_reason,
            "revokedSessions": revoked,
        },
    }


# ---------- Password reset ----------
@bp.post("/users/<int:user_id>/password")
@require_admin
def user_reset_password(user_id: int):
    s = db_session()
    actor = _current_user()
    user = _get_user_or_404(user_id)

    password = _payload().get("password") or ""
    errors = password_errors(password)
    if errors:
        return json_error(errors[0], 400, errors=errors)

    revoked = reset_password(s, user, password, actor)
    s.commit()
    return {
        "success": True,
        "message": f"Password reset for {user.username}",
        "data": {"revokedSessions": revoked},
    }


# ---------- Terminate all sessions ----------
@bp.delete("/users/<int:user_id>/sessions")
@require_admin
def user_sessions_terminate(user_id: int):
    s = db_session()
    actor = _current_user()
    if user_id == actor.id:
        return json_error("You cannot terminate your own sessions", 400)
    user = _get_user_or_404(user_id)

    revoked = revoke_user_sessions(s, user.id)
    if revoked == 0:
        return {"success": True, "message": "No active sessions to terminate", "data": {"terminatedSessions": 0}}

    record_action(
        s,
        action="terminate_all_sessions",
        user=user,
        admin=actor,
        details=f"Terminated all ({revoked}) sessions for user {user.username} ({user.id})",
        metadata={"terminatedSessions": revoked},
    )
    s.commit()
    return {
        "success": True,
        "message": f"Terminated {revoked} active session(s)",
        "data": {"terminatedSessions": revoked},
    }
