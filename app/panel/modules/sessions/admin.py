from __future__ import annotations

from flask import Blueprint, abort, current_app, g, request

from app.panel.audit import record_action
from app.panel.constants import SESSION_SORT_FIELDS
from app.panel.db import db_session
from app.panel.models import User
from app.panel.modules.sessions.models import LoginSession
from app.panel.modules.sessions.service import active_clause, revoke_session
from app.panel.rbac import require_admin
from app.panel.utils import json_error, page_args, pagination, parse_bool, parse_int

bp = Blueprint("sessions", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/sessions")
@require_admin
def sessions_list():
    s = db_session()
    page, limit = page_args(request.args, default_limit=20)
    user_id = parse_int(request.args.get("userId"))
    active_only = parse_bool(request.args.get("activeOnly"), default=True)
    sort_field = SESSION_SORT_FIELDS.get(request.args.get("sortBy") or "", "updated_at")
    descending = (request.args.get("sortOrder") or "DESC").strip().upper() != "ASC"

    q = s.query(LoginSession)
    if user_id is not None:
        q = q.filter(LoginSession.user_id == user_id)
    if active_only:
        q = q.filter(active_clause())

    column = getattr(LoginSession, sort_field)
    order = [column.desc(), LoginSession.id.desc()] if descending else [column.asc(), LoginSession.id.asc()]
    total = q.count()
    sessions = q.order_by(*order).offset((page - 1) * limit).limit(limit).all()

    return {
        "success": True,
        "data": [x.to_dict() for x in sessions],
        "pagination": pagination(total, page, limit),
    }


@bp.post("/sessions/<int:session_id>/revoke")
@bp.delete("/sessions/<int:session_id>")
@require_admin
def session_revoke(session_id: int):
    s = db_session()
    actor = _current_user()

    session = s.query(LoginSession).filter(LoginSession.id == session_id, active_clause()).one_or_none()
    if session is None:
        abort(404, description="Active session not found")
    if session.user_id == actor.id:
        return json_error("Cannot revoke your own active session", 400)

    revoke_session(session)
    username = session.user.username if session.user else "Unknown"
    record_action(
        s,
        action="kick_user",
        user=session.user_id,
        admin=actor,
        details=f"Revoked session for user {username} (IP: {session.ip_address or 'unknown'})",
        metadata={
            "sessionId": session.id,
            "targetIp": session.ip_address,
            "userAgent": session.user_agent,
        },
    )
    s.commit()
    current_app.logger.info("Session revoked (session_id=%s by admin_id=%s)", session.id, actor.id)
    return {"success": True, "message": "Session revoked successfully"}
