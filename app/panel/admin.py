import json
import os
import platform
import time

from flask import Blueprint, current_app, request
from sqlalchemy import func

from app.panel.constants import AUDIT_SORT_FIELDS, RECENT_ITEMS_LIMIT
from app.panel.db import db_session
from app.panel.models import AuditLog, User
from app.panel.rbac import require_admin
from app.panel.utils import (
    isoformat,
    json_error,
    page_args,
    pagination,
    parse_date_bound,
    parse_int,
    start_of_today,
)

bp = Blueprint("admin", __name__)


def serialize_audit_log(log: AuditLog) -> dict:
    metadata = None
    if log.metadata_json:
        try:
            metadata = json.loads(log.metadata_json)
        except ValueError:
            metadata = {"raw": log.metadata_json}
    return {
        "id": log.id,
        "action": log.action,
        "details": log.details,
        "metadata": metadata,
        "ipAddress": log.ip_address,
        "userAgent": log.user_agent,
        "userId": log.user_id,
        "username": log.user.username if log.user else "System",
        "adminId": log.admin_id,
        "adminUsername": log.admin.username if log.admin else None,
        "createdAt": isoformat(log.created_at),
    }


@bp.get("/audit-logs")
@require_admin
def audit_logs():
    """
    Paginated audit trail with filters:
    - action (exact)
    - userId / adminId
    - startDate / endDate (YYYY-MM-DD or ISO datetime; date-only endDate covers the whole day)
    """
    s = db_session()
    page, limit = page_args(request.args, default_limit=20)
    action = (request.args.get("action") or "").strip()
    user_id = parse_int(request.args.get("userId"))
    admin_id = parse_int(request.args.get("adminId"))
    try:
        start = parse_date_bound(request.args.get("startDate"))
        end = parse_date_bound(request.args.get("endDate"), end=True)
    except ValueError:
        return json_error("startDate/endDate must be YYYY-MM-DD or ISO-8601 datetimes", 400)

    q = s.query(AuditLog)
    if action:
        q = q.filter(AuditLog.action == action)
    if user_id is not None:
        q = q.filter(AuditLog.user_id == user_id)
    if admin_id is not None:
        q = q.filter(AuditLog.admin_id == admin_id)
    if start:
        q = q.filter(AuditLog.created_at >= start)
    if end:
        q = q.filter(AuditLog.created_at <= end)

    column = getattr(AuditLog, AUDIT_SORT_FIELDS.get(request.args.get("sortBy") or "", "created_at"))
    if (request.args.get("sortOrder") or "DESC").strip().upper() == "ASC":
        order = [column.asc(), AuditLog.id.asc()]
    else:
        order = [column.desc(), AuditLog.id.desc()]

    total = q.count()
    logs = q.order_by(*order).offset((page - 1) * limit).limit(limit).all()
    actions = sorted(a for (a,) in s.query(AuditLog.action).distinct().all() if a)

    return {
        "success": True,
        "data": [serialize_audit_log(x) for x in logs],
        "filters": {"actions": actions},
        "pagination": pagination(total, page, limit),
    }


@bp.get("/stats")
@require_admin
def stats():
    from app.panel.modules.sessions.service import count_active_sessions

    s = db_session()
    total_users = s.query(func.count(User.id)).scalar() or 0
    admin_users = s.query(func.count(User.id)).filter(User.is_admin.is_(True)).scalar() or 0
    banned_users = s.query(func.count(User.id)).filter(User.is_banned.is_(True)).scalar() or 0
    today_logins = (
        s.query(func.count(AuditLog.id))
        .filter(AuditLog.action == "login", AuditLog.created_at >= start_of_today())
        .scalar()
        or 0
    )
    recent = (
        s.query(AuditLog)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(RECENT_ITEMS_LIMIT)
        .all()
    )

    engine = current_app.extensions["sqlalchemy_engine"]
    started = current_app.extensions.get("started_at", time.time())
    data = {
        "totalUsers": int(total_users),
        "adminUsers": int(admin_users),
        "bannedUsers": int(banned_users),
        "activeSessions": int(count_active_sessions(s)),
        "todayLogins": int(today_logins),
        "systemStatus": "Online",
        "recentActivity": [serialize_audit_log(x) for x in recent],
        "systemInfo": {
            "pythonVersion": platform.python_version(),
            "platform": platform.platform(),
            "pid": os.getpid(),
            "uptime": round(time.time() - started, 1),
            "environment": current_app.config.get("ENV") or "development",
            "database": {
                "dialect": engine.dialect.name,
                "database": engine.url.database,
            },
        },
    }
    current_app.logger.debug(
        "Stats: users=%s active_sessions=%s today_logins=%s",
        data["totalUsers"],
        data["activeSessions"],
        data["todayLogins"],
    )
    return {"success": True, "data": data}
