import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.panel.constants import AUDIT_ACTIONS
from app.panel.models import AuditLog, User
from app.panel.security import client_ip, user_agent
from app.panel.utils import utcnow


def record_action(
    s: Session,
    *,
    action: str,
    user: User | int | None = None,
    admin: User | None = None,
    details: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditLog:
    """
    Append-only audit helper. `user` is the subject, `admin` the acting administrator.
    Request context (IP, user agent, request id) is captured when available.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action!r}")

    ip = ua = None
    rid = request_id
    if has_request_context():
        ip = client_ip(request)
        ua = user_agent(request)
        rid = rid or getattr(g, "request_id", None)

    ev = AuditLog(
        created_at=utcnow(),
        request_id=rid,
        user_id=user.id if isinstance(user, User) else user,
        admin_id=admin.id if admin else None,
        action=action,
        details=details,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        ip_address=ip,
        user_agent=ua,
    )
    s.add(ev)
    return ev
