from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import and_, delete, func, or_, select

from app.panel.modules.sessions.models import LoginSession
from app.panel.utils import utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.panel.models import User


def active_clause(now: datetime | None = None):
    now = now or utcnow()
    return and_(LoginSession.is_revoked.is_(False), LoginSession.expires_at > now)


def create_session(
    s: "Session",
    user: "User",
    *,
    ttl: timedelta,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> LoginSession:
    now = utcnow()
    session = LoginSession(
        user_id=user.id,
        token=uuid.uuid4().hex,
        ip_address=ip_address,
        user_agent=user_agent,
        expires_at=now + ttl,
        last_activity=now,
        is_revoked=False,
        created_at=now,
        updated_at=now,
    )
    s.add(session)
    s.flush()
    return session


def find_active_session(s: "Session", token: str | None) -> LoginSession | None:
    if not token:
        return None
    return s.execute(
        select(LoginSession).where(LoginSession.token == token, active_clause())
    ).scalar_one_or_none()


def touch_session(session: LoginSession) -> None:
    now = utcnow()
    session.last_activity = now
    session.updated_at = now


def revoke_session(session: LoginSession) -> None:
    now = utcnow()
    session.is_revoked = True
    session.revoked_at = now
    session.updated_at = now


def revoke_user_sessions(s: "Session", user_id: int) -> int:
    """Revoke every active session of a user. Returns how many were revoked."""
    sessions = s.execute(
        select(LoginSession).where(LoginSession.user_id == user_id, active_clause())
    ).scalars().all()
    for session in sessions:
        revoke_session(session)
    return len(sessions)


def count_active_sessions(s: "Session", user_ids: list[int] | None = None) -> int | dict[int, int]:
    """
    Without user_ids: total active sessions.
    With user_ids: {user_id: active_count} (missing users map to 0).
    """
    if user_ids is None:
        return s.execute(select(func.count(LoginSession.id)).where(active_clause())).scalar_one()
    if not user_ids:
        return {}
    rows = s.execute(
        select(LoginSession.user_id, func.count(LoginSession.id))
        .where(LoginSession.user_id.in_(user_ids), active_clause())
        .group_by(LoginSession.user_id)
    ).all()
    counts = {uid: 0 for uid in user_ids}
    counts.update({uid: int(cnt) for uid, cnt in rows})
    return counts


def purge_expired_sessions(s: "Session", *, older_than: timedelta = timedelta(days=0)) -> int:
    """Delete session rows that expired or were revoked before now - older_than."""
    cutoff = utcnow() - older_than
    result = s.execute(
        delete(LoginSession).where(
            or_(
                LoginSession.expires_at < cutoff,
                and_(LoginSession.is_revoked.is_(True), LoginSession.revoked_at < cutoff),
            )
        )
    )
    return result.rowcount or 0
