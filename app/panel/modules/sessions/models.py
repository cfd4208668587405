from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.panel.models import Base
from app.panel.utils import isoformat, utcnow

if TYPE_CHECKING:
    from app.panel.models import User


class LoginSession(Base):
    """
    Server-side record of one login. The JWT carries `token` as its sessionId claim,
    so revoking or expiring this row invalidates the JWT.
    """

    __tablename__ = "sessions"
    __table_args__ = (
        Index("ix_sessions_user_id", "user_id"),
        Index("ix_sessions_expires_at", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    last_activity: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    is_revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    user: Mapped["User"] = relationship("User", back_populates="sessions", lazy="joined")

    def is_active(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return not self.is_revoked and self.expires_at > now

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "username": self.user.username if self.user else "Unknown",
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "lastActivity": isoformat(self.last_activity),
            "expiresAt": isoformat(self.expires_at),
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
            "isRevoked": bool(self.is_revoked),
            "isActive": self.is_active(),
        }
