from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.panel.utils import utcnow

if TYPE_CHECKING:
    from app.panel.modules.sessions.models import LoginSession


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_banned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ban_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)

    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    login_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    sessions: Mapped[list["LoginSession"]] = relationship(
        "LoginSession",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="select",
    )
    # Audit rows outlive the user; SQLAlchemy nulls the FK on delete.
    audit_entries: Mapped[list["AuditLog"]] = relationship(
        "AuditLog",
        back_populates="user",
        foreign_keys="AuditLog.user_id",
        lazy="select",
    )
    admin_actions: Mapped[list["AuditLog"]] = relationship(
        "AuditLog",
        back_populates="admin",
        foreign_keys="AuditLog.admin_id",
        lazy="select",
    )

    def to_dict(self) -> dict:
        from app.panel.utils import isoformat

        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "isAdmin": bool(self.is_admin),
            "isBanned": bool(self.is_banned),
            "banReason": self.ban_reason,
            "lastLogin": isoformat(self.last_login),
            "loginCount": self.login_count or 0,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }


class AuditLog(Base):
    """
    Append-only record of authentication and administrative actions.
    `user_id` is the subject of the action, `admin_id` the administrator who performed it.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_user_id", "user_id"),
        Index("ix_audit_logs_admin_id", "admin_id"),
        Index("ix_audit_logs_action", "action"),
        Index("ix_audit_logs_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    admin_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    action: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "ban_user"
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string

    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    user: Mapped[User | None] = relationship(
        User, back_populates="audit_entries", foreign_keys=[user_id], lazy="joined"
    )
    admin: Mapped[User | None] = relationship(
        User, back_populates="admin_actions", foreign_keys=[admin_id], lazy="joined"
    )


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.panel.modules.sessions.models import LoginSession  # noqa: E402,F401
