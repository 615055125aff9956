"""
User model: credentials, role, activation state and one-time tokens.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from rankhub.db.base import Base

ADMIN_ROLES = frozenset({"admin", "super_admin"})


class User(Base):
    __tablename__ = "users"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    email: str = Column(String(320), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    name: str = Column(String(200), nullable=False)  # type: ignore[assignment]
    # NULL for accounts provisioned outside the password flow
    password_hash: str | None = Column(String(255), nullable=True)  # type: ignore[assignment]
    role: str = Column(  # type: ignore[assignment]
        String(20),
        nullable=False,
        default="user",
        server_default="user",
    )  # user | admin | super_admin
    is_active: bool = Column(Boolean, nullable=False, default=True, server_default="true", index=True)  # type: ignore[assignment]
    confirm_token: str | None = Column(String(255), nullable=True, index=True)  # type: ignore[assignment]
    password_reset_token: str | None = Column(String(255), nullable=True, index=True)  # type: ignore[assignment]
    password_reset_expires: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    last_login_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    refresh_tokens = relationship(
        "RefreshToken",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES
