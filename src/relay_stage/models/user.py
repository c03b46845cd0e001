# src/relay_stage/models/user.py
"""SQLAlchemy models for administrators and regular users.

A user is either an ``AdminUser`` or a ``RegularUser``; both share the
``user_account`` table and are told apart by ``role``. Regular users are
bound to a single live device session, administrators may hold many.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from relay_stage.db.session import Base
from relay_stage.db.time import utcnow

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from .device import PushAddress
    from .security import SecurityViolation
    from .session import DeviceSession

ROLE_ADMIN = "admin"
ROLE_REGULAR = "regular"


def new_user_id() -> str:
    """Return a fresh opaque user identifier."""
    return uuid4().hex


class User(Base):
    """Fields shared by every account regardless of role."""

    __tablename__ = "user_account"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_user_id)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    handle: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    avatar: Mapped[str | None] = mapped_column(Text, nullable=True)
    # SHA-256 of the login key; credential plumbing lives outside this service.
    credential_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Security profile
    is_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    block_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    blocked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    screenshot_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    copy_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    forward_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    sessions: Mapped[list[DeviceSession]] = relationship(
        "DeviceSession",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="DeviceSession.id",
    )
    violations: Mapped[list[SecurityViolation]] = relationship(
        "SecurityViolation",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="SecurityViolation.id",
    )
    push_addresses: Mapped[list[PushAddress]] = relationship(
        "PushAddress",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="PushAddress.id",
    )

    __mapper_args__ = {"polymorphic_on": "role"}

    @property
    def is_admin(self) -> bool:
        """Return True for administrator accounts."""
        return self.role == ROLE_ADMIN

    @property
    def violation_count(self) -> int:
        """Return the number of recorded security violations."""
        return len(self.violations)

    @property
    def active_push_tokens(self) -> list[str]:
        """Return device tokens currently eligible for push delivery."""
        return [address.token for address in self.push_addresses if address.is_active]

    def public_profile(self) -> dict[str, object]:
        """Return the snapshot embedded into broadcast payloads."""
        return {
            "id": self.id,
            "handle": self.handle,
            "display_name": self.display_name,
            "is_admin": self.is_admin,
            "avatar": self.avatar,
        }


class AdminUser(User):
    """Operator account; exempt from single-device enforcement and push."""

    __mapper_args__ = {"polymorphic_identity": ROLE_ADMIN}


class RegularUser(User):
    """End-user account bound to one active device at a time."""

    __mapper_args__ = {"polymorphic_identity": ROLE_REGULAR}
