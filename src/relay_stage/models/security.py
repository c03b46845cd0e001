# src/relay_stage/models/security.py
"""Append-only log of client-reported security violations."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from relay_stage.db.session import Base
from relay_stage.db.time import utcnow

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from .user import User

VIOLATION_SCREENSHOT = "screenshot_attempt"
VIOLATION_COPY = "copy_attempt"
VIOLATION_FORWARD = "forward_attempt"
VIOLATION_UNAUTHORIZED = "unauthorized_access"
VIOLATION_MULTIPLE_LOGIN = "multiple_login_attempt"

VIOLATION_TYPES = frozenset(
    {
        VIOLATION_SCREENSHOT,
        VIOLATION_COPY,
        VIOLATION_FORWARD,
        VIOLATION_UNAUTHORIZED,
        VIOLATION_MULTIPLE_LOGIN,
    }
)


class SecurityViolation(Base):
    """Single violation event; rows are never updated except for the notify flag."""

    __tablename__ = "security_violation"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("user_account.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    device_info: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    notified_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    user: Mapped[User] = relationship("User", back_populates="violations")
