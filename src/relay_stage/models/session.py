# src/relay_stage/models/session.py
"""Device-bound session descriptors."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, SmallInteger, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from relay_stage.db.session import Base
from relay_stage.db.time import utcnow

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from .user import User

SESSION_STATE_ACTIVE = 0
SESSION_STATE_REVOKED = 1
SESSION_STATE_SUPERSEDED = 2


class DeviceSession(Base):
    """Session token bound to the device fingerprint it was issued for."""

    __tablename__ = "device_session"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("user_account.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    device_fingerprint: Mapped[str] = mapped_column(String(255), nullable=False)
    # Only the digest of the opaque session token is kept.
    session_token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    device_info: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    # 0 = active, 1 = revoked (logout/explicit), 2 = superseded by another device.
    state: Mapped[int] = mapped_column(
        SmallInteger,
        nullable=False,
        default=SESSION_STATE_ACTIVE,
    )
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped[User] = relationship("User", back_populates="sessions")

    @property
    def is_active(self) -> bool:
        """Return True while the session may authenticate requests."""
        return self.state == SESSION_STATE_ACTIVE

    def end(self, state: int) -> None:
        """Move an active session to a terminal state; ended sessions stay ended."""
        if state == SESSION_STATE_ACTIVE:
            raise ValueError("A session cannot be reactivated")
        if self.is_active:
            self.state = state
            self.ended_at = utcnow()
