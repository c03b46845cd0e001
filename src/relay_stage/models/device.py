# src/relay_stage/models/device.py
"""Push notification addresses registered by user devices."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from relay_stage.db.session import Base
from relay_stage.db.time import utcnow

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from .user import User

DEVICE_TYPES = ("android", "ios", "web")


class PushAddress(Base):
    """Device token the push gateway can deliver to."""

    __tablename__ = "push_address"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("user_account.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token: Mapped[str] = mapped_column(Text, nullable=False)
    device_type: Mapped[str] = mapped_column(String(16), nullable=False, default="android")
    device_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_used: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    user: Mapped[User] = relationship("User", back_populates="push_addresses")
