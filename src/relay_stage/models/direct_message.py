# src/relay_stage/models/direct_message.py
"""Models describing direct messages between users."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from relay_stage.db.session import Base
from relay_stage.db.time import utcnow


class DirectMessage(Base):
    """Message exchanged between two users.

    Rows are append-only; the only mutation is adding entries to ``read_by``.
    """

    __tablename__ = "direct_message"
    __table_args__ = (
        CheckConstraint("sender_user_id <> recipient_user_id", name="ck_direct_message_distinct"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sender_user_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("user_account.id"), nullable=False, index=True
    )
    recipient_user_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("user_account.id"), nullable=False, index=True
    )
    text: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachments: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    read_by: Mapped[list[MessageRead]] = relationship(
        "MessageRead",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageRead.read_at",
    )

    def is_read_by(self, user_id: str) -> bool:
        """Return True if ``user_id`` already has a read receipt."""
        return any(receipt.user_id == user_id for receipt in self.read_by)


class MessageRead(Base):
    """Read receipt for a direct message."""

    __tablename__ = "direct_message_read"

    message_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("direct_message.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("user_account.id"),
        primary_key=True,
    )
    read_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    message: Mapped[DirectMessage] = relationship("DirectMessage", back_populates="read_by")
