# src/relay_stage/models/group.py
"""Models for chat groups and the messages posted to them."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from relay_stage.db.session import Base
from relay_stage.db.time import utcnow


class ChatGroup(Base):
    """Group with a fixed member set managed outside this service."""

    __tablename__ = "chat_group"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=lambda: uuid4().hex)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_by: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("user_account.id"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    members: Mapped[list[ChatGroupMember]] = relationship(
        "ChatGroupMember",
        back_populates="group",
        cascade="all, delete-orphan",
    )

    @property
    def member_ids(self) -> set[str]:
        """Return the identifiers of all group members."""
        return {member.user_id for member in self.members}


class ChatGroupMember(Base):
    """Membership link between a group and a user."""

    __tablename__ = "chat_group_member"

    group_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("chat_group.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("user_account.id"),
        primary_key=True,
    )

    group: Mapped[ChatGroup] = relationship("ChatGroup", back_populates="members")


class GroupMessage(Base):
    """Message posted to a group; read state lives only in the unread counters."""

    __tablename__ = "group_message"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("chat_group.id"), nullable=False, index=True
    )
    sender_user_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("user_account.id"), nullable=False
    )
    text: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachments: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
