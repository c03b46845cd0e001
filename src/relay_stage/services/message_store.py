"""Durable, append-only storage for direct and group messages."""
from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from relay_stage.core.settings import settings
from relay_stage.db.time import utcnow
from relay_stage.models import DirectMessage, GroupMessage, MessageRead
from relay_stage.services.errors import PersistenceFailureError, ValidationFailedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageBody:
    """Validated message content: trimmed text and/or attachments."""

    text: str | None
    attachments: list[dict[str, Any]]


ATTACHMENT_TYPES = frozenset({"image", "pdf", "excel", "document"})
ALLOWED_MIME_TYPES = frozenset(
    {
        # Images
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/webp",
        # PDFs
        "application/pdf",
        # Spreadsheets
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        # Documents
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    }
)
ATTACHMENT_NAME_MAX = 255


def _validate_attachment(raw: Mapping[str, Any]) -> dict[str, Any]:
    kind = raw.get("type")
    if kind not in ATTACHMENT_TYPES:
        raise ValidationFailedError(f"Unsupported attachment type: {kind!r}")

    url = str(raw.get("url") or "").strip()
    parsed = urlsplit(url)
    if not (parsed.scheme and parsed.netloc):
        raise ValidationFailedError("Invalid attachment URL")

    name = str(raw.get("name") or "").strip()
    if not name or len(name) > ATTACHMENT_NAME_MAX:
        raise ValidationFailedError(
            f"Attachment name must be between 1 and {ATTACHMENT_NAME_MAX} characters"
        )

    size = raw.get("size")
    if isinstance(size, bool) or not isinstance(size, int):
        raise ValidationFailedError("Attachment size is out of range")
    if not 1 <= size <= settings.attachment_max_bytes:
        raise ValidationFailedError("Attachment size is out of range")

    mime_type = raw.get("mime_type")
    if mime_type not in ALLOWED_MIME_TYPES:
        raise ValidationFailedError("Unsupported file type")

    return {"type": kind, "url": url, "name": name, "size": size, "mime_type": mime_type}


def build_message_body(
    text: str | None,
    attachments: Sequence[Mapping[str, Any]] | None = None,
) -> MessageBody:
    """Validate and normalize message content.

    Text is trimmed; at least one of text or attachments must remain.
    """
    normalized = text.strip() if isinstance(text, str) else ""
    if len(normalized) > settings.message_max_length:
        raise ValidationFailedError(
            f"Message cannot be more than {settings.message_max_length} characters"
        )
    checked = [_validate_attachment(item) for item in attachments or ()]
    if not normalized and not checked:
        raise ValidationFailedError("Either text or an attachment is required")
    return MessageBody(text=normalized or None, attachments=checked)


class MessageStore:
    """Authoritative record of every delivered message."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _commit(self, record: DirectMessage | GroupMessage) -> None:
        try:
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Durable message store rejected write: %s", exc, exc_info=True)
            raise PersistenceFailureError("Message could not be persisted") from exc

    def append_direct(self, sender_id: str, recipient_id: str, body: MessageBody) -> DirectMessage:
        """Persist a direct message and return it with its assigned id."""
        if sender_id == recipient_id:
            raise ValidationFailedError("Sender and recipient must differ")
        message = DirectMessage(
            sender_user_id=sender_id,
            recipient_user_id=recipient_id,
            text=body.text,
            attachments=list(body.attachments),
            created_at=utcnow(),
        )
        self._commit(message)
        return message

    def append_group(self, sender_id: str, group_id: str, body: MessageBody) -> GroupMessage:
        """Persist a group message and return it with its assigned id."""
        message = GroupMessage(
            group_id=group_id,
            sender_user_id=sender_id,
            text=body.text,
            attachments=list(body.attachments),
            created_at=utcnow(),
        )
        self._commit(message)
        return message

    def query_conversation(self, user_a: str, user_b: str) -> Sequence[DirectMessage]:
        """Return both directions of a conversation, oldest first."""
        stmt = (
            select(DirectMessage)
            .options(selectinload(DirectMessage.read_by))
            .where(
                or_(
                    and_(
                        DirectMessage.sender_user_id == user_a,
                        DirectMessage.recipient_user_id == user_b,
                    ),
                    and_(
                        DirectMessage.sender_user_id == user_b,
                        DirectMessage.recipient_user_id == user_a,
                    ),
                )
            )
            .order_by(DirectMessage.id)
        )
        return self.db.scalars(stmt).all()

    def query_group(self, group_id: str) -> Sequence[GroupMessage]:
        """Return every message posted to ``group_id``, oldest first."""
        stmt = (
            select(GroupMessage)
            .where(GroupMessage.group_id == group_id)
            .order_by(GroupMessage.id)
        )
        return self.db.scalars(stmt).all()

    def mark_read(self, sender_id: str, recipient_id: str, reader_id: str) -> int:
        """Add a read receipt from ``reader_id`` to unread messages sender→recipient.

        Returns the number of messages newly marked; receipts are never duplicated.
        """
        stmt = (
            select(DirectMessage)
            .options(selectinload(DirectMessage.read_by))
            .where(
                DirectMessage.sender_user_id == sender_id,
                DirectMessage.recipient_user_id == recipient_id,
            )
        )
        marked = 0
        read_at = utcnow()
        for message in self.db.scalars(stmt).all():
            if message.is_read_by(reader_id):
                continue
            message.read_by.append(MessageRead(user_id=reader_id, read_at=read_at))
            marked += 1
        if marked:
            self.db.commit()
        return marked

    def sent_by(self, user_id: str, limit: int = 100) -> Sequence[DirectMessage]:
        stmt = (
            select(DirectMessage)
            .where(DirectMessage.sender_user_id == user_id)
            .order_by(DirectMessage.id.desc())
            .limit(limit)
        )
        return self.db.scalars(stmt).all()

    def received_by(self, user_id: str, limit: int = 100) -> Sequence[DirectMessage]:
        stmt = (
            select(DirectMessage)
            .where(DirectMessage.recipient_user_id == user_id)
            .order_by(DirectMessage.id.desc())
            .limit(limit)
        )
        return self.db.scalars(stmt).all()

    def conversations_for(self, user_id: str) -> dict[str, list[DirectMessage]]:
        """Group every message involving ``user_id`` by conversation partner."""
        stmt = (
            select(DirectMessage)
            .where(
                or_(
                    DirectMessage.sender_user_id == user_id,
                    DirectMessage.recipient_user_id == user_id,
                )
            )
            .order_by(DirectMessage.id)
        )
        grouped: dict[str, list[DirectMessage]] = {}
        for message in self.db.scalars(stmt):
            partner = (
                message.recipient_user_id
                if message.sender_user_id == user_id
                else message.sender_user_id
            )
            grouped.setdefault(partner, []).append(message)
        return grouped
