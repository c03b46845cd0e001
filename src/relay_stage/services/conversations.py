"""Read paths and mark-read actions over the durable store and counters."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy.orm import Session

from relay_stage.models import DirectMessage, GroupMessage, User
from relay_stage.services.directory import UserDirectory
from relay_stage.services.message_store import MessageStore
from relay_stage.services.permissions import PermissionEngine
from relay_stage.services.unread import UnreadCounterService, get_unread_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationSummary:
    partner: User
    last_message: DirectMessage
    message_count: int
    unread_count: int


class ConversationService:
    """History, conversation list and mark-read for an authenticated reader."""

    def __init__(
        self,
        db: Session,
        *,
        directory: UserDirectory | None = None,
        unread: UnreadCounterService | None = None,
    ) -> None:
        self.directory = directory or UserDirectory(db)
        self.permissions = PermissionEngine(self.directory)
        self.message_store = MessageStore(db)
        self.unread = unread or get_unread_service()

    def direct_history(self, reader: User, partner_id: str) -> Sequence[DirectMessage]:
        partner = self.permissions.can_open_conversation(reader, partner_id)
        return self.message_store.query_conversation(reader.id, partner.id)

    def group_history(self, reader: User, group_id: str) -> Sequence[GroupMessage]:
        group = self.permissions.can_read_group(reader, group_id)
        return self.message_store.query_group(group.id)

    def conversations(self, reader: User) -> list[ConversationSummary]:
        """Return one summary per partner, most recent conversation first."""
        self.permissions.ensure_not_blocked(reader)
        grouped = self.message_store.conversations_for(reader.id)
        partners = self.directory.get_many(grouped)
        counts = self.unread.get(reader.id)

        summaries = [
            ConversationSummary(
                partner=partners[partner_id],
                last_message=messages[-1],
                message_count=len(messages),
                unread_count=counts.direct.get(partner_id, 0),
            )
            for partner_id, messages in grouped.items()
            if partner_id in partners
        ]
        summaries.sort(key=lambda item: item.last_message.id, reverse=True)
        return summaries

    def sent(self, reader: User, limit: int = 100) -> Sequence[DirectMessage]:
        self.permissions.ensure_not_blocked(reader)
        return self.message_store.sent_by(reader.id, limit)

    def received(self, reader: User, limit: int = 100) -> Sequence[DirectMessage]:
        self.permissions.ensure_not_blocked(reader)
        return self.message_store.received_by(reader.id, limit)

    def mark_direct_read(self, reader: User, partner_id: str) -> int:
        """Record read receipts for the partner's messages and clear the counter."""
        partner = self.permissions.can_open_conversation(reader, partner_id)
        marked = self.message_store.mark_read(partner.id, reader.id, reader.id)
        self.unread.clear_direct(reader.id, partner.id)
        logger.debug("User %s read %d message(s) from %s", reader.id, marked, partner.id)
        return marked

    def mark_group_read(self, reader: User, group_id: str) -> None:
        """Group read state lives only in the counters."""
        group = self.permissions.can_read_group(reader, group_id)
        self.unread.clear_group(reader.id, group.id)
