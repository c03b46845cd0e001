"""Authorization rules for sending messages.

Rules are applied in a fixed order and have no side effects:

1. a blocked sender is rejected outright;
2. regular users may only message administrators, administrators may
   message anyone;
3. group senders must be members of an active group;
4. every recipient must exist and must not be soft-deleted.
"""

from __future__ import annotations

import logging

from relay_stage.models import ChatGroup, User
from relay_stage.services.directory import UserDirectory
from relay_stage.services.errors import BlockedError, ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)


class PermissionEngine:
    """Decide whether a sender may reach a user or a group."""

    def __init__(self, directory: UserDirectory) -> None:
        self.directory = directory

    @staticmethod
    def ensure_not_blocked(sender: User) -> None:
        if sender.is_blocked:
            raise BlockedError(reason=sender.block_reason)

    def authorize_direct(self, sender: User, recipient_id: str) -> User:
        """Return the recipient if ``sender`` may message them directly."""
        self.ensure_not_blocked(sender)
        recipient = self.directory.find(recipient_id)
        if recipient is None:
            raise NotFoundError("Recipient not found")
        self.check_direct_pair(sender, recipient)
        return recipient

    @staticmethod
    def check_direct_pair(sender: User, recipient: User) -> None:
        """Apply the role rule to an already-resolved pair."""
        if sender.id == recipient.id:
            raise ForbiddenError("Cannot send a message to yourself")
        if not sender.is_admin and not recipient.is_admin:
            raise ForbiddenError("Regular users can only send messages to admins")

    def authorize_group(self, sender: User, group_id: str) -> tuple[ChatGroup, list[User]]:
        """Return the group and the members to fan out to (sender excluded)."""
        self.ensure_not_blocked(sender)
        group = self.directory.get_group(group_id)
        if not group.is_active:
            raise ForbiddenError("Group is not active")
        member_ids = group.member_ids
        if sender.id not in member_ids:
            raise ForbiddenError("You are not a member of this group")

        others = member_ids - {sender.id}
        found = self.directory.get_many(others)
        missing = others - set(found)
        if missing:
            logger.info("Group %s has %d missing or deleted member(s)", group.id, len(missing))
            raise NotFoundError("Group member not found")
        return group, [found[member_id] for member_id in sorted(others)]

    def can_read_group(self, reader: User, group_id: str) -> ChatGroup:
        """Return the group if ``reader`` is one of its members."""
        self.ensure_not_blocked(reader)
        group = self.directory.get_group(group_id)
        if reader.id not in group.member_ids:
            raise ForbiddenError("You are not a member of this group")
        return group

    def can_open_conversation(self, reader: User, partner_id: str) -> User:
        """Return the partner if ``reader`` may open a conversation with them."""
        self.ensure_not_blocked(reader)
        partner = self.directory.get(partner_id)
        if not reader.is_admin and not partner.is_admin:
            raise ForbiddenError("Regular users can only chat with admins")
        return partner
