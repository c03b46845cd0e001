"""Delivery of direct and group messages across the two stores.

Persisting to the durable store is the only step that must succeed; a
failure there aborts the send. Broadcast publish, unread counter increments
and push notifications are then dispatched as independent side effects whose
outcomes are reported on the ``DeliveryReceipt``. Group messages are
published once to the group feed, and every other member gets their own
counter and push tasks so one slow or failing member never holds up another.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from sqlalchemy.orm import Session

from relay_stage.core.settings import settings
from relay_stage.db.time import to_iso
from relay_stage.models import ChatGroup, DirectMessage, GroupMessage, User
from relay_stage.services.broadcast import (
    BroadcastStore,
    direct_chat_path,
    get_broadcast_store,
    group_chat_path,
)
from relay_stage.services.directory import UserDirectory
from relay_stage.services.message_store import MessageStore, build_message_body
from relay_stage.services.permissions import PermissionEngine
from relay_stage.services.push import PushGateway, get_push_gateway, preview
from relay_stage.services.side_effects import (
    STEP_BROADCAST,
    STEP_COUNTER,
    STEP_PUSH,
    SideEffectRunner,
    StepResult,
    get_side_effect_runner,
)
from relay_stage.services.unread import UnreadCounterService

logger = logging.getLogger(__name__)

MessageKind = Literal["direct", "group"]


@dataclass
class DeliveryReceipt:
    """Identity of a persisted message plus best-effort delivery flags.

    Flags are ``None`` while the side effects are still running or when a
    step did not apply (no push for admins, for users without a device or
    while the push gateway is disabled).
    """

    message_id: int
    kind: MessageKind
    broadcast_path: str
    broadcast_key: str
    created_at: datetime
    recipient_ids: list[str]
    broadcast_ok: bool | None = None
    counters_ok: bool | None = None
    push_ok: bool | None = None
    failures: list[StepResult] = field(default_factory=list)
    _tasks: list[asyncio.Task[StepResult]] = field(default_factory=list, repr=False)

    @property
    def settled(self) -> bool:
        return all(task.done() for task in self._tasks)

    @property
    def degraded(self) -> bool:
        """Return True if any settled side effect failed."""
        return False in (self.broadcast_ok, self.counters_ok, self.push_ok)

    async def settle(self) -> DeliveryReceipt:
        """Wait for every side effect and fill in the flags."""
        results = list(await asyncio.gather(*self._tasks)) if self._tasks else []
        self._apply(results)
        return self

    def _apply(self, results: Sequence[StepResult]) -> None:
        by_step: dict[str, list[bool]] = {}
        for result in results:
            by_step.setdefault(result.step, []).append(result.ok)
        self.failures = [result for result in results if not result.ok]

        def _flag(step: str) -> bool | None:
            outcomes = by_step.get(step)
            return all(outcomes) if outcomes else None

        self.broadcast_ok = _flag(STEP_BROADCAST)
        self.counters_ok = _flag(STEP_COUNTER)
        self.push_ok = _flag(STEP_PUSH)
        if self.failures:
            logger.warning(
                "Message %s/%s delivered degraded: %s",
                self.kind,
                self.message_id,
                ", ".join(f"{item.step}:{item.target}" for item in self.failures),
            )


def _sender_label(user: User) -> str:
    return user.display_name or user.handle


def direct_payload(message: DirectMessage, sender: User, recipient: User) -> dict[str, Any]:
    """Denormalized copy of a direct message for the broadcast feed."""
    return {
        "id": message.id,
        "sender": sender.public_profile(),
        "recipient": recipient.public_profile(),
        "text": message.text,
        "attachments": list(message.attachments or []),
        "created_at": to_iso(message.created_at),
        "read": False,
    }


def group_payload(message: GroupMessage, sender: User, group: ChatGroup) -> dict[str, Any]:
    """Denormalized copy of a group message for the group feed."""
    return {
        "id": message.id,
        "group_id": group.id,
        "group_name": group.name,
        "sender": sender.public_profile(),
        "text": message.text,
        "attachments": list(message.attachments or []),
        "created_at": to_iso(message.created_at),
    }


class DeliveryCoordinator:
    """Persist, then publish, count and notify."""

    def __init__(
        self,
        db: Session,
        *,
        directory: UserDirectory | None = None,
        message_store: MessageStore | None = None,
        broadcast: BroadcastStore | None = None,
        unread: UnreadCounterService | None = None,
        push_gateway: PushGateway | None = None,
        runner: SideEffectRunner | None = None,
        await_side_effects: bool | None = None,
    ) -> None:
        self.db = db
        self.directory = directory or UserDirectory(db)
        self.permissions = PermissionEngine(self.directory)
        self.message_store = message_store or MessageStore(db)
        self.broadcast = broadcast or get_broadcast_store()
        self.unread = unread or UnreadCounterService(self.broadcast)
        self.push_gateway = push_gateway or get_push_gateway()
        self.runner = runner or get_side_effect_runner()
        self.await_side_effects = (
            settings.delivery_await_side_effects
            if await_side_effects is None
            else await_side_effects
        )

    async def send_direct(
        self,
        sender: User,
        recipient_id: str,
        text: str | None,
        attachments: Sequence[Mapping[str, Any]] | None = None,
    ) -> DeliveryReceipt:
        """Deliver a direct message from ``sender`` to ``recipient_id``."""
        recipient = self.permissions.authorize_direct(sender, recipient_id)
        body = build_message_body(text, attachments)
        message = self.message_store.append_direct(sender.id, recipient.id, body)

        path = direct_chat_path(sender.id, recipient.id)
        key = str(message.id)
        receipt = DeliveryReceipt(
            message_id=message.id,
            kind="direct",
            broadcast_path=path,
            broadcast_key=key,
            created_at=message.created_at,
            recipient_ids=[recipient.id],
        )
        payload = direct_payload(message, sender, recipient)
        receipt._tasks.append(
            self.runner.dispatch_sync(
                STEP_BROADCAST, path, self.broadcast.publish, f"{path}/{key}", payload
            )
        )
        receipt._tasks.append(
            self.runner.dispatch_sync(
                STEP_COUNTER, recipient.id, self.unread.increment_direct, recipient.id, sender.id
            )
        )
        push_task = self._dispatch_push(
            recipient,
            title=_sender_label(sender),
            body=preview(message.text, has_attachments=bool(message.attachments)),
            data={
                "type": "direct_message",
                "message_id": message.id,
                "sender_id": sender.id,
            },
        )
        if push_task is not None:
            receipt._tasks.append(push_task)

        logger.debug("Direct message %s persisted for %s", message.id, recipient.id)
        return await self._finish(receipt)

    async def send_group(
        self,
        sender: User,
        group_id: str,
        text: str | None,
        attachments: Sequence[Mapping[str, Any]] | None = None,
    ) -> DeliveryReceipt:
        """Deliver a group message and fan out to every member but the sender."""
        group, members = self.permissions.authorize_group(sender, group_id)
        body = build_message_body(text, attachments)
        message = self.message_store.append_group(sender.id, group.id, body)

        path = group_chat_path(group.id)
        key = str(message.id)
        receipt = DeliveryReceipt(
            message_id=message.id,
            kind="group",
            broadcast_path=path,
            broadcast_key=key,
            created_at=message.created_at,
            recipient_ids=[member.id for member in members],
        )
        receipt._tasks.append(
            self.runner.dispatch_sync(
                STEP_BROADCAST,
                path,
                self.broadcast.publish,
                f"{path}/{key}",
                group_payload(message, sender, group),
            )
        )

        title = f"New message in {group.name}"
        body_preview = preview(message.text, has_attachments=bool(message.attachments))
        for member in members:
            receipt._tasks.append(
                self.runner.dispatch_sync(
                    STEP_COUNTER, member.id, self.unread.increment_group, member.id, group.id
                )
            )
            push_task = self._dispatch_push(
                member,
                title=title,
                body=f"{_sender_label(sender)}: {body_preview}",
                data={
                    "type": "group_message",
                    "message_id": message.id,
                    "group_id": group.id,
                    "sender_id": sender.id,
                },
            )
            if push_task is not None:
                receipt._tasks.append(push_task)

        logger.debug(
            "Group message %s persisted for %s (%d recipients)",
            message.id,
            group.id,
            len(members),
        )
        return await self._finish(receipt)

    def _dispatch_push(
        self,
        recipient: User,
        *,
        title: str,
        body: str,
        data: Mapping[str, Any],
    ) -> asyncio.Task[StepResult] | None:
        # Admins watch the broadcast store and never receive push.
        if recipient.is_admin or not self.push_gateway.enabled:
            return None
        tokens = recipient.active_push_tokens
        if not tokens:
            return None
        return self.runner.dispatch(
            STEP_PUSH,
            recipient.id,
            lambda: self.push_gateway.notify(tokens, title, body, data),
            succeeded=lambda outcome: bool(outcome) and all(outcome.values()),
        )

    async def _finish(self, receipt: DeliveryReceipt) -> DeliveryReceipt:
        if self.await_side_effects:
            await receipt.settle()
        return receipt
