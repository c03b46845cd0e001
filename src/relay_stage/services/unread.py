"""Unread counters kept in the broadcast store.

Counters live under ``unread_counts/<recipient>`` as::

    {"direct": {partner_id: n}, "groups": {group_id: n}, "total": n}

They are independent of the read receipts in the durable store. Updates are
read-modify-write on a scalar with no lock or transaction, so concurrent
increments of the same counter can lose an update. Counts may run low but
never high, never negative, and converge once the recipient clears them.
Setting ``UNREAD_COUNTER_ATOMIC`` switches increments to the store's native
atomic increment without changing ``clear`` semantics.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from relay_stage.core.settings import settings
from relay_stage.services.broadcast import (
    BroadcastStore,
    Unsubscribe,
    get_broadcast_store,
    unread_path,
)

logger = logging.getLogger(__name__)

SourceKind = Literal["direct", "groups"]
DIRECT: SourceKind = "direct"
GROUPS: SourceKind = "groups"


@dataclass(frozen=True)
class UnreadCounts:
    """Aggregated unread state for one recipient."""

    direct: dict[str, int] = field(default_factory=dict)
    groups: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.direct.values()) + sum(self.groups.values())

    def as_dict(self) -> dict[str, Any]:
        return {"direct": dict(self.direct), "groups": dict(self.groups), "total": self.total}


def _coerce(section: Any) -> dict[str, int]:
    if not isinstance(section, dict):
        return {}
    counts: dict[str, int] = {}
    for key, value in section.items():
        if isinstance(value, int) and value > 0:
            counts[str(key)] = value
    return counts


def counts_from_snapshot(snapshot: Any) -> UnreadCounts:
    """Build ``UnreadCounts`` from a raw broadcast snapshot."""
    data = snapshot if isinstance(snapshot, dict) else {}
    return UnreadCounts(direct=_coerce(data.get(DIRECT)), groups=_coerce(data.get(GROUPS)))


class UnreadCounterService:
    """Maintain per-recipient, per-source unread counters."""

    def __init__(
        self,
        store: BroadcastStore | None = None,
        *,
        atomic: bool | None = None,
    ) -> None:
        self.store = store or get_broadcast_store()
        self.atomic = settings.unread_counter_atomic if atomic is None else atomic

    @staticmethod
    def counter_path(recipient_id: str, kind: SourceKind, source_id: str) -> str:
        return f"{unread_path(recipient_id)}/{kind}/{source_id}"

    def increment(self, recipient_id: str, kind: SourceKind, source_id: str) -> int:
        """Add one unread message from ``source_id`` for ``recipient_id``."""
        path = self.counter_path(recipient_id, kind, source_id)
        if self.atomic:
            value = self.store.increment(path, 1)
        else:
            current = self.store.get(path)
            value = (current if isinstance(current, int) and current > 0 else 0) + 1
            self.store.publish(path, value)
        logger.debug("Unread %s/%s for %s is now %d", kind, source_id, recipient_id, value)
        self._refresh_total(recipient_id)
        return value

    def increment_direct(self, recipient_id: str, sender_id: str) -> int:
        return self.increment(recipient_id, DIRECT, sender_id)

    def increment_group(self, recipient_id: str, group_id: str) -> int:
        return self.increment(recipient_id, GROUPS, group_id)

    def clear(self, recipient_id: str, kind: SourceKind, source_id: str) -> None:
        """Reset the counter for one source; clearing an absent counter is a no-op."""
        self.store.remove(self.counter_path(recipient_id, kind, source_id))
        self._refresh_total(recipient_id)

    def clear_direct(self, recipient_id: str, partner_id: str) -> None:
        self.clear(recipient_id, DIRECT, partner_id)

    def clear_group(self, recipient_id: str, group_id: str) -> None:
        self.clear(recipient_id, GROUPS, group_id)

    def clear_all(self, recipient_id: str) -> None:
        """Drop every counter held for ``recipient_id``."""
        self.store.remove(unread_path(recipient_id))

    def get(self, recipient_id: str) -> UnreadCounts:
        """Return all direct and group counters for ``recipient_id``."""
        return counts_from_snapshot(self.store.get(unread_path(recipient_id)))

    def get_direct(self, recipient_id: str, partner_id: str) -> int:
        return self.get(recipient_id).direct.get(partner_id, 0)

    def get_group(self, recipient_id: str, group_id: str) -> int:
        return self.get(recipient_id).groups.get(group_id, 0)

    def total(self, recipient_id: str) -> int:
        return self.get(recipient_id).total

    def subscribe(
        self,
        recipient_id: str,
        callback: Callable[[UnreadCounts], None],
    ) -> Unsubscribe:
        """Invoke ``callback`` with fresh aggregates whenever the counters change."""

        def _on_change(snapshot: Any) -> None:
            callback(counts_from_snapshot(snapshot))

        return self.store.subscribe(unread_path(recipient_id), _on_change)

    def _refresh_total(self, recipient_id: str) -> None:
        # Convenience mirror for clients; ``get`` never trusts it.
        try:
            counts = self.get(recipient_id)
            total_path = f"{unread_path(recipient_id)}/total"
            if counts.total:
                self.store.publish(total_path, counts.total)
            else:
                self.store.remove(total_path)
        except Exception as exc:
            logger.warning("Failed to refresh unread total for %s: %s", recipient_id, exc)


def get_unread_service() -> UnreadCounterService:
    """Return an unread counter service bound to the shared broadcast store."""
    return UnreadCounterService()
