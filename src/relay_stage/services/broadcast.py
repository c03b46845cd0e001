"""Broadcast store for live client updates.

The broadcast store is a key-value tree that clients read and subscribe to
independently of the durable message store. Paths are slash-separated:

- ``chats/<a>_<b>``: direct conversation feed, participant ids sorted
- ``group_chats/<group_id>``: group feed
- ``unread_counts/<user_id>``: per-recipient unread counters
- ``security_alerts``: violation alerts for administrators

Two backends exist: an in-process tree and a Redis keyspace where each leaf
is stored as a JSON string under ``<prefix><path>``. Neither is transactionally
linked to the durable store.
"""

from __future__ import annotations

import copy
import json
import logging
import secrets
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Callable, Iterator
from threading import RLock
from typing import Any

import redis

from relay_stage.core.settings import settings

logger = logging.getLogger(__name__)

Callback = Callable[[Any], None]
Unsubscribe = Callable[[], None]

CHATS_ROOT = "chats"
GROUP_CHATS_ROOT = "group_chats"
UNREAD_ROOT = "unread_counts"
SECURITY_ALERTS_ROOT = "security_alerts"


def direct_chat_path(user_a: str, user_b: str) -> str:
    """Return the feed path for a direct conversation."""
    first, second = sorted((str(user_a), str(user_b)))
    return f"{CHATS_ROOT}/{first}_{second}"


def group_chat_path(group_id: str) -> str:
    """Return the feed path for a group."""
    return f"{GROUP_CHATS_ROOT}/{group_id}"


def unread_path(user_id: str) -> str:
    """Return the root of a recipient's unread counters."""
    return f"{UNREAD_ROOT}/{user_id}"


def normalize_path(path: str) -> str:
    """Strip redundant slashes; an empty path is rejected."""
    parts = [part for part in path.split("/") if part]
    if not parts:
        raise ValueError("Broadcast path must not be empty")
    return "/".join(parts)


def _is_related(first: str, second: str) -> bool:
    """Return True if either path is the other or one of its ancestors."""
    return first == second or first.startswith(second + "/") or second.startswith(first + "/")


def _push_key() -> str:
    """Return a child key that sorts in creation order."""
    return f"{time.time_ns():020d}{secrets.token_hex(4)}"


class BroadcastStore(ABC):
    """Key-value tree with change subscriptions."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callback]] = defaultdict(list)
        self._subscribers_lock = RLock()

    @abstractmethod
    def publish(self, path: str, value: Any) -> None:
        """Replace the value stored at ``path``."""

    @abstractmethod
    def get(self, path: str) -> Any:
        """Return the leaf value or reconstructed subtree at ``path``."""

    @abstractmethod
    def remove(self, path: str) -> None:
        """Delete ``path`` and everything below it; missing paths are ignored."""

    @abstractmethod
    def increment(self, path: str, delta: int = 1) -> int:
        """Atomically add ``delta`` to the integer at ``path`` and return it."""

    def push(self, path: str, value: Any) -> str:
        """Store ``value`` under a new, creation-ordered child of ``path``."""
        key = _push_key()
        self.publish(f"{normalize_path(path)}/{key}", value)
        return key

    def subscribe(self, path: str, callback: Callback) -> Unsubscribe:
        """Call ``callback`` with the fresh snapshot whenever ``path`` changes."""
        target = normalize_path(path)
        with self._subscribers_lock:
            self._subscribers[target].append(callback)

        def _unsubscribe() -> None:
            with self._subscribers_lock:
                callbacks = self._subscribers.get(target, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(target, None)

        return _unsubscribe

    def close(self) -> None:
        """Release background resources; the stored data is untouched."""

    def _notify(self, changed: str) -> None:
        with self._subscribers_lock:
            targets = [
                (path, list(callbacks))
                for path, callbacks in self._subscribers.items()
                if _is_related(path, changed)
            ]
        for path, callbacks in targets:
            snapshot = self.get(path)
            for callback in callbacks:
                try:
                    callback(copy.deepcopy(snapshot))
                except Exception:  # subscriber bugs must not fail the writer
                    logger.error("Broadcast subscriber for %s failed", path, exc_info=True)


class InMemoryBroadcastStore(BroadcastStore):
    """Process-local tree guarded by a lock."""

    def __init__(self) -> None:
        super().__init__()
        self._root: dict[str, Any] = {}
        self._lock = RLock()

    def _walk(self, parts: list[str], *, create: bool) -> dict[str, Any] | None:
        node: Any = self._root
        for part in parts:
            child = node.get(part)
            if not isinstance(child, dict):
                if not create:
                    return None
                child = {}
                node[part] = child
            node = child
        return node

    def publish(self, path: str, value: Any) -> None:
        parts = normalize_path(path).split("/")
        with self._lock:
            if value is None:
                self._delete(parts)
            else:
                parent = self._walk(parts[:-1], create=True)
                assert parent is not None
                parent[parts[-1]] = copy.deepcopy(value)
        self._notify("/".join(parts))

    def get(self, path: str) -> Any:
        parts = normalize_path(path).split("/")
        with self._lock:
            parent = self._walk(parts[:-1], create=False)
            if parent is None:
                return None
            return copy.deepcopy(parent.get(parts[-1]))

    def remove(self, path: str) -> None:
        parts = normalize_path(path).split("/")
        with self._lock:
            removed = self._delete(parts)
        if removed:
            self._notify("/".join(parts))

    def increment(self, path: str, delta: int = 1) -> int:
        parts = normalize_path(path).split("/")
        with self._lock:
            parent = self._walk(parts[:-1], create=True)
            assert parent is not None
            current = parent.get(parts[-1])
            value = (current if isinstance(current, int) else 0) + delta
            parent[parts[-1]] = value
        self._notify("/".join(parts))
        return value

    def _delete(self, parts: list[str]) -> bool:
        trail: list[tuple[dict[str, Any], str]] = []
        node: Any = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                return False
            trail.append((node, part))
            node = child
        if parts[-1] not in node:
            return False
        del node[parts[-1]]
        # Prune parents left empty so reads see "absent", not "{}".
        for parent, key in reversed(trail):
            if parent[key]:
                break
            del parent[key]
        return True


class RedisBroadcastStore(BroadcastStore):
    """Redis-backed tree; change events are announced on a pub/sub channel.

    Every write is announced on ``events_channel`` tagged with this store's
    origin id. The first ``subscribe`` call starts a listener thread so that
    writes made by other processes reach local subscribers too; events
    carrying our own origin are skipped because ``_announce`` has already
    notified locally.
    """

    def __init__(self, client: Any | None = None, *, prefix: str | None = None) -> None:
        super().__init__()
        self._redis = client if client is not None else redis.from_url(settings.redis_url)
        self._prefix = prefix if prefix is not None else settings.broadcast_key_prefix
        self.events_channel = f"{self._prefix}events"
        self.origin = secrets.token_hex(8)
        self._listener: Any | None = None
        self._listener_lock = RLock()

    def subscribe(self, path: str, callback: Callback) -> Unsubscribe:
        self._start_listener()
        return super().subscribe(path, callback)

    def _start_listener(self) -> None:
        with self._listener_lock:
            if self._listener is not None:
                return
            pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
            pubsub.subscribe(**{self.events_channel: self._on_event})
            self._listener = pubsub.run_in_thread(sleep_time=0.1, daemon=True)

    def close(self) -> None:
        with self._listener_lock:
            if self._listener is not None:
                self._listener.stop()
                self._listener = None

    def _on_event(self, message: dict[str, Any]) -> None:
        try:
            event = json.loads(message["data"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring malformed broadcast event on %s", self.events_channel)
            return
        if event.get("origin") == self.origin:
            return
        path = event.get("path")
        if isinstance(path, str):
            self._notify(path)

    def _key(self, path: str) -> str:
        return f"{self._prefix}{path}"

    def _descendant_keys(self, path: str) -> Iterator[str]:
        for key in self._redis.scan_iter(match=f"{self._key(path)}/*"):
            yield key.decode() if isinstance(key, bytes) else key

    def _announce(self, path: str, action: str) -> None:
        try:
            self._redis.publish(
                self.events_channel,
                json.dumps({"path": path, "action": action, "origin": self.origin}),
            )
        except redis.RedisError as exc:
            logger.warning("Failed to announce broadcast change for %s: %s", path, exc)
        self._notify(path)

    def publish(self, path: str, value: Any) -> None:
        target = normalize_path(path)
        pipe = self._redis.pipeline()
        pipe.delete(self._key(target), *self._descendant_keys(target))
        for leaf_path, leaf_value in _flatten(target, value):
            pipe.set(self._key(leaf_path), json.dumps(leaf_value))
        pipe.execute()
        self._announce(target, "set")

    def get(self, path: str) -> Any:
        target = normalize_path(path)
        raw = self._redis.get(self._key(target))
        if raw is not None:
            return json.loads(raw)

        tree: dict[str, Any] = {}
        base = len(self._key(target)) + 1
        for key in self._descendant_keys(target):
            raw_leaf = self._redis.get(key)
            if raw_leaf is None:
                continue
            node = tree
            parts = key[base:].split("/")
            for part in parts[:-1]:
                node = node.setdefault(part, {})
            node[parts[-1]] = json.loads(raw_leaf)
        return tree or None

    def remove(self, path: str) -> None:
        target = normalize_path(path)
        removed = self._redis.delete(self._key(target), *self._descendant_keys(target))
        if removed:
            self._announce(target, "remove")

    def increment(self, path: str, delta: int = 1) -> int:
        target = normalize_path(path)
        value = int(self._redis.incrby(self._key(target), delta))
        self._announce(target, "set")
        return value


def _flatten(path: str, value: Any) -> Iterator[tuple[str, Any]]:
    if isinstance(value, dict) and value:
        for key, child in value.items():
            yield from _flatten(f"{path}/{key}", child)
    elif value is not None and value != {}:
        yield path, value


class _BroadcastStoreSingleton:
    """Singleton wrapper for the configured broadcast store."""

    _instance: BroadcastStore | None = None

    @classmethod
    def get_instance(cls) -> BroadcastStore:
        """Get or create the configured broadcast store."""
        if cls._instance is None:
            if settings.broadcast_backend == "redis":
                cls._instance = RedisBroadcastStore()
            else:
                cls._instance = InMemoryBroadcastStore()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None


def get_broadcast_store() -> BroadcastStore:
    """Return the process-wide broadcast store."""
    return _BroadcastStoreSingleton.get_instance()
