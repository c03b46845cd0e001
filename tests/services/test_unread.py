"""Tests for unread counter maintenance."""

import asyncio
from unittest.mock import MagicMock

import pytest

from relay_stage.services.broadcast import InMemoryBroadcastStore
from relay_stage.services.unread import UnreadCounterService, UnreadCounts, counts_from_snapshot


@pytest.fixture()
def service(broadcast_store):
    return UnreadCounterService(broadcast_store)


def test_increment_and_get(service):
    service.increment_direct("alice", "admin-1")
    service.increment_direct("alice", "admin-1")
    service.increment_group("alice", "group-1")

    counts = service.get("alice")
    assert counts.direct == {"admin-1": 2}
    assert counts.groups == {"group-1": 1}
    assert counts.total == 3
    assert service.total("alice") == 3


def test_total_mirrored_in_store(service, broadcast_store):
    service.increment_direct("alice", "admin-1")
    assert broadcast_store.get("unread_counts/alice/total") == 1
    service.clear_direct("alice", "admin-1")
    assert broadcast_store.get("unread_counts/alice/total") is None


@pytest.mark.parametrize("increments", [1, 2, 7, 25])
def test_clear_after_any_number_of_increments(service, increments):
    for _ in range(increments):
        service.increment_direct("alice", "admin-1")
        service.increment_group("alice", "group-1")

    service.clear_direct("alice", "admin-1")
    service.clear_group("alice", "group-1")

    counts = service.get("alice")
    assert "admin-1" not in counts.direct
    assert "group-1" not in counts.groups
    assert counts.total == 0


def test_clear_only_touches_one_source(service):
    service.increment_direct("alice", "admin-1")
    service.increment_direct("alice", "admin-2")

    service.clear_direct("alice", "admin-1")

    assert service.get("alice").direct == {"admin-2": 1}


def test_clear_without_increment_is_noop(service):
    service.clear_direct("nobody", "admin-1")
    service.clear_group("nobody", "group-1")
    assert service.get("nobody") == UnreadCounts()


def test_clear_all(service):
    service.increment_direct("alice", "admin-1")
    service.increment_group("alice", "group-1")
    service.clear_all("alice")
    assert service.get("alice").total == 0


@pytest.mark.asyncio
async def test_concurrent_increments_never_overcount(broadcast_store):
    service = UnreadCounterService(broadcast_store)

    await asyncio.gather(
        *(asyncio.to_thread(service.increment_direct, "alice", "admin-1") for _ in range(20))
    )
    count = service.get_direct("alice", "admin-1")
    assert 1 <= count <= 20

    service.clear_direct("alice", "admin-1")
    assert service.get_direct("alice", "admin-1") == 0


@pytest.mark.asyncio
async def test_atomic_mode_counts_every_increment():
    service = UnreadCounterService(InMemoryBroadcastStore(), atomic=True)

    await asyncio.gather(
        *(asyncio.to_thread(service.increment_group, "alice", "group-1") for _ in range(20))
    )

    assert service.get_group("alice", "group-1") == 20


def test_atomic_mode_uses_store_increment():
    store = MagicMock()
    store.increment.return_value = 4
    store.get.return_value = {"direct": {"admin-1": 4}}
    service = UnreadCounterService(store, atomic=True)

    assert service.increment_direct("alice", "admin-1") == 4
    store.increment.assert_called_once_with("unread_counts/alice/direct/admin-1", 1)


def test_subscription_receives_aggregates(service):
    seen: list[UnreadCounts] = []
    unsubscribe = service.subscribe("alice", seen.append)

    service.increment_direct("alice", "admin-1")
    service.increment_group("alice", "group-1")
    unsubscribe()
    service.increment_group("alice", "group-1")

    assert seen
    assert seen[-1].total == 2
    assert all(isinstance(item, UnreadCounts) for item in seen)


def test_snapshot_ignores_garbage():
    counts = counts_from_snapshot({"direct": {"a": 2, "b": -1, "c": "x"}, "groups": [], "total": 9})
    assert counts.direct == {"a": 2}
    assert counts.groups == {}
    assert counts.total == 2


def test_total_refresh_failure_does_not_raise(caplog):
    store = MagicMock()
    store.get.side_effect = [None, RuntimeError("store down")]
    service = UnreadCounterService(store)

    assert service.increment_direct("alice", "admin-1") == 1
    assert "Failed to refresh unread total" in caplog.text
