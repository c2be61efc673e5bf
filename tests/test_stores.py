from __future__ import annotations

import pytest

from issuegate.stores import MemoryStore


def test_put_get_and_expiry(clock) -> None:
    store = MemoryStore(clock=clock)
    store.put("a", {"x": 1}, ttl_seconds=10)
    store.put("forever", 1)

    assert store.get("a") == {"x": 1}
    clock.advance(10)
    assert store.get("a") is None
    assert store.get("forever") == 1
    assert list(store.keys()) == ["forever"]


def test_lru_eviction_prefers_expired_then_oldest(clock) -> None:
    store = MemoryStore(max_entries=2, clock=clock)
    store.put("old", 1)
    store.put("new", 2)
    store.get("old")  # refreshes recency
    store.put("third", 3)

    assert store.get("new") is None
    assert store.get("old") == 1
    assert store.get("third") == 3


def test_delete_and_clear(clock) -> None:
    store = MemoryStore(clock=clock)
    store.put("a", 1)
    store.put("b", 2)
    assert store.delete("a") is True
    assert store.delete("a") is False
    assert len(store) == 1
    assert store.clear() == 1
    assert len(store) == 0


def test_rejects_non_positive_bound() -> None:
    with pytest.raises(ValueError):
        MemoryStore(max_entries=0)
