"""Key/value stores backing the token, rate-limit and response-cache state.

Each gateway component receives its own store instance, so production can
swap the in-memory implementation for a networked one without touching the
components. Expiry is enforced lazily on read; there is no sweeper thread.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from threading import Lock
from typing import Any, Protocol

Clock = Callable[[], float]


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def put(self, key: str, value: Any, ttl_seconds: float | None = None) -> None: ...

    def delete(self, key: str) -> bool: ...

    def keys(self) -> Iterator[str]: ...

    def clear(self) -> int: ...


@dataclass
class _Entry:
    value: Any
    expires_at: float | None


class MemoryStore:
    """Bounded in-process store with per-key TTL and LRU eviction.

    Thread-safe; every public method takes the lock.
    """

    def __init__(self, max_entries: int = 10_000, clock: Clock = time.time) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._clock = clock
        self._data: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = Lock()

    def _expired(self, entry: _Entry, now: float) -> bool:
        return entry.expires_at is not None and now >= entry.expires_at

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if self._expired(entry, self._clock()):
                del self._data[key]
                return None
            self._data.move_to_end(key)
            return entry.value

    def put(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        with self._lock:
            now = self._clock()
            if key in self._data:
                del self._data[key]
            else:
                self._make_room(now)
            expires_at = now + ttl_seconds if ttl_seconds is not None else None
            self._data[key] = _Entry(value=value, expires_at=expires_at)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self) -> Iterator[str]:
        with self._lock:
            now = self._clock()
            live = [k for k, e in self._data.items() if not self._expired(e, now)]
        return iter(live)

    def clear(self) -> int:
        with self._lock:
            count = len(self._data)
            self._data.clear()
            return count

    def __len__(self) -> int:
        return sum(1 for _ in self.keys())

    def _make_room(self, now: float) -> None:
        # Must be called while holding the lock.
        if len(self._data) < self.max_entries:
            return
        for key in [k for k, e in self._data.items() if self._expired(e, now)]:
            del self._data[key]
        while len(self._data) >= self.max_entries:
            self._data.popitem(last=False)


__all__ = ["Clock", "KeyValueStore", "MemoryStore"]
