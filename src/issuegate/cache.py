"""Response cache for upstream reads.

Values are the serialized upstream payloads (``str``), so a hit is served
byte-for-byte as it was stored. Entries are only written after a successful
fetch; errors are never cached.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from threading import Lock
from typing import Any
from urllib.parse import urlencode

from .stores import KeyValueStore

STATS_KEY = "stats"
PATCH_NOTES_KEY = "patch-notes"
LATEST_VERSION_KEY = "latest-version"
ISSUES_PREFIX = "issues:"
ISSUE_PREFIX = "issue:"


@dataclass(frozen=True)
class CacheTTLs:
    """Per-operation time-to-live in seconds."""

    issues: float = 300.0
    stats: float = 1800.0
    static: float = 3600.0
    version: float = 1800.0


def issues_key(path: str, params: Mapping[str, str]) -> str:
    query = urlencode(sorted(params.items()))
    return f"{ISSUES_PREFIX}GET {path}?{query}" if query else f"{ISSUES_PREFIX}GET {path}"


def issue_key(path: str) -> str:
    return f"{ISSUE_PREFIX}GET {path}"


def is_issue_read(key: str) -> bool:
    """Keys whose content a write to any issue could change."""
    return key.startswith((ISSUES_PREFIX, ISSUE_PREFIX)) or key == STATS_KEY


class ResponseCache:
    def __init__(self, store: KeyValueStore, ttls: CacheTTLs | None = None) -> None:
        self._store = store
        self.ttls = ttls or CacheTTLs()
        self._lock = Lock()
        self._hits = 0
        self._misses = 0
        self._generation = 0

    def get(self, key: str) -> str | None:
        value = self._store.get(key)
        with self._lock:
            if isinstance(value, str):
                self._hits += 1
                return value
            self._misses += 1
        return None

    def put(self, key: str, value: str, ttl: float) -> None:
        if not isinstance(value, str):
            raise TypeError("cached responses must be serialized text")
        if ttl <= 0:
            return
        self._store.put(key, value, ttl)

    def get_or_fetch(self, key: str, ttl: float, fetch: Callable[[], str]) -> tuple[str, bool]:
        """Return ``(value, hit)``; ``fetch`` runs only on a miss and must raise on failure."""
        cached = self.get(key)
        if cached is not None:
            return cached, True
        with self._lock:
            generation = self._generation
        value = fetch()
        with self._lock:
            # an invalidation during fetch may have made value stale
            if generation == self._generation:
                self.put(key, value, ttl)
        return value, False

    def invalidate(self, target: str | Callable[[str], bool]) -> int:
        """Drop one key, or every key matching a predicate. Returns the count removed."""
        with self._lock:
            self._generation += 1
        if isinstance(target, str):
            return int(self._store.delete(target))
        removed = 0
        for key in list(self._store.keys()):
            if target(key) and self._store.delete(key):
                removed += 1
        return removed

    def invalidate_issue_reads(self) -> int:
        return self.invalidate(is_issue_read)

    @property
    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total else 0.0,
            }


__all__ = [
    "CacheTTLs",
    "ISSUES_PREFIX",
    "ISSUE_PREFIX",
    "LATEST_VERSION_KEY",
    "PATCH_NOTES_KEY",
    "ResponseCache",
    "STATS_KEY",
    "is_issue_read",
    "issue_key",
    "issues_key",
]
