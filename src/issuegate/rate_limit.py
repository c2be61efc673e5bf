"""Fixed-window, per-address admission control for write requests.

Bursts straddling a window boundary can admit up to twice the ceiling; that
is accepted in exchange for one small record per address.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from threading import Lock

from .stores import Clock, KeyValueStore

DEFAULT_MAX_REQUESTS = 10
DEFAULT_WINDOW_SECONDS = 3600


@dataclass
class RateCounter:
    count: int
    window_expires: float


class RateLimiter:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Clock = time.time,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._store = store
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = Lock()

    @staticmethod
    def _key(address: str) -> str:
        return f"rate:{address or 'unknown'}"

    def _current(self, address: str, now: float) -> RateCounter | None:
        counter = self._store.get(self._key(address))
        if not isinstance(counter, RateCounter) or now >= counter.window_expires:
            return None
        return counter

    def admit(self, address: str) -> bool:
        """Count one request from ``address``; False once the ceiling is reached."""
        with self._lock:
            return self._admit(address)

    def _admit(self, address: str) -> bool:
        now = self._clock()
        counter = self._current(address, now)
        if counter is None:
            counter = RateCounter(count=0, window_expires=now + self.window_seconds)
        if counter.count >= self.max_requests:
            return False
        counter.count += 1
        # The window end is fixed at first sight; later writes keep it.
        self._store.put(self._key(address), counter, counter.window_expires - now)
        return True

    def remaining(self, address: str) -> int:
        counter = self._current(address, self._clock())
        used = counter.count if counter else 0
        return max(0, self.max_requests - used)

    def retry_after(self, address: str) -> int:
        """Whole seconds until the address's window resets (0 if none open)."""
        now = self._clock()
        counter = self._current(address, now)
        if counter is None:
            return 0
        return max(1, math.ceil(counter.window_expires - now))


__all__ = ["DEFAULT_MAX_REQUESTS", "DEFAULT_WINDOW_SECONDS", "RateCounter", "RateLimiter"]
