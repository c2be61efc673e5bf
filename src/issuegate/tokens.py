"""Attribution tokens supplied by the desktop/VR apps and the board.

A recognised token marks a request as coming from a first-party app. This is
an attribution hint only: anyone can mint a token that matches the prefix, so
nothing here is an access-control decision.
"""

from __future__ import annotations

import random
import re
import string
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .stores import Clock, KeyValueStore

DEFAULT_PREFIX = "vros-"
DEFAULT_IDLE_EXPIRY = 90 * 24 * 3600
MAX_TOKEN_BODY = 128

TYPE_APP_GENERATED = "app-generated"
TYPE_UNKNOWN = "unknown"

_BASE36 = string.digits + string.ascii_lowercase
_RANDOM = random.SystemRandom()


class Attribution(str, Enum):
    TRUSTED = "trusted"
    ANONYMOUS = "anonymous"


@dataclass
class TokenRecord:
    created: str
    lastUsed: str  # noqa: N815 - persisted key name
    type: str = TYPE_APP_GENERATED

    @classmethod
    def from_value(cls, value: Any) -> TokenRecord | None:
        if isinstance(value, TokenRecord):
            return value
        if isinstance(value, dict) and "created" in value:
            return cls(
                created=str(value["created"]),
                lastUsed=str(value.get("lastUsed") or value["created"]),
                type=str(value.get("type") or TYPE_UNKNOWN),
            )
        return None


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def generate_app_token(prefix: str = DEFAULT_PREFIX, *, now: float | None = None) -> str:
    """Mint a token in the app convention ``<prefix><epoch-ms>-<9 base36 chars>``."""
    millis = int((now if now is not None else time.time()) * 1000)
    suffix = "".join(_RANDOM.choice(_BASE36) for _ in range(9))
    return f"{prefix}{millis}-{suffix}"


class TokenStore:
    """Owns token records; no other component writes them."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        prefix: str = DEFAULT_PREFIX,
        idle_expiry_seconds: float | None = DEFAULT_IDLE_EXPIRY,
        clock: Clock = time.time,
    ) -> None:
        self._store = store
        self.prefix = prefix
        self.idle_expiry_seconds = idle_expiry_seconds
        self._clock = clock
        self._pattern = re.compile(
            rf"^{re.escape(prefix)}[A-Za-z0-9_-]{{1,{MAX_TOKEN_BODY}}}$"
        )

    def is_well_formed(self, token: str | None) -> bool:
        return bool(token) and bool(self._pattern.match(token or ""))

    def classify(self, token: str | None) -> Attribution:
        if not token or len(token) > len(self.prefix) + MAX_TOKEN_BODY:
            return Attribution.ANONYMOUS
        now = self._clock()
        record = TokenRecord.from_value(self._store.get(token))
        if record is not None:
            record.lastUsed = _iso(now)
            self._save(token, record)
            return Attribution.TRUSTED
        if self.is_well_formed(token):
            self._save(token, TokenRecord(created=_iso(now), lastUsed=_iso(now)))
            return Attribution.TRUSTED
        return Attribution.ANONYMOUS

    def register(self, token: str, token_type: str = TYPE_UNKNOWN) -> TokenRecord:
        """Seed a token that does not follow the app prefix convention."""
        if not token:
            raise ValueError("token must be non-empty")
        now = _iso(self._clock())
        record = TokenRecord(created=now, lastUsed=now, type=token_type)
        self._save(token, record)
        return record

    def lookup(self, token: str) -> TokenRecord | None:
        return TokenRecord.from_value(self._store.get(token))

    def _save(self, token: str, record: TokenRecord) -> None:
        self._store.put(token, asdict(record), self.idle_expiry_seconds)


__all__ = [
    "Attribution",
    "DEFAULT_PREFIX",
    "TokenRecord",
    "TokenStore",
    "generate_app_token",
]
