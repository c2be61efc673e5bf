"""Pytest configuration for issuegate tests.

Ensures the in-repo `src` directory is on `sys.path` so the package can be
imported without an editable install (`pip install -e .`), and provides the
fakes shared by most test modules: a controllable clock and a stand-in for
`requests.Session` that answers by method + path.
"""

from __future__ import annotations

import json
import sys
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any
from urllib.parse import urlsplit

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

# Ensure pytest-asyncio plugin is loaded explicitly so @pytest.mark.asyncio tests run
pytest_plugins = ["pytest_asyncio"]

from issuegate.cache import ResponseCache  # noqa: E402
from issuegate.config import DEFAULT_ALLOWED_ORIGINS  # noqa: E402
from issuegate.gateway import Gateway  # noqa: E402
from issuegate.github_rest import GitHubRestClient  # noqa: E402
from issuegate.logging import configure_logging  # noqa: E402
from issuegate.rate_limit import RateLimiter  # noqa: E402
from issuegate.stores import MemoryStore  # noqa: E402
from issuegate.tokens import TokenStore  # noqa: E402

UPSTREAM_TOKEN = "ghp_" + "A1b2C3d4E5f6G7h8I9j0K1l2M3n4O5p6Q7r8"
REPO = "acme/bugs"


class FakeClock:
    def __init__(self, start: float = 1_736_755_200.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class DummyResponse:
    status_code: int
    payload: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        if isinstance(self.payload, Exception):
            raise self.payload
        if isinstance(self.payload, str):
            return json.loads(self.payload)
        return self.payload

    @property
    def text(self) -> str:
        payload = self.payload
        if payload is None:
            return ""
        if isinstance(payload, str):
            return payload
        return json.dumps(payload)


Responder = DummyResponse | Exception | Callable[[dict[str, Any]], DummyResponse]


class DummySession:
    """Answers requests from per-route queues; the last queued answer repeats."""

    def __init__(self) -> None:
        self.headers: dict[str, str] = {}
        self.routes: dict[tuple[str, str], list[Responder]] = {}
        self.request_log: list[tuple[str, str, dict[str, Any]]] = []
        self._lock = Lock()

    def route(self, method: str, path: str, *responses: Responder) -> DummySession:
        self.routes.setdefault((method.upper(), path), []).extend(responses)
        return self

    def calls(self, method: str, path: str) -> list[dict[str, Any]]:
        return [
            details
            for m, url, details in self.request_log
            if m == method.upper() and urlsplit(url).path == path
        ]

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Any = None,
        json: Any | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> DummyResponse:
        details = {"headers": dict(headers or {}), "json": json, "params": params}
        path = urlsplit(url).path
        with self._lock:
            self.request_log.append((method.upper(), url, details))
            queue = self.routes.get((method.upper(), path))
            if not queue:
                raise AssertionError(f"No response queued for {method} {path}")
            answer = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            return answer(details)
        return answer


def api_issue(
    number: int,
    title: str = "Issue",
    *,
    labels: list[str] | None = None,
    state: str = "open",
    body: str = "",
    assignee: str | None = None,
    created_at: str = "2025-01-01T00:00:00Z",
    closed_at: str | None = None,
) -> dict[str, Any]:
    return {
        "number": number,
        "title": title,
        "body": body,
        "state": state,
        "labels": [{"name": name} for name in labels or []],
        "assignee": {"login": assignee} if assignee else None,
        "html_url": f"https://github.com/{REPO}/issues/{number}",
        "created_at": created_at,
        "updated_at": created_at,
        "closed_at": closed_at,
        "comments": 0,
    }


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    yield
    configure_logging()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def github_session() -> DummySession:
    return DummySession()


@pytest.fixture
def upstream(github_session: DummySession) -> GitHubRestClient:
    return GitHubRestClient(token=UPSTREAM_TOKEN, repo=REPO, session=github_session)  # type: ignore[arg-type]


@pytest.fixture
def make_gateway(upstream: GitHubRestClient, clock: FakeClock) -> Callable[..., Gateway]:
    def factory(**overrides: Any) -> Gateway:
        kwargs: dict[str, Any] = {
            "tokens": TokenStore(MemoryStore(clock=clock), clock=clock),
            "limiter": RateLimiter(MemoryStore(clock=clock), clock=clock),
            "cache": ResponseCache(MemoryStore(clock=clock)),
            "allowed_origins": list(DEFAULT_ALLOWED_ORIGINS),
            "clock": clock,
        }
        kwargs.update(overrides)
        return Gateway(upstream, **kwargs)

    return factory


@pytest.fixture
def gateway(make_gateway: Callable[..., Gateway]) -> Gateway:
    return make_gateway()
