from __future__ import annotations

import json
from typing import Any

import pytest
from conftest import REPO, DummyResponse, DummySession, api_issue

from issuegate.asgi import GatewayASGI, create_app
from issuegate.config import GatewayConfig


class _Receiver:
    def __init__(self, messages: list[dict[str, Any]]):
        self._messages = list(messages)

    async def __call__(self) -> dict[str, Any]:
        return self._messages.pop(0)


class _Sender:
    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    async def __call__(self, message: dict[str, Any]) -> None:
        self.messages.append(message)

    @property
    def status(self) -> int:
        return self.messages[0]["status"]

    @property
    def headers(self) -> dict[str, str]:
        return {k.decode(): v.decode() for k, v in self.messages[0]["headers"]}

    @property
    def body(self) -> Any:
        return json.loads(self.messages[1]["body"])


def _scope(method: str, path: str, query: bytes = b"", headers: list[tuple[bytes, bytes]] | None = None) -> dict[str, Any]:
    return {
        "type": "http",
        "method": method,
        "path": path,
        "query_string": query,
        "headers": headers or [],
        "client": ("198.51.100.4", 5123),
    }


@pytest.mark.asyncio
async def test_get_request_round_trip(gateway, github_session: DummySession) -> None:
    github_session.route("GET", f"/repos/{REPO}/issues", DummyResponse(200, [api_issue(3)]))
    app = GatewayASGI(gateway)
    send = _Sender()

    await app(
        _scope("GET", "/api/issues", b"state=open&state=closed&labels=bug", [(b"origin", b"http://localhost:3000")]),
        _Receiver([{"type": "http.request", "body": b"", "more_body": False}]),
        send,
    )

    assert send.status == 200
    assert send.headers["access-control-allow-origin"] == "http://localhost:3000"
    assert send.headers["x-cache"] == "MISS"
    assert send.body["data"][0]["number"] == 3
    params = github_session.calls("GET", f"/repos/{REPO}/issues")[0]["params"]
    assert params["state"] == "closed"
    assert params["labels"] == "bug"


@pytest.mark.asyncio
async def test_chunked_body_and_peer_address(gateway, github_session: DummySession) -> None:
    app = GatewayASGI(gateway)
    send = _Sender()
    chunks = [
        {"type": "http.request", "body": b'{"title": "t",', "more_body": True},
        {"type": "http.request", "body": b' "description": ""}', "more_body": False},
    ]

    await app(_scope("POST", "/api/submit-bug"), _Receiver(chunks), send)

    assert send.status == 400
    assert send.body["error"]["message"] == "Missing required fields: description"
    assert gateway.limiter.remaining("198.51.100.4") == 9


@pytest.mark.asyncio
async def test_lifespan_is_acknowledged(gateway) -> None:
    app = GatewayASGI(gateway)
    send = _Sender()
    await app(
        {"type": "lifespan"},
        _Receiver([{"type": "lifespan.startup"}, {"type": "lifespan.shutdown"}]),
        send,
    )
    assert [m["type"] for m in send.messages] == ["lifespan.startup.complete", "lifespan.shutdown.complete"]


@pytest.mark.asyncio
async def test_unsupported_scope(gateway) -> None:
    with pytest.raises(RuntimeError):
        await GatewayASGI(gateway)({"type": "websocket"}, _Receiver([]), _Sender())


def test_create_app_from_config() -> None:
    cfg = GatewayConfig(github_repo="acme/bugs", github_token="t0ken", allowed_origins=["https://bugs.example"])
    app = create_app(cfg)
    assert app.gateway.upstream.repo == "acme/bugs"
    assert app.gateway.allowed_origins == ["https://bugs.example"]
    assert app.gateway.limiter.max_requests == 10
