"""ASGI adapter exposing :class:`issuegate.gateway.Gateway` to an ASGI server.

Start with ``issuegate serve`` or directly::

    uvicorn --factory issuegate.asgi:create_app --host 127.0.0.1 --port 8787
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs

from .config import CONFIG_DEFAULT, GatewayConfig, load_config
from .gateway import Gateway, Request, Response
from .logging import configure_logging, get_logger
from .observability import configure_telemetry


class GatewayASGI:
    """Minimal ASGI application; request handling runs on a worker thread."""

    def __init__(self, gateway: Gateway) -> None:
        self.gateway = gateway

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        kind = scope.get("type")
        if kind == "lifespan":
            await self._lifespan(receive, send)
            return
        if kind != "http":
            raise RuntimeError(f"unsupported ASGI scope type: {kind}")

        body = await self._read_body(receive)
        client = scope.get("client") or (None, None)
        request = Request(
            method=scope.get("method", "GET"),
            path=scope.get("path", ""),
            query=self._parse_query_params(scope.get("query_string", b"")),
            headers=self._parse_headers(scope.get("headers", [])),
            body=body,
            client_address=client[0],
        )
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(None, self.gateway.handle, request)
        await self._send_response(send, response)

    async def _lifespan(self, receive: Any, send: Any) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                get_logger().log_operation(
                    "gateway_started",
                    repo=self.gateway.upstream.repo,
                    origins=self.gateway.allowed_origins,
                )
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                get_logger().log_operation("gateway_stopped", cache=self.gateway.cache.stats)
                await send({"type": "lifespan.shutdown.complete"})
                return

    async def _read_body(self, receive: Any) -> bytes:
        chunks: list[bytes] = []
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                break
            if message["type"] != "http.request":
                continue
            chunks.append(message.get("body", b""))
            if not message.get("more_body", False):
                break
        return b"".join(chunks)

    def _parse_query_params(self, raw_query: bytes) -> dict[str, str]:
        if not raw_query:
            return {}
        parsed = parse_qs(raw_query.decode("utf-8"), keep_blank_values=False)
        return {key: values[-1] for key, values in parsed.items() if values}

    def _parse_headers(self, raw_headers: list[tuple[bytes, bytes]]) -> dict[str, str]:
        return {name.decode("latin-1").lower(): value.decode("latin-1") for name, value in raw_headers}

    async def _send_response(self, send: Any, response: Response) -> None:
        headers = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in response.headers.items()]
        await send({"type": "http.response.start", "status": response.status, "headers": headers})
        await send({"type": "http.response.body", "body": response.body})


def create_app(config: GatewayConfig | str | Path | None = None) -> GatewayASGI:
    """Build the ASGI app from a config object or path (default ``issuegate.config.yaml``)."""
    cfg = config if isinstance(config, GatewayConfig) else load_config(config or CONFIG_DEFAULT)
    configure_logging(json_logging=cfg.logging_json_enabled, level=cfg.logging_level)
    configure_telemetry(
        service_name="issuegate",
        exporter=cfg.telemetry_exporter,
        endpoint=cfg.telemetry_endpoint,
    )
    return GatewayASGI(Gateway.from_config(cfg))


__all__ = ["GatewayASGI", "create_app"]
