"""Lightweight helpers for configuring OpenTelemetry exporters.

Spans are always created through ``opentelemetry.trace``; until
``configure_telemetry`` installs an SDK provider they are no-ops.
"""

from __future__ import annotations

from typing import Final

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter

from .logging import get_logger

_telemetry_configured: Final[dict[str, bool]] = {"configured": False}

EXPORTERS = ("none", "console", "otlp")


def _build_exporter(exporter: str, endpoint: str | None) -> SpanExporter:
    if exporter == "otlp":
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

        return OTLPSpanExporter(endpoint=endpoint) if endpoint else OTLPSpanExporter()
    return ConsoleSpanExporter()


def configure_telemetry(
    *,
    service_name: str,
    exporter: str = "console",
    endpoint: str | None = None,
) -> bool:
    """Configure OpenTelemetry once per process. Returns True when installed."""

    exporter = exporter.lower()
    if exporter == "none" or _telemetry_configured["configured"]:
        return False
    if exporter not in EXPORTERS:
        raise ValueError(f"Unknown telemetry exporter '{exporter}'")

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(_build_exporter(exporter, endpoint)))
    trace.set_tracer_provider(provider)
    _telemetry_configured["configured"] = True
    get_logger().log_operation("telemetry_configured", exporter=exporter)
    return True


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


__all__ = ["EXPORTERS", "configure_telemetry", "get_tracer"]
