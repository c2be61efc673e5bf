from __future__ import annotations

import json

import pytest

from issuegate.logging import StructuredLogger, configure_logging, get_logger


def _records(out: str) -> list[dict]:
    return [json.loads(line) for line in out.splitlines() if line.strip()]


def test_request_logging_emits_json(capsys: pytest.CaptureFixture[str]) -> None:
    logger = StructuredLogger(json_logging=True)
    logger.log_request("GET", "/api/issues", 200, 12.3456, client="1.2.3.4", cache="HIT")
    logger.log_request("GET", "/api/stats", 502, 1.0)

    first, second = _records(capsys.readouterr().out)
    assert first["operation"] == "request"
    assert first["status"] == 200
    assert first["duration_ms"] == 12.35
    assert first["client"] == "1.2.3.4"
    assert first["cache"] == "HIT"
    assert first["level"] == "INFO"
    assert second["level"] == "WARNING"


def test_debug_upstream_calls_hidden_at_info(capsys: pytest.CaptureFixture[str]) -> None:
    logger = StructuredLogger(json_logging=True, level="INFO")
    logger.log_upstream_call("GET", "/repos/a/b", 200, 5.0)
    assert capsys.readouterr().out == ""

    logger = StructuredLogger(json_logging=True, level="DEBUG")
    logger.log_upstream_call("GET", "/repos/a/b", None, 5.0, error="Timeout")
    record = _records(capsys.readouterr().out)[0]
    assert record["status"] is None
    assert record["error"] == "Timeout"


def test_timed_operation_logs_failure(capsys: pytest.CaptureFixture[str]) -> None:
    logger = StructuredLogger(json_logging=True)
    with pytest.raises(RuntimeError):
        with logger.timed_operation("stats"):
            raise RuntimeError("boom")
    records = _records(capsys.readouterr().out)
    assert records[0]["operation"] == "stats_start"
    assert records[-1]["level"] == "ERROR"
    assert records[-1]["error"] == "boom"


def test_plain_format(capsys: pytest.CaptureFixture[str]) -> None:
    logger = StructuredLogger(json_logging=False)
    logger.log_operation("gateway_started", repo="acme/bugs")
    out = capsys.readouterr().out
    assert "INFO Operation: gateway_started" in out


def test_configure_logging_replaces_global() -> None:
    configured = configure_logging(json_logging=True, level="DEBUG")
    assert get_logger() is configured
