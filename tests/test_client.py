from __future__ import annotations

from typing import Any

import pytest
import requests
from conftest import DummyResponse, DummySession, api_issue

from issuegate.board import Board
from issuegate.client import GatewayClient, GatewayClientError
from issuegate.mapping import Column
from issuegate.models import Issue


def _ok(data: Any, status: int = 200, **extra: Any) -> DummyResponse:
    return DummyResponse(status, {"success": True, "data": data, **extra})


def _client(session: DummySession, **kwargs: Any) -> GatewayClient:
    return GatewayClient(base_url="http://gateway.test", session=session, **kwargs)  # type: ignore[arg-type]


def test_generates_app_token_when_missing() -> None:
    session = DummySession()
    client = _client(session)
    assert client.token is not None and client.token.startswith("vros-")
    assert session.headers["X-App-Token"] == client.token


def test_explicit_token_is_sent() -> None:
    session = DummySession()
    session.route("GET", "/api/health", _ok({"status": "ok", "timestamp": "now"}))
    client = _client(session, token="vros-fixed")

    assert client.health()["status"] == "ok"
    assert session.request_log[0][2]["headers"]["X-App-Token"] == "vros-fixed"


def test_get_board_categorizes_issues() -> None:
    session = DummySession()
    session.route(
        "GET",
        "/api/issues",
        _ok([api_issue(1, labels=["status:testing"]), api_issue(2, state="closed"), api_issue(3)]),
    )

    board = _client(session).get_board()

    assert board.counts() == {"backlog": 1, "todo": 0, "in-progress": 0, "testing": 1, "done": 1}
    assert session.calls("GET", "/api/issues")[0]["params"] == {"state": "all", "per_page": 100}


def test_submit_bug_returns_envelope_data() -> None:
    session = DummySession()
    data = {"issueNumber": 12, "issueUrl": "https://github.com/acme/bugs/issues/12", "message": "ok"}
    session.route("POST", "/api/submit-bug", _ok(data, 201, issueNumber=12))

    result = _client(session).submit_bug({"title": "t", "description": "d"})

    assert result["issueNumber"] == 12


def test_error_envelope_raises() -> None:
    session = DummySession()
    session.route(
        "POST",
        "/api/submit-bug",
        DummyResponse(429, {"success": False, "error": {"code": "rate-limited", "message": "slow down", "status": 429}}),
    )

    with pytest.raises(GatewayClientError) as excinfo:
        _client(session).submit_bug({"title": "t", "description": "d"})

    assert (excinfo.value.status, excinfo.value.code) == (429, "rate-limited")


def test_network_and_non_json_errors() -> None:
    session = DummySession()
    session.route("GET", "/api/stats", requests.ConnectionError("down"))
    session.route("GET", "/api/patch-notes", DummyResponse(502, ValueError("html")))
    client = _client(session)

    with pytest.raises(GatewayClientError) as network:
        client.get_stats()
    assert network.value.code == "network"
    with pytest.raises(GatewayClientError) as invalid:
        client.get_patch_notes()
    assert invalid.value.code == "invalid-response"


def _column_moved(current: list[str]) -> Any:
    def respond(details: dict[str, Any]) -> DummyResponse:
        column = details["json"]["column"]
        labels = [label for label in current if not label.startswith("status:")] + [f"status:{column}"]
        return _ok({"number": 1, "column": column, "labels": labels})

    return respond


def test_move_card_persists_through_server_side_move() -> None:
    session = DummySession()
    session.route("PUT", "/api/issues/1/column", _column_moved(["bug", "status:todo"]))
    client = _client(session)
    board = Board.from_issues(
        [Issue(number=1, title="t", labels=["bug", "status:todo"])]
    )

    assert client.move_card(board, 1, Column.DONE) is True
    assert session.calls("PUT", "/api/issues/1/column")[0]["json"] == {"column": "done"}
    assert session.calls("PUT", "/api/issues/1/labels") == []
    assert board.locate(1) == (Column.DONE, 0)


def test_move_card_keeps_labels_added_upstream() -> None:
    session = DummySession()
    session.route("PUT", "/api/issues/1/column", _column_moved(["bug", "status:todo", "needs-repro"]))
    board = Board.from_issues([Issue(number=1, title="t", labels=["bug", "status:todo"])])

    assert _client(session).move_card(board, 1, "testing") is True

    column, position = board.locate(1)  # type: ignore[misc]
    assert column is Column.TESTING
    assert board.columns[column][position].issue.labels == ["bug", "needs-repro", "status:testing"]


def test_move_card_rolls_back_on_gateway_error() -> None:
    session = DummySession()
    session.route(
        "PUT",
        "/api/issues/1/column",
        DummyResponse(502, {"success": False, "error": {"code": "upstream-unavailable", "message": "down", "status": 502}}),
    )

    board = Board.from_issues([Issue(number=1, title="t", labels=["status:todo"])])
    before = board.to_dict()

    with pytest.raises(GatewayClientError):
        _client(session).move_card(board, 1, Column.IN_PROGRESS)

    assert board.to_dict() == before


def test_get_board_skips_pull_requests() -> None:
    session = DummySession()
    session.route(
        "GET",
        "/api/issues",
        _ok([api_issue(1, labels=["status:todo"]), {**api_issue(2, labels=["status:todo"]), "pull_request": {}}]),
    )

    board = _client(session).get_board()

    assert board.counts()["todo"] == 1
    assert board.locate(2) is None


def test_set_column_uses_server_side_move() -> None:
    session = DummySession()
    session.route("PUT", "/api/issues/4/column", _ok({"number": 4, "column": "testing", "labels": ["status:testing"]}))

    result = _client(session).set_column(4, Column.TESTING)

    assert result["column"] == "testing"
    assert session.calls("PUT", "/api/issues/4/column")[0]["json"] == {"column": "testing"}
