"""Client for the gateway's HTTP API, used by the board and the CLI.

The client always sends an app token (minted on first use when none is
given) so its writes are attributed to the app rather than the web form.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import requests

from .board import Board
from .gateway import TOKEN_HEADER
from .mapping import Column
from .models import Issue
from .tokens import DEFAULT_PREFIX, generate_app_token

DEFAULT_GATEWAY_URL = "http://127.0.0.1:8787"


class GatewayClientError(RuntimeError):
    def __init__(self, status: int, code: str, message: str):
        super().__init__(f"{code} ({status}): {message}")
        self.status = status
        self.code = code
        self.message = message


@dataclass
class GatewayClient:
    base_url: str = DEFAULT_GATEWAY_URL
    token: str | None = None
    timeout: float = 30.0
    token_prefix: str = DEFAULT_PREFIX
    session: requests.Session | None = None
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._session = self.session or requests.Session()
        if not self.token:
            self.token = generate_app_token(self.token_prefix)
        self._session.headers.setdefault(TOKEN_HEADER, self.token)
        self._session.headers.setdefault("Accept", "application/json")

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> Any:
        url = f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        try:
            response = self._session.request(
                method,
                url,
                params=dict(params) if params else None,
                json=json_body,
                headers=self._session.headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GatewayClientError(0, "network", f"Gateway unreachable: {exc.__class__.__name__}") from exc
        try:
            payload = response.json()
        except ValueError:
            raise GatewayClientError(
                response.status_code, "invalid-response", "Gateway returned a non-JSON response"
            ) from None
        if not isinstance(payload, dict):
            raise GatewayClientError(response.status_code, "invalid-response", "Unexpected response shape")
        if not payload.get("success") or not 200 <= response.status_code < 300:
            error = payload.get("error") or {}
            raise GatewayClientError(
                int(error.get("status", response.status_code)),
                str(error.get("code", "error")),
                str(error.get("message", "Request failed")),
            )
        return payload.get("data")

    # ---- reads --------------------------------------------------------
    def list_issues(self, *, state: str = "all", labels: str | None = None, per_page: int = 100) -> list[Issue]:
        params: dict[str, Any] = {"state": state, "per_page": per_page}
        if labels:
            params["labels"] = labels
        data = self._request("GET", "/api/issues", params=params)
        return [Issue.from_api(entry) for entry in data or [] if isinstance(entry, dict)]

    def get_board(self, *, state: str = "all") -> Board:
        return Board.from_issues(issue for issue in self.list_issues(state=state) if not issue.is_pull_request)

    def get_issue(self, number: int) -> Issue:
        return Issue.from_api(self._request("GET", f"/api/issues/{number}"))

    def get_stats(self) -> dict[str, Any]:
        return dict(self._request("GET", "/api/stats") or {})

    def get_patch_notes(self) -> dict[str, Any]:
        return dict(self._request("GET", "/api/patch-notes") or {})

    def get_latest_version(self) -> dict[str, Any]:
        return dict(self._request("GET", "/api/latest-version") or {})

    def health(self) -> dict[str, Any]:
        return dict(self._request("GET", "/api/health") or {})

    # ---- writes -------------------------------------------------------
    def submit_bug(self, report: Mapping[str, Any]) -> dict[str, Any]:
        return dict(self._request("POST", "/api/submit-bug", json_body=dict(report)) or {})

    def update_issue_labels(self, number: int, labels: list[str]) -> list[str]:
        data = self._request("PUT", f"/api/issues/{number}/labels", json_body={"labels": labels})
        return list((data or {}).get("labels", labels))

    def set_column(self, number: int, column: Column | str) -> dict[str, Any]:
        value = column.value if isinstance(column, Column) else column
        return dict(self._request("PUT", f"/api/issues/{number}/column", json_body={"column": value}) or {})

    def move_card(self, board: Board, number: int, target: Column | str, *, index: int | None = None) -> bool:
        """Move a card on ``board`` and persist it; the board is restored on failure.

        The gateway re-reads the issue's current labels before replacing the
        status label, so labels added since ``board`` was fetched survive.
        """

        def persist(issue_number: int, local_labels: list[str]) -> list[str]:
            result = self.set_column(issue_number, target)
            return list(result.get("labels") or local_labels)

        return board.move(number, target, persist, index=index)


__all__ = ["DEFAULT_GATEWAY_URL", "GatewayClient", "GatewayClientError"]
