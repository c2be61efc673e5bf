"""Typed wrapper around the upstream issue tracker's REST API (GitHub).

Calls are made exactly once: there is no retry loop here, so an upstream
outage is surfaced immediately instead of being amplified.
"""

from __future__ import annotations

import json
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import requests

from .errors import NotFound, UpstreamRejected, UpstreamUnavailable, ValidationError
from .logging import get_logger
from .models import Issue, IssueFilter, UpstreamResponse
from .observability import get_tracer

DEFAULT_API_URL = "https://api.github.com"
USER_AGENT = "issuegate/0.3.0"
DEFAULT_TIMEOUT = 30.0

_tracer = get_tracer(__name__)


@dataclass
class GitHubRestClient:
    """Lightweight REST client scoped to a single ``owner/repo``."""

    token: str
    repo: str
    base_url: str = DEFAULT_API_URL
    timeout: float = DEFAULT_TIMEOUT
    session: requests.Session | None = None
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._session = self.session or requests.Session()
        self._session.headers.setdefault("Authorization", f"Bearer {self.token}")
        self._session.headers.setdefault("Accept", "application/vnd.github+json")
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.repo}"

    def issues_path(self, number: int | None = None) -> str:
        base = f"{self.repo_path}/issues"
        return base if number is None else f"{base}/{number}"

    # ---- transport ----------------------------------------------------
    def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json_body: Any | None = None,
        not_found: str | None = None,
    ) -> UpstreamResponse:
        url = f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        logger = get_logger()
        start = time.perf_counter()
        with _tracer.start_as_current_span("upstream.request") as span:
            span.set_attribute("http.method", method)
            span.set_attribute("upstream.path", path)
            try:
                response = self._session.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=self._session.headers,
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                logger.log_upstream_call(
                    method, path, None, (time.perf_counter() - start) * 1000,
                    error=exc.__class__.__name__,
                )
                raise UpstreamUnavailable() from exc
            span.set_attribute("http.status_code", response.status_code)

        logger.log_upstream_call(
            method, path, response.status_code, (time.perf_counter() - start) * 1000
        )
        if response.status_code == 404 and not_found:
            raise NotFound(not_found)
        if not 200 <= response.status_code < 300:
            raise UpstreamRejected(response.status_code, response.text or "")
        return UpstreamResponse(
            status=response.status_code,
            text=response.text or "",
            headers={k: v for k, v in response.headers.items()},
        )

    @staticmethod
    def _decode(response: UpstreamResponse) -> Any:
        if not response.text:
            return None
        try:
            return json.loads(response.text)
        except ValueError:
            raise UpstreamRejected(response.status, response.text, message="Issue tracker returned malformed JSON") from None

    # ---- reads --------------------------------------------------------
    def fetch_issues_raw(self, issue_filter: IssueFilter | None = None) -> UpstreamResponse:
        issue_filter = issue_filter or IssueFilter()
        return self._send("GET", self.issues_path(), params=issue_filter.to_params())

    def list_issues(self, issue_filter: IssueFilter | None = None) -> list[Issue]:
        """Issues matching ``issue_filter``, most-recent-first unless asked otherwise."""
        data = self._decode(self.fetch_issues_raw(issue_filter))
        if not isinstance(data, list):
            return []
        return [Issue.from_api(entry) for entry in data if isinstance(entry, dict)]

    def fetch_issue_raw(self, number: int) -> UpstreamResponse:
        return self._send("GET", self.issues_path(number), not_found=f"Issue #{number} not found")

    def get_issue(self, number: int) -> Issue:
        data = self._decode(self.fetch_issue_raw(number))
        if not isinstance(data, dict):
            raise NotFound(f"Issue #{number} not found")
        return Issue.from_api(data)

    def get_repository(self) -> dict[str, Any]:
        data = self._decode(self._send("GET", self.repo_path))
        return data if isinstance(data, dict) else {}

    # ---- writes -------------------------------------------------------
    def create_issue(self, title: str, body: str, labels: Iterable[str] = ()) -> Issue:
        if not title or not title.strip():
            raise ValidationError("Issue title is required")
        if not body or not body.strip():
            raise ValidationError("Issue body is required")
        payload: dict[str, Any] = {"title": title, "body": body}
        label_list = list(dict.fromkeys(labels))
        if label_list:
            payload["labels"] = label_list
        data = self._decode(self._send("POST", self.issues_path(), json_body=payload))
        if not isinstance(data, dict) or not isinstance(data.get("number"), int):
            raise UpstreamRejected(502, "", message="Issue tracker did not return the created issue")
        return Issue.from_api(data)

    def replace_labels(self, number: int, labels: Iterable[str]) -> list[str]:
        """Replace the full label set of issue ``number``; returns the resulting names."""
        payload = {"labels": list(dict.fromkeys(labels))}
        response = self._send(
            "PUT",
            f"{self.issues_path(number)}/labels",
            json_body=payload,
            not_found=f"Issue #{number} not found",
        )
        data = self._decode(response)
        if not isinstance(data, list):
            return payload["labels"]
        names: list[str] = []
        for entry in data:
            name = entry.get("name") if isinstance(entry, dict) else entry
            if isinstance(name, str):
                names.append(name)
        return names


__all__ = ["DEFAULT_API_URL", "DEFAULT_TIMEOUT", "GitHubRestClient", "USER_AGENT"]
