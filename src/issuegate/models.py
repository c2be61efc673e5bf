from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .errors import ValidationError

ISSUE_STATES = ("open", "closed", "all")
SORT_KEYS = ("created", "updated", "comments")
DIRECTIONS = ("asc", "desc")
MAX_PAGE_SIZE = 100


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an upstream ISO-8601 timestamp (``Z`` suffix tolerated)."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class Issue:
    """Transient copy of an upstream issue.

    ``labels`` keeps the order the tracker returned them in; the mapper
    relies on that order to break ties between conflicting family labels.
    """

    number: int
    title: str
    body: str = ""
    state: str = "open"
    labels: list[str] = field(default_factory=list)
    assignee: str | None = None
    url: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    closed_at: datetime | None = None
    comments: int = 0
    is_pull_request: bool = False

    @property
    def closed(self) -> bool:
        return self.state == "closed"

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> Issue:
        labels: list[str] = []
        for label in data.get("labels") or []:
            name = label.get("name") if isinstance(label, Mapping) else label
            if isinstance(name, str) and name and name not in labels:
                labels.append(name)
        assignee = data.get("assignee")
        return cls(
            number=int(data.get("number") or 0),
            title=str(data.get("title") or ""),
            body=str(data.get("body") or ""),
            state=str(data.get("state") or "open"),
            labels=labels,
            assignee=assignee.get("login") if isinstance(assignee, Mapping) else None,
            url=str(data.get("html_url") or ""),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
            closed_at=parse_timestamp(data.get("closed_at")),
            comments=int(data.get("comments") or 0),
            is_pull_request="pull_request" in data,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "title": self.title,
            "body": self.body,
            "state": self.state,
            "labels": list(self.labels),
            "assignee": self.assignee,
            "url": self.url,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "comments": self.comments,
        }


def _choice(name: str, value: str, allowed: tuple[str, ...]) -> str:
    if value not in allowed:
        raise ValidationError(f"Invalid {name} '{value}'; expected one of: {', '.join(allowed)}")
    return value


def _positive_int(name: str, value: Any, *, upper: int | None = None) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {name} '{value}'; expected an integer") from None
    if number < 1 or (upper is not None and number > upper):
        bound = f"1..{upper}" if upper is not None else ">= 1"
        raise ValidationError(f"Invalid {name} {number}; expected {bound}")
    return number


@dataclass(frozen=True)
class IssueFilter:
    """Recognized options for listing issues."""

    state: str = "open"
    labels: frozenset[str] = frozenset()
    sort: str = "created"
    direction: str = "desc"
    page: int | None = None
    per_page: int | None = None
    since: str | None = None

    def __post_init__(self) -> None:
        _choice("state", self.state, ISSUE_STATES)
        _choice("sort", self.sort, SORT_KEYS)
        _choice("direction", self.direction, DIRECTIONS)
        if self.page is not None:
            _positive_int("page", self.page)
        if self.per_page is not None:
            _positive_int("per_page", self.per_page, upper=MAX_PAGE_SIZE)
        if self.since is not None and parse_timestamp(self.since) is None:
            raise ValidationError(f"Invalid since '{self.since}'; expected an ISO-8601 timestamp")

    @classmethod
    def from_query(cls, query: Mapping[str, str]) -> IssueFilter:
        """Build a filter from gateway query parameters (absent/blank = default)."""
        kwargs: dict[str, Any] = {}
        for key in ("state", "sort", "direction", "since"):
            value = (query.get(key) or "").strip()
            if value:
                kwargs[key] = value
        labels = split_labels(query.get("labels") or "")
        if labels:
            kwargs["labels"] = labels
        if (query.get("page") or "").strip():
            kwargs["page"] = _positive_int("page", query["page"])
        if (query.get("per_page") or "").strip():
            kwargs["per_page"] = _positive_int("per_page", query["per_page"], upper=MAX_PAGE_SIZE)
        return cls(**kwargs)

    def to_params(self) -> dict[str, str]:
        """Canonical upstream query parameters, sorted by key."""
        params: dict[str, str] = {
            "state": self.state,
            "sort": self.sort,
            "direction": self.direction,
        }
        if self.labels:
            params["labels"] = ",".join(sorted(self.labels))
        if self.page is not None:
            params["page"] = str(self.page)
        if self.per_page is not None:
            params["per_page"] = str(self.per_page)
        if self.since:
            params["since"] = self.since
        return dict(sorted(params.items()))


def split_labels(raw: str | Iterable[str]) -> frozenset[str]:
    items = raw.split(",") if isinstance(raw, str) else raw
    return frozenset(item.strip() for item in items if item and item.strip())


@dataclass
class UpstreamResponse:
    """Raw upstream payload kept as text so cached copies stay byte-identical."""

    status: int
    text: str
    headers: dict[str, str] = field(default_factory=dict)


__all__ = [
    "DIRECTIONS",
    "ISSUE_STATES",
    "Issue",
    "IssueFilter",
    "MAX_PAGE_SIZE",
    "SORT_KEYS",
    "UpstreamResponse",
    "parse_timestamp",
    "split_labels",
]
