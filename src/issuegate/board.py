"""In-memory Kanban view over a fetched issue snapshot.

Nothing here touches the network except ``Board.move``, which delegates the
label mutation to a caller-supplied function and restores the pre-move
snapshot if that call fails.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

from .logging import get_logger
from .mapping import Column, category_of, severity_of, to_column, to_label_delta
from .models import Issue

ALL = "all"

LabelMutation = Callable[[int, list[str]], Any]


@dataclass
class Card:
    issue: Issue
    severity: str
    category: str

    @classmethod
    def from_issue(cls, issue: Issue) -> Card:
        return cls(issue=issue, severity=severity_of(issue.labels), category=category_of(issue.labels))

    @property
    def number(self) -> int:
        return self.issue.number

    def matches(self, term: str) -> bool:
        return (
            term in self.issue.title.lower()
            or term in self.issue.body.lower()
            or term in str(self.issue.number)
            or any(term in label.lower() for label in self.issue.labels)
        )

    def to_dict(self) -> dict[str, Any]:
        return {**self.issue.to_dict(), "severity": self.severity, "category": self.category}


def categorize(issues: Iterable[Issue]) -> dict[Column, list[Card]]:
    columns: dict[Column, list[Card]] = {column: [] for column in Column}
    for issue in issues:
        columns[to_column(issue)].append(Card.from_issue(issue))
    return columns


def _as_datetime(value: date | datetime | str | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    elif not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class Board:
    columns: dict[Column, list[Card]] = field(default_factory=lambda: {c: [] for c in Column})

    @classmethod
    def from_issues(cls, issues: Iterable[Issue]) -> Board:
        return cls(columns=categorize(issues))

    def cards(self) -> list[Card]:
        return [card for column in Column for card in self.columns.get(column, [])]

    def locate(self, number: int) -> tuple[Column, int] | None:
        for column in Column:
            for index, card in enumerate(self.columns.get(column, [])):
                if card.number == number:
                    return column, index
        return None

    def counts(self) -> dict[str, int]:
        return {column.value: len(self.columns.get(column, [])) for column in Column}

    def search(self, query: str) -> Board:
        term = query.strip().lower()
        if not term:
            return Board(columns={c: list(cards) for c, cards in self.columns.items()})
        return Board(
            columns={c: [card for card in cards if card.matches(term)] for c, cards in self.columns.items()}
        )

    def filter(
        self,
        *,
        severity: str | None = None,
        category: str | None = None,
        assignee: str | None = None,
        date_from: date | datetime | str | None = None,
        date_to: date | datetime | str | None = None,
    ) -> Board:
        """Cards matching every given criterion; ``None`` or ``"all"`` disables one."""
        lower = _as_datetime(date_from)
        upper = _as_datetime(date_to)

        def keep(card: Card) -> bool:
            if severity and severity != ALL and card.severity != severity:
                return False
            if category and category != ALL and card.category != category:
                return False
            if assignee and assignee != ALL and card.issue.assignee != assignee:
                return False
            created = card.issue.created_at
            if lower is not None and (created is None or created < lower):
                return False
            if upper is not None and (created is None or created > upper):
                return False
            return True

        return Board(columns={c: [card for card in cards if keep(card)] for c, cards in self.columns.items()})

    def snapshot(self) -> dict[Column, list[Card]]:
        return copy.deepcopy(self.columns)

    def move(
        self, number: int, target: Column | str, mutate: LabelMutation, *, index: int | None = None
    ) -> bool:
        """Move a card, confirming through ``mutate(number, labels)``.

        The view changes before ``mutate`` runs. If ``mutate`` raises, the
        exact pre-move snapshot is restored and the exception propagates.
        When ``mutate`` returns a label list, the card takes those labels.
        Returns False when the card is already in ``target``.
        """
        if not isinstance(target, Column):
            target = Column.parse(target)
        found = self.locate(number)
        if found is None:
            raise KeyError(f"Issue #{number} is not on the board")
        source, position = found
        if source is target:
            return False

        before = self.snapshot()
        card = self.columns[source].pop(position)
        new_labels = to_label_delta(card.issue.labels, target)
        previous_labels = card.issue.labels
        card.issue.labels = new_labels
        destination = self.columns.setdefault(target, [])
        destination.insert(len(destination) if index is None else index, card)
        try:
            confirmed = mutate(number, new_labels)
        except Exception as exc:
            self.columns = before
            get_logger().warning(
                "board move rolled back",
                issue_number=number,
                target=target.value,
                error=exc.__class__.__name__,
            )
            raise
        if isinstance(confirmed, list):
            card.issue.labels = [str(label) for label in confirmed]
        get_logger().debug(
            "board move confirmed",
            issue_number=number,
            source=source.value,
            target=target.value,
            previous=previous_labels,
        )
        return True

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {column.value: [card.to_dict() for card in self.columns.get(column, [])] for column in Column}


__all__ = ["ALL", "Board", "Card", "LabelMutation", "categorize"]
