"""Label <-> column mapping for the Kanban view.

Workflow position lives on the issue as a ``status:<column>`` label. The
tracker does not enforce one label per family, so every reader here picks the
first match in the label order the tracker returned, and every writer
replaces the whole status family instead of appending to it.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from .models import Issue

STATUS_PREFIX = "status:"
SEVERITY_PREFIX = "severity:"
CATEGORY_PREFIX = "category:"

SEVERITY_LEVELS = ("critical", "high", "medium", "low")
DEFAULT_SEVERITY = "medium"
DEFAULT_CATEGORY = "general"


class Column(str, Enum):
    """Board columns, declared in display order."""

    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    TESTING = "testing"
    DONE = "done"

    @property
    def label(self) -> str:
        return f"{STATUS_PREFIX}{self.value}"

    @classmethod
    def from_label(cls, label: str) -> Column | None:
        if not label.startswith(STATUS_PREFIX):
            return None
        try:
            return cls(label[len(STATUS_PREFIX):])
        except ValueError:
            return None

    @classmethod
    def parse(cls, value: str) -> Column:
        """Accept ``in-progress``, ``status:in-progress`` or ``inProgress``."""
        text = value.strip()
        if text.startswith(STATUS_PREFIX):
            text = text[len(STATUS_PREFIX):]
        aliases = {"inprogress": cls.IN_PROGRESS, "in_progress": cls.IN_PROGRESS}
        if text.lower() in aliases:
            return aliases[text.lower()]
        return cls(text)


def _family_values(labels: Iterable[str], prefix: str) -> list[str]:
    return [label[len(prefix):] for label in labels if label.startswith(prefix)]


def status_column(labels: Iterable[str]) -> Column | None:
    for label in labels:
        column = Column.from_label(label)
        if column is not None:
            return column
    return None


def to_column(issue: Issue) -> Column:
    """Derive the board column; total over all issues."""
    column = status_column(issue.labels)
    if column is not None:
        return column
    return Column.DONE if issue.closed else Column.BACKLOG


def to_label_delta(current_labels: Iterable[str], target: Column | str) -> list[str]:
    """Full label set placing an issue in ``target``.

    Every ``status:*`` label is dropped (known or not), other labels keep their
    order with duplicates removed, and exactly one status label is appended.
    """
    column = target if isinstance(target, Column) else Column.parse(target)
    kept = [label for label in current_labels if not label.startswith(STATUS_PREFIX)]
    return [*dict.fromkeys(kept), column.label]


def severity_of(labels: Iterable[str]) -> str:
    for value in _family_values(labels, SEVERITY_PREFIX):
        if value in SEVERITY_LEVELS:
            return value
    return DEFAULT_SEVERITY


def category_of(labels: Iterable[str]) -> str:
    for value in _family_values(labels, CATEGORY_PREFIX):
        if value:
            return value
    return DEFAULT_CATEGORY


def display_labels(labels: Iterable[str]) -> list[str]:
    """Labels outside the status/severity/category families."""
    families = (STATUS_PREFIX, SEVERITY_PREFIX, CATEGORY_PREFIX)
    return [label for label in labels if not label.startswith(families)]


__all__ = [
    "CATEGORY_PREFIX",
    "Column",
    "DEFAULT_CATEGORY",
    "DEFAULT_SEVERITY",
    "SEVERITY_LEVELS",
    "SEVERITY_PREFIX",
    "STATUS_PREFIX",
    "category_of",
    "display_labels",
    "severity_of",
    "status_column",
    "to_column",
    "to_label_delta",
]
