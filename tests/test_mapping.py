from __future__ import annotations

import pytest

from issuegate.mapping import (
    Column,
    category_of,
    display_labels,
    severity_of,
    status_column,
    to_column,
    to_label_delta,
)
from issuegate.models import Issue


def _issue(labels: list[str], state: str = "open") -> Issue:
    return Issue(number=1, title="t", state=state, labels=labels)


@pytest.mark.parametrize(
    "labels, state, expected",
    [
        ([], "open", Column.BACKLOG),
        ([], "closed", Column.DONE),
        (["bug"], "closed", Column.DONE),
        (["status:todo"], "open", Column.TODO),
        (["status:in-progress"], "open", Column.IN_PROGRESS),
        (["status:testing"], "closed", Column.TESTING),
        (["status:unknown"], "open", Column.BACKLOG),
        (["status:unknown"], "closed", Column.DONE),
        (["bug", "status:testing", "status:todo"], "open", Column.TESTING),
    ],
)
def test_to_column(labels: list[str], state: str, expected: Column) -> None:
    assert to_column(_issue(labels, state)) is expected


def test_to_column_is_total_over_label_noise() -> None:
    for labels in ([], ["status:"], ["STATUS:todo"], ["status:done", "status:backlog"]):
        for state in ("open", "closed"):
            assert to_column(_issue(labels, state)) in set(Column)


def test_label_delta_keeps_other_labels_and_single_status() -> None:
    current = ["bug", "status:todo", "severity:high", "status:testing", "ui"]
    result = to_label_delta(current, Column.DONE)

    assert [label for label in result if label.startswith("status:")] == ["status:done"]
    assert set(result) - {"status:done"} == {"bug", "severity:high", "ui"}
    assert result[:3] == ["bug", "severity:high", "ui"]


def test_label_delta_drops_unknown_status_labels_and_duplicates() -> None:
    result = to_label_delta(["bug", "status:wontfix", "bug"], "testing")
    assert result == ["bug", "status:testing"]


def test_label_delta_is_idempotent() -> None:
    start = ["bug", "status:todo", "category:ui"]
    once = to_label_delta(start, Column.IN_PROGRESS)
    assert to_label_delta(start, Column.IN_PROGRESS) == once
    assert to_label_delta(once, Column.IN_PROGRESS) == once


def test_label_delta_rejects_unknown_column() -> None:
    with pytest.raises(ValueError):
        to_label_delta(["bug"], "archived")


@pytest.mark.parametrize("raw", ["in-progress", "status:in-progress", "inProgress", "in_progress", " in-progress "])
def test_column_parse_aliases(raw: str) -> None:
    assert Column.parse(raw) is Column.IN_PROGRESS


def test_column_labels_round_trip() -> None:
    for column in Column:
        assert Column.from_label(column.label) is column
    assert Column.from_label("bug") is None
    assert status_column(["bug", "status:nope"]) is None


def test_severity_and_category_first_match_wins() -> None:
    labels = ["severity:urgent", "severity:high", "severity:low", "category:", "category:vr", "category:ui"]
    assert severity_of(labels) == "high"
    assert category_of(labels) == "vr"


def test_severity_and_category_defaults() -> None:
    assert severity_of(["bug"]) == "medium"
    assert category_of([]) == "general"


def test_display_labels_hides_families() -> None:
    labels = ["bug", "status:todo", "severity:low", "category:ui", "web-submission"]
    assert display_labels(labels) == ["bug", "web-submission"]
