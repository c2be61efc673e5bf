"""Request payloads and generated content served by the gateway.

Covers the bug report submitted from the web form and the apps, the issue
body rendered from it, the aggregate statistics, and the patch notes /
latest-version documents.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ValidationError
from .mapping import (
    CATEGORY_PREFIX,
    DEFAULT_CATEGORY,
    DEFAULT_SEVERITY,
    SEVERITY_LEVELS,
    SEVERITY_PREFIX,
)
from .models import parse_timestamp

BUG_LABEL = "bug"
WEB_SUBMISSION_LABEL = "web-submission"
MAX_TITLE_LENGTH = 256
SYSTEM_INFO_FIELDS = (
    ("os", "OS", "Unknown"),
    ("browser", "Browser", "Unknown"),
    ("version", "App Version", "N/A"),
    ("headset", "VR Headset", "None"),
)


def _optional_text(payload: Mapping[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Field '{key}' must be a string")
    return value.strip() or None


@dataclass
class BugReport:
    title: str
    description: str
    severity: str = DEFAULT_SEVERITY
    category: str = DEFAULT_CATEGORY
    steps: str | None = None
    expected: str | None = None
    actual: str | None = None
    additional: str | None = None
    system_info: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> BugReport:
        if not isinstance(payload, Mapping):
            raise ValidationError("Request body must be a JSON object")
        title = _optional_text(payload, "title") or ""
        description = _optional_text(payload, "description") or ""
        missing = [name for name, value in (("title", title), ("description", description)) if not value]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(f"Title must be at most {MAX_TITLE_LENGTH} characters")

        severity = (_optional_text(payload, "severity") or DEFAULT_SEVERITY).lower()
        if severity not in SEVERITY_LEVELS:
            raise ValidationError(
                f"Invalid severity '{severity}'; expected one of: {', '.join(SEVERITY_LEVELS)}"
            )
        category = (_optional_text(payload, "category") or DEFAULT_CATEGORY).lower()
        if any(ch.isspace() or ch == "," for ch in category):
            raise ValidationError("Category must be a single word")

        raw_info = payload.get("systemInfo") or {}
        if not isinstance(raw_info, Mapping):
            raise ValidationError("Field 'systemInfo' must be an object")
        system_info = {str(k): str(v) for k, v in raw_info.items() if v not in (None, "")}

        return cls(
            title=title,
            description=description,
            severity=severity,
            category=category,
            steps=_optional_text(payload, "steps"),
            expected=_optional_text(payload, "expected"),
            actual=_optional_text(payload, "actual"),
            additional=_optional_text(payload, "additional"),
            system_info=system_info,
        )

    def labels(self, *, trusted: bool) -> list[str]:
        labels = [BUG_LABEL, f"{SEVERITY_PREFIX}{self.severity}", f"{CATEGORY_PREFIX}{self.category}"]
        if not trusted:
            labels.append(WEB_SUBMISSION_LABEL)
        return labels

    def render_body(self, *, trusted: bool, product: str = "VROS") -> str:
        source = f"{product} App" if trusted else "Web"
        sections = [
            f"## Description\n{self.description}",
            f"## Severity\n{self.severity}",
            f"## Category\n{self.category}",
        ]
        for heading, text in (
            ("Steps to Reproduce", self.steps),
            ("Expected Behavior", self.expected),
            ("Actual Behavior", self.actual),
        ):
            if text:
                sections.append(f"## {heading}\n{text}")
        info_lines = [f"- **Submitted from:** {source}"]
        for key, title, default in SYSTEM_INFO_FIELDS:
            info_lines.append(f"- **{title}:** {self.system_info.get(key, default)}")
        sections.append("## System Information\n" + "\n".join(info_lines))
        if self.additional:
            sections.append(f"## Additional Information\n{self.additional}")
        footer = f"*Submitted via {product} Bug Tracker ({'App' if trusted else 'Web'})*"
        return "\n\n".join(sections) + f"\n\n---\n{footer}"


def average_resolution_time(closed_issues: Iterable[Mapping[str, Any]]) -> str:
    """Mean created->closed time in whole days, e.g. ``"3 days"``; ``"N/A"`` if unknown."""
    durations: list[float] = []
    for issue in closed_issues:
        created = parse_timestamp(issue.get("created_at"))
        closed = parse_timestamp(issue.get("closed_at"))
        if created is not None and closed is not None:
            durations.append((closed - created).total_seconds())
    if not durations:
        return "N/A"
    days = round(sum(durations) / len(durations) / 86400)
    return f"{days} day{'' if days == 1 else 's'}"


DEFAULT_PATCH_NOTES: dict[str, Any] = {
    "versions": [
        {
            "version": "0.1.0",
            "date": "2025-01-13",
            "title": "Initial Release",
            "type": "major",
            "sections": {
                "features": [
                    "Virtual Reality Overlay System foundation",
                    "Desktop control panel with system tray",
                    "VR Dashboard with process management",
                    "Bug tracking and support system",
                    "Dark theme optimized for OLED displays",
                ],
                "improvements": [],
                "fixes": [],
            },
        }
    ],
    "latest": "0.1.0",
    "downloadUrl": None,
    "minimumVersion": None,
    "criticalUpdate": False,
    "announcement": None,
}


class ContentError(ValueError):
    pass


def load_patch_notes(path: str | Path | None = None) -> dict[str, Any]:
    """Patch notes from a YAML/JSON document, or the built-in notes."""
    if path is None:
        return copy.deepcopy(DEFAULT_PATCH_NOTES)
    p = Path(path)
    if not p.exists():
        raise ContentError(f"Patch notes file not found: {p}")
    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict) or not isinstance(raw.get("versions"), list):
        raise ContentError(f"Patch notes file {p} must define a 'versions' list")
    notes = {**copy.deepcopy(DEFAULT_PATCH_NOTES), **raw}
    if not notes.get("latest") and notes["versions"]:
        notes["latest"] = str(notes["versions"][0].get("version", ""))
    return notes


def latest_version(notes: Mapping[str, Any], *, download_url: str | None = None) -> dict[str, Any]:
    latest = str(notes.get("latest") or "")
    entry = next(
        (v for v in notes.get("versions", []) if isinstance(v, Mapping) and v.get("version") == latest),
        {},
    )
    return {
        "version": latest,
        "date": entry.get("date"),
        "updateAvailable": False,
        "downloadUrl": notes.get("downloadUrl") or download_url,
        "minimumVersion": notes.get("minimumVersion") or latest,
        "criticalUpdate": bool(notes.get("criticalUpdate", False)),
        "announcement": notes.get("announcement"),
    }


__all__ = [
    "BUG_LABEL",
    "BugReport",
    "ContentError",
    "DEFAULT_PATCH_NOTES",
    "WEB_SUBMISSION_LABEL",
    "average_resolution_time",
    "latest_version",
    "load_patch_notes",
]
