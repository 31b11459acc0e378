"""Data models and enums for cami."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

import yaml

UNCATEGORIZED = "uncategorized"


class ProjectState(StrEnum):
    """Normalization state of a target project, least to most managed."""

    NON_CAMI = "non-cami"
    AWARE = "cami-aware"
    # Reserved for a pre-manifest format. Nothing detects it yet, so no
    # analysis ever returns this value; it is kept so manifests that carry
    # it still load.
    LEGACY = "cami-legacy"
    NATIVE = "cami-native"


class NormalizationLevel(StrEnum):
    MINIMAL = "minimal"
    STANDARD = "standard"
    FULL = "full"


class DeploymentStatus(StrEnum):
    UP_TO_DATE = "up-to-date"
    UPDATE_AVAILABLE = "update-available"
    NOT_DEPLOYED = "not-deployed"
    UNKNOWN = "unknown"


STATUS_SYMBOLS: dict[str, str] = {
    DeploymentStatus.UP_TO_DATE.value: "✓",
    DeploymentStatus.UPDATE_AVAILABLE.value: "⚠",
    DeploymentStatus.NOT_DEPLOYED.value: "○",
    DeploymentStatus.UNKNOWN.value: "?",
}


def status_symbol(status: DeploymentStatus | str) -> str:
    return STATUS_SYMBOLS.get(str(status), "?")


class OutcomeStatus(StrEnum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class Agent:
    """An agent markdown file: YAML frontmatter plus a markdown body.

    ``metadata`` keeps every frontmatter key seen at parse time so that a
    rewrite does not drop keys cami does not model.
    """

    name: str
    file_path: Path
    version: str = ""
    description: str = ""
    category: str = ""
    body: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def file_name(self) -> str:
        return self.file_path.name

    @property
    def display_category(self) -> str:
        return self.category or UNCATEGORIZED

    def full_content(self) -> str:
        meta = dict(self.metadata)
        meta["name"] = self.name
        # Empty fields the file never had stay out of the frontmatter.
        for key in ("version", "description"):
            value = getattr(self, key)
            if value or key in meta:
                meta[key] = value
        frontmatter = yaml.safe_dump(meta, sort_keys=False, allow_unicode=True, width=1000)
        return f"---\n{frontmatter}---\n{self.body}"


@dataclass
class ItemOutcome:
    """Result for one item (source, location, agent) of a multi-item operation."""

    name: str
    status: OutcomeStatus
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.OK


@dataclass
class BatchOutcome:
    """Per-item breakdown of a multi-item operation.

    The operation as a whole succeeded even when some items failed; callers
    render each item from ``items``.
    """

    items: list[ItemOutcome] = field(default_factory=list)

    def add(self, name: str, status: OutcomeStatus, message: str = "") -> ItemOutcome:
        outcome = ItemOutcome(name=name, status=status, message=message)
        self.items.append(outcome)
        return outcome

    @property
    def succeeded(self) -> list[str]:
        return [i.name for i in self.items if i.status == OutcomeStatus.OK]

    @property
    def skipped(self) -> list[str]:
        return [i.name for i in self.items if i.status == OutcomeStatus.SKIPPED]

    @property
    def failed(self) -> list[str]:
        return [i.name for i in self.items if i.status == OutcomeStatus.FAILED]

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)

    def summary(self) -> str:
        parts = [f"{len(self.succeeded)} ok"]
        if self.skipped:
            parts.append(f"{len(self.skipped)} skipped")
        if self.failed:
            parts.append(f"{len(self.failed)} failed")
        return ", ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [
                {"name": i.name, "status": i.status.value, "message": i.message}
                for i in self.items
            ],
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
        }
