"""Data models for persisted run state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TaskStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAIL = "FAIL"


@dataclass(slots=True)
class ConfigurationRecord:
    """Choices remembered between runs."""

    base_directory: str = ""
    selected_repositories: list[str] = field(default_factory=list)
    branches: dict[str, str] = field(default_factory=dict)
    environment_tag: str | None = None

    @property
    def is_empty(self) -> bool:
        return (
            not self.base_directory
            and not self.selected_repositories
            and not self.branches
            and self.environment_tag is None
        )


@dataclass(frozen=True, slots=True)
class TaskOutcome:
    repository_id: str
    status: TaskStatus
    log_path: str

    @property
    def ok(self) -> bool:
        return self.status is TaskStatus.SUCCESS


@dataclass(frozen=True, slots=True)
class SummaryRecord:
    """Read-only view over a tracker log for one run."""

    started_at: datetime
    finished_at: datetime
    outcomes: tuple[TaskOutcome, ...]

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def is_empty(self) -> bool:
        return not self.outcomes

    @property
    def counts(self) -> dict[TaskStatus, int]:
        counts = {status: 0 for status in TaskStatus}
        for outcome in self.outcomes:
            counts[outcome.status] += 1
        return counts

    @property
    def failed(self) -> list[TaskOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]


__all__ = ["ConfigurationRecord", "SummaryRecord", "TaskOutcome", "TaskStatus"]
