"""Append-only tracker log and run summary aggregation."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path

from .models import SummaryRecord, TaskOutcome, TaskStatus

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
SUMMARY_COLUMNS = "Status,Repository,Log File"


def format_outcome(outcome: TaskOutcome) -> str:
    return f"{outcome.repository_id},{outcome.status.value},{outcome.log_path}"


def parse_outcome(line: str) -> TaskOutcome | None:
    """Parse one tracker line; ``None`` when the line is malformed."""

    parts = line.rstrip("\r\n").split(",", 2)
    if len(parts) != 3 or not parts[0]:
        return None
    repository_id, status, log_path = parts
    try:
        return TaskOutcome(repository_id=repository_id, status=TaskStatus(status), log_path=log_path)
    except ValueError:
        return None


def read_tracker(path: Path) -> list[TaskOutcome]:
    """Read every well-formed outcome from a tracker file, in recorded order.

    A line cut short by an interrupted write (no trailing newline, or a split
    multi-byte character) is skipped like any other malformed line.
    """

    outcomes: list[TaskOutcome] = []
    with Path(path).open(encoding="utf-8", errors="replace") as handle:
        for lineno, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            torn = not line.endswith("\n") or "\ufffd" in line
            outcome = None if torn else parse_outcome(line)
            if outcome is None:
                logger.warning("Skipping malformed tracker line %d in %s", lineno, path)
                continue
            outcomes.append(outcome)
    return outcomes


class ExecutionTracker:
    """Collects task outcomes as workers finish them.

    ``record`` may be called concurrently from worker threads; appends are
    serialized by a lock so every outcome lands on its own line.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._outcomes: list[TaskOutcome] = []
        self._write_failures = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def outcomes(self) -> list[TaskOutcome]:
        with self._lock:
            return list(self._outcomes)

    @property
    def write_failures(self) -> int:
        return self._write_failures

    @property
    def persisted_count(self) -> int:
        with self._lock:
            return len(self._outcomes) - self._write_failures

    def record(self, outcome: TaskOutcome) -> None:
        """Append ``outcome`` to the tracker log."""

        with self._lock:
            self._outcomes.append(outcome)
            try:
                with self._path.open("a", encoding="utf-8") as handle:
                    handle.write(format_outcome(outcome) + "\n")
                    handle.flush()
            except OSError as exc:
                self._write_failures += 1
                logger.warning(
                    "Failed to append outcome to tracker",
                    extra={
                        "repository_id": outcome.repository_id,
                        "tracker": str(self._path),
                        "error": str(exc),
                    },
                )

    def summarize(self, started_at: datetime, finished_at: datetime) -> SummaryRecord:
        """Build the summary from the tracker log, tolerating a partial or missing file."""

        outcomes: list[TaskOutcome]
        try:
            outcomes = read_tracker(self._path)
        except FileNotFoundError:
            outcomes = []
        except OSError as exc:
            logger.warning(
                "Tracker log unreadable; summarizing from memory",
                extra={"tracker": str(self._path), "error": str(exc)},
            )
            outcomes = []

        if self._write_failures or not outcomes:
            in_memory = self.outcomes
            if len(in_memory) > len(outcomes):
                outcomes = in_memory

        return SummaryRecord(started_at=started_at, finished_at=finished_at, outcomes=tuple(outcomes))


def summarize_tracker(path: Path, started_at: datetime, finished_at: datetime) -> SummaryRecord:
    """Summarize a tracker file left behind by an earlier run."""

    return ExecutionTracker(path).summarize(started_at, finished_at)


def render_summary(summary: SummaryRecord) -> str:
    """Human-readable status table."""

    if summary.is_empty:
        return "No results: no build task recorded an outcome."

    lines = []
    for outcome in summary.outcomes:
        label = "[DONE]" if outcome.ok else "[FAIL]"
        lines.append(f"{label} {outcome.repository_id} - see log: {outcome.log_path}")
    counts = summary.counts
    lines.append(
        f"{summary.total} task(s): {counts[TaskStatus.SUCCESS]} SUCCESS, {counts[TaskStatus.FAIL]} FAIL"
    )
    return "\n".join(lines)


def write_summary(summary: SummaryRecord, path: Path) -> None:
    """Write the summary CSV: run timestamps, a separator, then one row per outcome."""

    lines = [
        f"Script Start Time,{summary.started_at.strftime(TIMESTAMP_FORMAT)}",
        f"Script End Time,{summary.finished_at.strftime(TIMESTAMP_FORMAT)}",
        "---",
        SUMMARY_COLUMNS,
    ]
    lines.extend(
        f"{outcome.status.value},{outcome.repository_id},{outcome.log_path}"
        for outcome in summary.outcomes
    )
    Path(path).write_text("\n".join(lines) + "\n", encoding="utf-8")


__all__ = [
    "ExecutionTracker",
    "SUMMARY_COLUMNS",
    "TIMESTAMP_FORMAT",
    "format_outcome",
    "parse_outcome",
    "read_tracker",
    "render_summary",
    "summarize_tracker",
    "write_summary",
]
