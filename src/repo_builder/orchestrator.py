"""Compose preparation, scheduling and summary into one build run."""

from __future__ import annotations

import logging
import signal
import subprocess
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, TextIO

from .config import BuilderSettings
from .git import PreparationResult, RepositoryPreparer
from .scheduler import BuildTask, SchedulerFatalError, TaskScheduler
from .selection import RunPlan
from .storage import (
    ConfigurationRecord,
    ConfigurationStore,
    ConfigurationStoreError,
    ExecutionTracker,
    SummaryRecord,
    render_summary,
    write_summary,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_FATAL = 2
EXIT_INTERRUPTED = 130

RUN_TAG_FORMAT = "%Y%m%d_%H%M%S"
MAX_RUN_TAG_ATTEMPTS = 100


class OrchestratorError(RuntimeError):
    """Raised when a run cannot start or its shared machinery fails."""


def configure_logging(level: str) -> None:
    """Configure root logging for repo-builder."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _raise_interrupt(signum, frame):  # pragma: no cover - signal path
    raise KeyboardInterrupt(f"received signal {signum}")


def install_signal_handlers() -> None:
    """Route SIGTERM through the same path as Ctrl-C."""

    signal.signal(signal.SIGTERM, _raise_interrupt)


def run_setup_script(script: Path) -> None:
    """Run the environment setup script with the terminal attached."""

    logger.info("Running setup script %s", script)
    try:
        completed = subprocess.run([str(script)], check=False)
    except OSError as exc:
        raise OrchestratorError(f"Could not run setup script {script}: {exc}") from exc
    if completed.returncode != 0:
        raise OrchestratorError(f"Setup script {script} exited with {completed.returncode}")


@dataclass(frozen=True, slots=True)
class RunPaths:
    base_dir: Path
    repos_dir: Path
    log_dir: Path
    run_tag: str

    @classmethod
    def for_run(cls, base_dir: Path, started_at: datetime, attempt: int = 0) -> "RunPaths":
        run_tag = started_at.strftime(RUN_TAG_FORMAT)
        if attempt:
            run_tag = f"{run_tag}_{attempt}"
        return cls(
            base_dir=base_dir,
            repos_dir=base_dir / "repos",
            log_dir=base_dir / "automationlogs",
            run_tag=run_tag,
        )

    @classmethod
    def claim(cls, base_dir: Path, started_at: datetime) -> "RunPaths":
        """Reserve a run tag by creating its tracker file exclusively.

        Runs started within the same second get numbered tags so they never
        share a tracker, summary or build log.
        """

        for attempt in range(MAX_RUN_TAG_ATTEMPTS):
            paths = cls.for_run(base_dir, started_at, attempt)
            try:
                paths.tracker_path.touch(exist_ok=False)
            except FileExistsError:
                continue
            except OSError as exc:
                raise OrchestratorError(f"Cannot create tracker {paths.tracker_path}: {exc}") from exc
            return paths
        raise OrchestratorError(
            f"No free run tag for {started_at.strftime(RUN_TAG_FORMAT)} after {MAX_RUN_TAG_ATTEMPTS} attempts"
        )

    @property
    def tracker_path(self) -> Path:
        return self.log_dir / f"build-tracker-{self.run_tag}.csv"

    @property
    def summary_path(self) -> Path:
        return self.log_dir / f"build-summary-{self.run_tag}.csv"

    def log_for(self, repository_id: str) -> Path:
        return self.log_dir / f"build-{repository_id}-{self.run_tag}.log"

    def working_copy(self, repository_id: str) -> Path:
        return self.repos_dir / repository_id


@dataclass(slots=True)
class RunReport:
    paths: RunPaths
    summary: SummaryRecord
    preparations: list[PreparationResult] = field(default_factory=list)
    interrupted: bool = False
    tracker_lost: bool = False

    @property
    def prep_failures(self) -> list[PreparationResult]:
        return [result for result in self.preparations if not result.ready]

    @property
    def exit_code(self) -> int:
        if self.interrupted:
            return EXIT_INTERRUPTED
        if self.tracker_lost:
            return EXIT_FATAL
        if self.summary.failed or self.prep_failures:
            return EXIT_FAILURES
        return EXIT_OK


class BuildOrchestrator:
    """Run one build: prepare repositories, build them in parallel, summarize."""

    def __init__(
        self,
        settings: BuilderSettings,
        *,
        config_store: ConfigurationStore | None = None,
        preparer: RepositoryPreparer | None = None,
        scheduler_factory: Callable[[ExecutionTracker], TaskScheduler] | None = None,
        clock: Callable[[], datetime] | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        self._settings = settings
        self._config_store = config_store or ConfigurationStore(settings.config_file)
        self._preparer = preparer or RepositoryPreparer()
        self._scheduler_factory = scheduler_factory or (
            lambda tracker: TaskScheduler(tracker, poll_interval=settings.load_poll_seconds)
        )
        self._clock = clock or datetime.now
        self._stdout = stdout or sys.stdout

    def run(
        self,
        plan: RunPlan,
        record: ConfigurationRecord,
        *,
        max_concurrency: int | None = None,
        load_ceiling: float | None = None,
    ) -> RunReport:
        started_at = self._clock()
        layout = RunPaths.for_run(plan.base_path, started_at)
        try:
            layout.repos_dir.mkdir(parents=True, exist_ok=True)
            layout.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OrchestratorError(f"Cannot create workspace under {layout.base_dir}: {exc}") from exc
        paths = RunPaths.claim(plan.base_path, started_at)

        tracker = ExecutionTracker(paths.tracker_path)
        preparations: list[PreparationResult] = []
        interrupted = False
        try:
            tasks = self._prepare_all(plan, paths, preparations)
            if tasks:
                scheduler = self._scheduler_factory(tracker)
                scheduler.run(tasks, max_concurrency=max_concurrency, load_ceiling=load_ceiling)
            else:
                self._emit("No build tasks to execute.")
        except KeyboardInterrupt:
            interrupted = True
            logger.warning("Run interrupted; summarizing outcomes recorded so far")
        except SchedulerFatalError:
            logger.error("Scheduler failed; tracker left at %s", paths.tracker_path)
            raise
        finally:
            self._save_configuration(record)

        finished_at = self._clock()
        summary = tracker.summarize(started_at, finished_at)
        report = RunReport(
            paths=paths,
            summary=summary,
            preparations=preparations,
            interrupted=interrupted,
            tracker_lost=bool(tracker.outcomes) and tracker.persisted_count == 0,
        )
        self._publish(report)
        return report

    def _prepare_all(
        self, plan: RunPlan, paths: RunPaths, preparations: list[PreparationResult]
    ) -> list[BuildTask]:
        tasks: list[BuildTask] = []
        for spec in plan.repositories:
            branch = plan.branch_for(spec)
            result = self._preparer.prepare(spec, branch, paths.working_copy(spec.id))
            preparations.append(result)
            if not result.ready:
                continue
            argv = spec.build_arguments(branch, paths.base_dir, plan.environment_tag)
            tasks.append(
                BuildTask(
                    repository_id=spec.id,
                    argv=tuple(argv),
                    log_path=paths.log_for(spec.id),
                    cwd=paths.working_copy(spec.id),
                )
            )
        return tasks

    def _save_configuration(self, record: ConfigurationRecord) -> None:
        try:
            self._config_store.save(record)
        except ConfigurationStoreError as exc:
            logger.warning("%s", exc)

    def _publish(self, report: RunReport) -> None:
        try:
            write_summary(report.summary, report.paths.summary_path)
        except OSError as exc:
            logger.warning("Failed to write summary file %s: %s", report.paths.summary_path, exc)

        self._emit("\nBuild Summary:\n")
        self._emit(render_summary(report.summary))
        for result in report.prep_failures:
            self._emit(f"[SKIP] {result.repository_id} - {result.failure.value}: {result.message}")
        if report.tracker_lost:
            self._emit(f"Tracker log could not be written: {report.paths.tracker_path}")
        if report.interrupted:
            self._emit("Run was interrupted; summary covers completed builds only.")
        self._emit(f"Detailed build summary also available at: {report.paths.summary_path}")

    def _emit(self, text: str) -> None:
        print(text, file=self._stdout)


__all__ = [
    "BuildOrchestrator",
    "EXIT_FAILURES",
    "EXIT_FATAL",
    "EXIT_INTERRUPTED",
    "EXIT_OK",
    "OrchestratorError",
    "RunPaths",
    "RunReport",
    "configure_logging",
    "install_signal_handlers",
    "run_setup_script",
]
