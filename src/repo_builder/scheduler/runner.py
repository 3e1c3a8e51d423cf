"""Bounded, load-aware parallel execution of build tasks."""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Sequence

import psutil

from ..git.utils import sanitize_environment
from ..storage import ExecutionTracker, TaskOutcome, TaskStatus
from ..storage.tracker import TIMESTAMP_FORMAT

logger = logging.getLogger(__name__)


class SchedulerFatalError(RuntimeError):
    """Raised when the worker pool itself cannot run tasks."""


@dataclass(frozen=True, slots=True)
class BuildTask:
    repository_id: str
    argv: tuple[str, ...]
    log_path: Path
    cwd: Path | None = None


@dataclass(slots=True)
class TaskResult:
    """Exit status and merged stdout/stderr of one build command."""

    exit_status: int
    captured_output: str
    launch_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.launch_error is None and self.exit_status == 0


CommandRunner = Callable[[Sequence[str], Path | None], TaskResult]
LoadSampler = Callable[[], float]


def run_command(argv: Sequence[str], cwd: Path | None = None) -> TaskResult:
    """Run ``argv`` to completion, capturing stdout and stderr together."""

    try:
        process = subprocess.run(
            list(argv),
            cwd=str(cwd) if cwd is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            env=sanitize_environment(),
        )
    except (OSError, subprocess.SubprocessError) as exc:
        return TaskResult(exit_status=-1, captured_output="", launch_error=str(exc))
    return TaskResult(
        exit_status=process.returncode,
        captured_output=process.stdout.decode("utf-8", errors="replace"),
    )


def default_concurrency() -> int:
    """Logical CPU count of the host, at least one."""

    return psutil.cpu_count(logical=True) or 1


def sample_cpu_percent(interval: float = 0.5) -> float:
    return psutil.cpu_percent(interval=interval)


class TaskScheduler:
    """Run build tasks on a bounded thread pool.

    New tasks are admitted only while host CPU utilisation stays under the
    load ceiling; tasks already running are never interrupted. Every task
    produces exactly one outcome, recorded to the tracker by the worker that
    ran it.
    """

    def __init__(
        self,
        tracker: ExecutionTracker,
        *,
        command_runner: CommandRunner | None = None,
        load_sampler: LoadSampler | None = None,
        poll_interval: float = 1.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._tracker = tracker
        self._command_runner = command_runner or run_command
        self._load_sampler = load_sampler or sample_cpu_percent
        self._poll_interval = poll_interval
        self._clock = clock or datetime.now
        self._lock = threading.Lock()
        self._running = 0
        self._peak_running = 0

    @property
    def running(self) -> int:
        with self._lock:
            return self._running

    @property
    def peak_running(self) -> int:
        """Highest number of tasks admitted and not yet finished at one time."""

        with self._lock:
            return self._peak_running

    def run(
        self,
        tasks: Iterable[BuildTask],
        max_concurrency: int | None = None,
        load_ceiling: float | None = None,
    ) -> list[TaskOutcome]:
        """Execute ``tasks`` and return their outcomes in completion order."""

        pending = list(tasks)
        if not pending:
            return []

        workers = max_concurrency if max_concurrency is not None else default_concurrency()
        if workers < 1:
            raise ValueError("max_concurrency must be >= 1")
        if load_ceiling is not None and not 0 < load_ceiling <= 100:
            raise ValueError("load_ceiling must be in (0, 100]")

        logger.info(
            "Running %d build(s) with up to %d in parallel",
            len(pending),
            workers,
            extra={"load_ceiling": load_ceiling},
        )

        slots = threading.BoundedSemaphore(workers)
        futures: list[Future[TaskOutcome]] = []
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="build")
        try:
            for task in pending:
                slots.acquire()
                self._await_admission(load_ceiling)
                with self._lock:
                    self._running += 1
                    self._peak_running = max(self._peak_running, self._running)
                try:
                    future = executor.submit(self._execute, task)
                except RuntimeError as exc:
                    with self._lock:
                        self._running -= 1
                    slots.release()
                    raise SchedulerFatalError(f"Could not start a build worker: {exc}") from exc
                future.add_done_callback(lambda _future: slots.release())
                futures.append(future)

            outcomes = [future.result() for future in as_completed(futures)]
        except BaseException:
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown(wait=True)
        return outcomes

    def _await_admission(self, load_ceiling: float | None) -> None:
        if load_ceiling is None or load_ceiling >= 100:
            return
        while self.running > 0:
            load = self._load_sampler()
            if load <= load_ceiling:
                return
            logger.debug("Host CPU at %.1f%% exceeds %.1f%%; delaying next build", load, load_ceiling)
            time.sleep(self._poll_interval)

    def _execute(self, task: BuildTask) -> TaskOutcome:
        try:
            self._append_log(task, [self._stamp(f"--- Build started for {task.repository_id} ---")])
            try:
                result = self._command_runner(task.argv, task.cwd)
            except Exception as exc:
                logger.exception("Build command for %s raised", task.repository_id)
                result = TaskResult(exit_status=-1, captured_output="", launch_error=str(exc))

            status = TaskStatus.SUCCESS if result.ok else TaskStatus.FAIL
            lines = [self._stamp(line) for line in result.captured_output.splitlines()]
            if result.launch_error is not None:
                lines.append(self._stamp(f"Failed to start build command: {result.launch_error}"))
            lines.append(
                self._stamp(
                    f"--- Build finished for {task.repository_id} with status: {status.value} ---"
                )
            )
            self._append_log(task, lines)

            outcome = TaskOutcome(
                repository_id=task.repository_id, status=status, log_path=str(task.log_path)
            )
            self._tracker.record(outcome)
            logger.info(
                "Build for %s finished: %s",
                task.repository_id,
                status.value,
                extra={"exit_status": result.exit_status, "log_path": str(task.log_path)},
            )
            return outcome
        finally:
            with self._lock:
                self._running -= 1

    def _stamp(self, line: str) -> str:
        return f"{self._clock().strftime(TIMESTAMP_FORMAT)} {line}"

    @staticmethod
    def _append_log(task: BuildTask, lines: list[str]) -> None:
        try:
            with Path(task.log_path).open("a", encoding="utf-8") as handle:
                handle.writelines(line + "\n" for line in lines)
        except OSError as exc:
            logger.warning(
                "Failed to write build log",
                extra={"repository_id": task.repository_id, "log_path": str(task.log_path), "error": str(exc)},
            )


__all__ = [
    "BuildTask",
    "SchedulerFatalError",
    "TaskResult",
    "TaskScheduler",
    "default_concurrency",
    "run_command",
    "sample_cpu_percent",
]
