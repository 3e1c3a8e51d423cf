from __future__ import annotations

import threading
import time
from datetime import datetime
from pathlib import Path

import pytest

from repo_builder.scheduler import BuildTask, TaskResult, TaskScheduler, run_command
from repo_builder.storage import ExecutionTracker, TaskStatus, read_tracker

FIXED = datetime(2025, 3, 1, 12, 0, 0)


class SimulatedBuilds:
    """Command runner that sleeps briefly and exits with a preset code."""

    def __init__(self, exit_codes: dict[str, int], delay: float = 0.05) -> None:
        self._exit_codes = exit_codes
        self._delay = delay
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def __call__(self, argv, cwd=None) -> TaskResult:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self._delay)
            return TaskResult(exit_status=self._exit_codes[argv[0]], captured_output=f"building {argv[0]}\n")
        finally:
            with self._lock:
                self.active -= 1


def make_tasks(tmp_path: Path, names: list[str]) -> list[BuildTask]:
    return [BuildTask(repository_id=name, argv=(name,), log_path=tmp_path / f"{name}.log") for name in names]


def write_script(path: Path, body: str) -> Path:
    path.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
    path.chmod(0o755)
    return path


def test_every_task_gets_one_outcome_under_concurrency_limit(tmp_path: Path) -> None:
    exit_codes = {f"repo-{index}": index % 3 for index in range(7)}
    runner = SimulatedBuilds(exit_codes)
    tracker = ExecutionTracker(tmp_path / "tracker.csv")
    scheduler = TaskScheduler(tracker, command_runner=runner)

    outcomes = scheduler.run(make_tasks(tmp_path, list(exit_codes)), max_concurrency=2)

    assert len(outcomes) == 7
    assert sorted(item.repository_id for item in outcomes) == sorted(exit_codes)
    for item in outcomes:
        expected = TaskStatus.SUCCESS if exit_codes[item.repository_id] == 0 else TaskStatus.FAIL
        assert item.status is expected
    assert runner.max_active <= 2
    assert scheduler.peak_running <= 2
    assert len(read_tracker(tracker.path)) == 7


def test_empty_batch_returns_no_outcomes(tmp_path: Path) -> None:
    scheduler = TaskScheduler(ExecutionTracker(tmp_path / "tracker.csv"))

    assert scheduler.run([], max_concurrency=2) == []
    assert not (tmp_path / "tracker.csv").exists()


def test_invalid_concurrency_rejected(tmp_path: Path) -> None:
    scheduler = TaskScheduler(ExecutionTracker(tmp_path / "tracker.csv"))

    with pytest.raises(ValueError):
        scheduler.run(make_tasks(tmp_path, ["a"]), max_concurrency=0)


def test_log_has_markers_and_timestamped_output(tmp_path: Path) -> None:
    script = write_script(tmp_path / "build.sh", 'echo "branch=$1"\necho "oops" >&2\nexit 3')
    task = BuildTask(repository_id="a", argv=(str(script), "main"), log_path=tmp_path / "a.log")
    scheduler = TaskScheduler(ExecutionTracker(tmp_path / "tracker.csv"), clock=lambda: FIXED)

    [result] = scheduler.run([task], max_concurrency=1)

    assert result.status is TaskStatus.FAIL
    lines = (tmp_path / "a.log").read_text(encoding="utf-8").splitlines()
    assert lines[0] == "2025-03-01 12:00:00 --- Build started for a ---"
    assert "2025-03-01 12:00:00 branch=main" in lines
    assert "2025-03-01 12:00:00 oops" in lines
    assert lines[-1] == "2025-03-01 12:00:00 --- Build finished for a with status: FAIL ---"


def test_output_does_not_affect_status(tmp_path: Path) -> None:
    script = write_script(tmp_path / "build.sh", 'echo "ERROR: looks bad" >&2\nexit 0')
    task = BuildTask(repository_id="a", argv=(str(script),), log_path=tmp_path / "a.log")

    [result] = TaskScheduler(ExecutionTracker(tmp_path / "tracker.csv")).run([task], max_concurrency=1)

    assert result.status is TaskStatus.SUCCESS


def test_missing_executable_is_a_failed_outcome(tmp_path: Path) -> None:
    ok_script = write_script(tmp_path / "ok.sh", "exit 0")
    tasks = [
        BuildTask(repository_id="broken", argv=(str(tmp_path / "nope.sh"),), log_path=tmp_path / "broken.log"),
        BuildTask(repository_id="fine", argv=(str(ok_script),), log_path=tmp_path / "fine.log"),
    ]

    outcomes = TaskScheduler(ExecutionTracker(tmp_path / "tracker.csv")).run(tasks, max_concurrency=2)

    statuses = {item.repository_id: item.status for item in outcomes}
    assert statuses == {"broken": TaskStatus.FAIL, "fine": TaskStatus.SUCCESS}
    assert "Failed to start build command" in (tmp_path / "broken.log").read_text(encoding="utf-8")


def test_run_command_reports_launch_error(tmp_path: Path) -> None:
    result = run_command([str(tmp_path / "missing")])

    assert not result.ok
    assert result.launch_error


def test_runner_exception_becomes_failure(tmp_path: Path) -> None:
    def exploding(argv, cwd=None):
        raise RuntimeError("boom")

    scheduler = TaskScheduler(ExecutionTracker(tmp_path / "tracker.csv"), command_runner=exploding)

    [result] = scheduler.run(make_tasks(tmp_path, ["a"]), max_concurrency=1)

    assert result.status is TaskStatus.FAIL


class RecordingBuilds(SimulatedBuilds):
    """Simulated builds that log their start and end into a shared event list."""

    def __init__(self, exit_codes: dict[str, int], events: list[tuple], lock: threading.Lock, delay: float) -> None:
        super().__init__(exit_codes, delay=delay)
        self._events = events
        self._events_lock = lock

    def __call__(self, argv, cwd=None) -> TaskResult:
        with self._events_lock:
            self._events.append(("start", argv[0]))
        try:
            return super().__call__(argv, cwd)
        finally:
            with self._events_lock:
                self._events.append(("end", argv[0]))


def test_high_load_delays_admission_but_not_running_tasks(tmp_path: Path) -> None:
    samples = iter([95.0, 95.0, 40.0] + [10.0] * 20)
    events: list[tuple] = []
    events_lock = threading.Lock()
    holder: dict[str, TaskScheduler] = {}

    def sampler() -> float:
        value = next(samples)
        with events_lock:
            events.append(("sample", value, holder["scheduler"].running))
        return value

    runner = RecordingBuilds({"a": 0, "b": 0, "c": 0}, events, events_lock, delay=0.2)
    scheduler = TaskScheduler(
        ExecutionTracker(tmp_path / "tracker.csv"),
        command_runner=runner,
        load_sampler=sampler,
        poll_interval=0.01,
    )
    holder["scheduler"] = scheduler

    outcomes = scheduler.run(make_tasks(tmp_path, ["a", "b", "c"]), max_concurrency=3, load_ceiling=50.0)

    samples_taken = [event for event in events if event[0] == "sample"]
    assert [event[1] for event in samples_taken[:3]] == [95.0, 95.0, 40.0]
    # Only the first build was admitted while the host was over the ceiling.
    assert all(event[2] == 1 for event in samples_taken[:2])

    released = events.index(samples_taken[2])
    before_release = events[:released]
    assert ("start", "b") not in before_release
    assert ("start", "c") not in before_release
    assert ("end", "a") not in before_release
    assert events.index(("start", "b")) > released
    assert events.index(("end", "a")) > events.index(("start", "b"))

    statuses = {item.repository_id: item.status for item in outcomes}
    assert statuses == {"a": TaskStatus.SUCCESS, "b": TaskStatus.SUCCESS, "c": TaskStatus.SUCCESS}
    assert scheduler.peak_running >= 2


def test_full_ceiling_never_samples_load(tmp_path: Path) -> None:
    def sampler() -> float:
        raise AssertionError("load should not be sampled")

    scheduler = TaskScheduler(
        ExecutionTracker(tmp_path / "tracker.csv"),
        command_runner=SimulatedBuilds({"a": 0, "b": 0}),
        load_sampler=sampler,
    )

    outcomes = scheduler.run(make_tasks(tmp_path, ["a", "b"]), max_concurrency=2, load_ceiling=100.0)

    assert len(outcomes) == 2
