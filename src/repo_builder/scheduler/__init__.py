"""Parallel build task scheduling."""

from .runner import (
    BuildTask,
    SchedulerFatalError,
    TaskResult,
    TaskScheduler,
    default_concurrency,
    run_command,
)

__all__ = [
    "BuildTask",
    "SchedulerFatalError",
    "TaskResult",
    "TaskScheduler",
    "default_concurrency",
    "run_command",
]
