"""Persistent run state: saved choices and the tracker log."""

from .config_store import ConfigurationStore, ConfigurationStoreError
from .models import ConfigurationRecord, SummaryRecord, TaskOutcome, TaskStatus
from .tracker import ExecutionTracker, read_tracker, render_summary, summarize_tracker, write_summary

__all__ = [
    "ConfigurationRecord",
    "ConfigurationStore",
    "ConfigurationStoreError",
    "ExecutionTracker",
    "SummaryRecord",
    "TaskOutcome",
    "TaskStatus",
    "read_tracker",
    "render_summary",
    "summarize_tracker",
    "write_summary",
]
