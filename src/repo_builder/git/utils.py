"""Utility helpers for git and build subprocesses."""

from __future__ import annotations

import os

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
    "GIT_DIR",
    "GIT_WORK_TREE",
    "GIT_INDEX_FILE",
}

_NON_INTERACTIVE = {
    "GIT_TERMINAL_PROMPT": "0",
}


def sanitize_environment() -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution.

    Git variables that would redirect commands away from the working copy are
    removed and credential prompts are disabled.
    """

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    env.update(_NON_INTERACTIVE)
    return env
