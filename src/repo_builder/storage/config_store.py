"""Persistence of run choices as a flat KEY=VALUE file."""

from __future__ import annotations

import logging
import sys
import tempfile
from pathlib import Path
from typing import Iterable

from .models import ConfigurationRecord

logger = logging.getLogger(__name__)

BASE_DIRECTORY_KEY = "BASE_DIRECTORY"
REPOSITORY_KEY = "REPOSITORY"
ENVIRONMENT_KEY = "ENVIRONMENT"
BRANCH_PREFIX = "BRANCH:"


class ConfigurationStoreError(RuntimeError):
    """Raised when the configuration file cannot be written."""


def parse_configuration(text: str, known_ids: Iterable[str] | None = None) -> ConfigurationRecord:
    """Parse configuration text, skipping lines that cannot be understood.

    When ``known_ids`` is given, selections and branches naming other
    repositories are dropped.
    """

    known = set(known_ids) if known_ids is not None else None
    record = ConfigurationRecord()

    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        if not raw_line.strip():
            continue
        key, sep, value = raw_line.partition("=")
        if not sep or not key:
            logger.warning("Skipping malformed configuration line %d", lineno)
            continue

        if key == BASE_DIRECTORY_KEY:
            record.base_directory = value
        elif key == REPOSITORY_KEY:
            if value and (known is None or value in known):
                record.selected_repositories.append(value)
        elif key == ENVIRONMENT_KEY:
            record.environment_tag = value
        elif key.startswith(BRANCH_PREFIX):
            repository_id = key[len(BRANCH_PREFIX):]
            if repository_id and (known is None or repository_id in known):
                record.branches[repository_id] = value
        else:
            logger.debug("Ignoring unknown configuration key %s", key)

    return record


def format_configuration(record: ConfigurationRecord) -> str:
    """Render a record in the on-disk KEY=VALUE format."""

    lines = [f"{BASE_DIRECTORY_KEY}={record.base_directory}"]
    lines.extend(f"{REPOSITORY_KEY}={repository_id}" for repository_id in record.selected_repositories)
    if record.environment_tag is not None:
        lines.append(f"{ENVIRONMENT_KEY}={record.environment_tag}")
    lines.extend(
        f"{BRANCH_PREFIX}{repository_id}={branch}" for repository_id, branch in record.branches.items()
    )
    return "\n".join(lines) + "\n"


class ConfigurationStore:
    """Loads and saves the configuration record at a fixed path."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self, known_ids: Iterable[str] | None = None) -> ConfigurationRecord:
        """Return the saved record, or an empty one if none can be read."""

        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ConfigurationRecord()
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning(
                "Configuration file unreadable; continuing without prior choices",
                extra={"path": str(self._path), "error": str(exc)},
            )
            return ConfigurationRecord()

        logger.info("Loading previous inputs from %s", self._path)
        return parse_configuration(text, known_ids)

    def save(self, record: ConfigurationRecord) -> None:
        """Replace the configuration file with ``record`` in one rename."""

        payload = format_configuration(record)
        tmp_path: Path | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                dir=str(self._path.parent),
                prefix=f".{self._path.name}.",
                delete=False,
                encoding="utf-8",
            ) as temp_file:
                tmp_path = Path(temp_file.name)
                temp_file.write(payload)
                temp_file.flush()
            tmp_path.replace(self._path)
        except OSError as exc:
            raise ConfigurationStoreError(f"Failed to save configuration to {self._path}: {exc}") from exc
        finally:
            if tmp_path is not None and sys.exc_info()[0] is not None:
                tmp_path.unlink(missing_ok=True)
        logger.info("Configuration saved to %s", self._path)


__all__ = [
    "ConfigurationStore",
    "ConfigurationStoreError",
    "format_configuration",
    "parse_configuration",
]
