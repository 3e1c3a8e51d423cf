"""Repository catalog models."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

_FORBIDDEN_ID_CHARS = {"/", "\\", ",", "="}


def validate_repository_id(value: str) -> str:
    """Normalize a repository id and reject characters it cannot carry.

    Ids double as directory names, configuration keys and tracker CSV fields.
    """

    normalized = value.strip()
    if not normalized:
        raise ValueError("Repository id must not be empty")
    if normalized in {".", ".."}:
        raise ValueError(f"Repository id '{normalized}' is not a valid directory name")
    bad = sorted(
        char for char in set(normalized) if char in _FORBIDDEN_ID_CHARS or char.isspace()
    )
    if bad or any(ord(char) < 32 for char in normalized):
        raise ValueError(f"Repository id '{normalized}' contains forbidden characters {bad}")
    return normalized


class RepositorySpec(BaseModel):
    """Describes one buildable repository."""

    id: str = Field(..., description="Stable repository name, also its directory name.")
    remote_url: str = Field(..., description="Clone URL of the repository.")
    default_branch: str = Field(default="main", description="Branch used when none was chosen.")
    build_command: Path = Field(
        ...,
        description="Executable build recipe invoked with the repository arguments.",
    )
    takes_environment: bool = Field(
        default=False,
        description="Whether the build recipe expects an environment tag before the branch.",
    )
    environments: list[str] = Field(
        default_factory=list,
        description="Known environment tags offered when prompting.",
    )

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        return validate_repository_id(value)

    @field_validator("remote_url", "default_branch")
    @classmethod
    def _require_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("remote_url and default_branch must not be empty")
        return normalized

    @field_validator("environments", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value]
        raise TypeError("environments must be a sequence of strings")

    def build_arguments(self, branch: str, base_directory: Path, environment_tag: str | None) -> list[str]:
        """Return the positional argv for this repository's build recipe."""

        argv = [str(self.build_command)]
        if self.takes_environment:
            argv.append(environment_tag or "")
        argv.append(branch)
        argv.append(str(base_directory))
        return argv


__all__ = ["RepositorySpec", "validate_repository_id"]
