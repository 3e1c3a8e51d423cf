"""Git working-copy preparation utilities."""

from .preparer import (
    GitCommandResult,
    GitNotFoundError,
    GitRunner,
    PreparationResult,
    PrepareFailure,
    RepoPrepareError,
    RepositoryPreparer,
)

__all__ = [
    "GitCommandResult",
    "GitNotFoundError",
    "GitRunner",
    "PreparationResult",
    "PrepareFailure",
    "RepoPrepareError",
    "RepositoryPreparer",
]
