"""Bring repository working copies to a clean state at a requested branch."""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..catalog import RepositorySpec
from .utils import sanitize_environment

logger = logging.getLogger(__name__)


class GitNotFoundError(RuntimeError):
    """Raised when the git executable cannot be located."""


class PrepareFailure(str, Enum):
    NOT_CLONED = "NotCloned"
    BRANCH_NOT_FOUND = "BranchNotFound"
    DIRTY_STATE_UNRECOVERABLE = "DirtyStateUnrecoverable"


class RepoPrepareError(RuntimeError):
    """Raised inside the preparer when one step fails."""

    def __init__(self, failure: PrepareFailure, message: str) -> None:
        super().__init__(message)
        self.failure = failure


@dataclass(slots=True)
class GitCommandResult:
    """Holds the outcome of one git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return (self.stdout + "\n" + self.stderr).strip()


@dataclass(slots=True)
class PreparationResult:
    repository_id: str
    branch: str
    working_dir: Path
    failure: PrepareFailure | None = None
    message: str = ""
    commit: str | None = None

    @property
    def ready(self) -> bool:
        return self.failure is None


class GitRunner:
    """Execute git commands synchronously."""

    def __init__(self, executable: Path | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise GitNotFoundError(f"git executable not found at {candidate}")

        binary = shutil.which("git")
        if binary is None:
            raise GitNotFoundError("git executable not found on PATH")
        return Path(binary)

    def run(self, *args: str, cwd: Path | None = None) -> GitCommandResult:
        cmd = [str(self._executable_path), *args]
        process = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd is not None else None,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            env=sanitize_environment(),
        )
        return GitCommandResult(
            args=tuple(cmd),
            returncode=process.returncode,
            stdout=process.stdout.decode("utf-8", errors="replace"),
            stderr=process.stderr.decode("utf-8", errors="replace"),
        )


class RepositoryPreparer:
    """Clone-or-update a working copy and force it onto ``origin/<branch>``.

    Local modifications and untracked files in an existing working copy are
    discarded every time a repository is prepared.
    """

    def __init__(self, git: GitRunner | None = None) -> None:
        self._git = git or GitRunner()

    def prepare(self, spec: RepositorySpec, branch: str, working_dir: Path) -> PreparationResult:
        working_dir = Path(working_dir)
        result = PreparationResult(repository_id=spec.id, branch=branch, working_dir=working_dir)
        logger.info("Preparing repository %s on branch %s", spec.id, branch)
        try:
            if self._is_checkout(working_dir):
                self._update(spec, branch, working_dir)
            else:
                self._clone(spec, branch, working_dir)
            self._checkout(branch, working_dir)
        except RepoPrepareError as exc:
            result.failure = exc.failure
            result.message = str(exc)
            logger.error(
                "Failed to prepare %s: %s",
                spec.id,
                exc,
                extra={"repository_id": spec.id, "branch": branch, "failure": exc.failure.value},
            )
            return result

        result.commit = self.current_commit(working_dir)
        result.message = f"Repository '{spec.id}' prepared on branch '{branch}'"
        logger.info("%s at %s", result.message, result.commit)
        return result

    def _is_checkout(self, working_dir: Path) -> bool:
        """True when ``working_dir`` is the top level of a git working tree.

        ``.git`` may be a directory or a gitdir file (worktrees, separate git dirs).
        """

        if not (working_dir / ".git").exists():
            return False
        toplevel = self._git.run("rev-parse", "--show-toplevel", cwd=working_dir)
        if not toplevel.ok or not toplevel.stdout.strip():
            return False
        return Path(toplevel.stdout.strip()).resolve() == working_dir.resolve()

    def _update(self, spec: RepositorySpec, branch: str, working_dir: Path) -> None:
        logger.info("Updating existing repository at %s", working_dir)
        self._require(
            self._git.run("fetch", "origin", "--prune", cwd=working_dir),
            PrepareFailure.DIRTY_STATE_UNRECOVERABLE,
            f"Failed to fetch {spec.id}",
        )
        self._require_remote_branch(branch, working_dir)

        status = self._git.run("status", "--porcelain", cwd=working_dir)
        if status.ok and status.stdout.strip():
            logger.warning(
                "Discarding local modifications and untracked files in %s",
                working_dir,
                extra={"repository_id": spec.id, "changes": status.stdout.count("\n")},
            )
        for args in (("reset", "--hard", "HEAD"), ("clean", "-fd")):
            self._require(
                self._git.run(*args, cwd=working_dir),
                PrepareFailure.DIRTY_STATE_UNRECOVERABLE,
                f"Failed to reset {spec.id} to a clean state",
            )

    def _clone(self, spec: RepositorySpec, branch: str, working_dir: Path) -> None:
        if working_dir.exists():
            logger.warning("Removing %s: directory exists but is not a git checkout", working_dir)
            try:
                if working_dir.is_dir():
                    shutil.rmtree(working_dir)
                else:
                    working_dir.unlink()
            except OSError as exc:
                raise RepoPrepareError(
                    PrepareFailure.NOT_CLONED, f"Cannot remove corrupt checkout {working_dir}: {exc}"
                ) from exc

        working_dir.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Cloning %s into %s", spec.remote_url, working_dir)
        self._require(
            self._git.run("clone", spec.remote_url, str(working_dir)),
            PrepareFailure.NOT_CLONED,
            f"Failed to clone {spec.id} from {spec.remote_url}",
        )
        self._require_remote_branch(branch, working_dir)

    def _checkout(self, branch: str, working_dir: Path) -> None:
        remote_ref = f"origin/{branch}"
        for args in (
            ("checkout", "-B", branch, remote_ref),
            ("reset", "--hard", remote_ref),
            ("clean", "-fd"),
        ):
            self._require(
                self._git.run(*args, cwd=working_dir),
                PrepareFailure.DIRTY_STATE_UNRECOVERABLE,
                f"Failed to switch to branch '{branch}'",
            )

    def _require_remote_branch(self, branch: str, working_dir: Path) -> None:
        lookup = self._git.run(
            "rev-parse", "--verify", "--quiet", f"refs/remotes/origin/{branch}", cwd=working_dir
        )
        if not lookup.ok:
            raise RepoPrepareError(
                PrepareFailure.BRANCH_NOT_FOUND, f"Remote branch 'origin/{branch}' not found"
            )

    @staticmethod
    def _require(result: GitCommandResult, failure: PrepareFailure, message: str) -> None:
        if not result.ok:
            detail = result.output
            raise RepoPrepareError(failure, f"{message}: {detail}" if detail else message)

    def current_commit(self, working_dir: Path) -> str | None:
        """Return the commit checked out in ``working_dir``."""

        result = self._git.run("rev-parse", "HEAD", cwd=working_dir)
        return result.stdout.strip() if result.ok else None


__all__ = [
    "GitCommandResult",
    "GitNotFoundError",
    "GitRunner",
    "PrepareFailure",
    "PreparationResult",
    "RepoPrepareError",
    "RepositoryPreparer",
]
