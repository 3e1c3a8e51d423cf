from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from repo_builder.catalog import RepositorySpec
from repo_builder.git import GitNotFoundError, GitRunner, PrepareFailure, RepositoryPreparer

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


@pytest.fixture(autouse=True)
def git_identity(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("GIT_AUTHOR_NAME", "GIT_COMMITTER_NAME"):
        monkeypatch.setenv(key, "Builder Test")
    for key in ("GIT_AUTHOR_EMAIL", "GIT_COMMITTER_EMAIL"):
        monkeypatch.setenv(key, "builder@example.com")


def git(cwd: Path, *args: str) -> str:
    completed = subprocess.run(["git", *args], cwd=str(cwd), capture_output=True, text=True, check=True)
    return completed.stdout.strip()


def commit_file(repo: Path, name: str, content: str, message: str) -> str:
    (repo / name).write_text(content, encoding="utf-8")
    git(repo, "add", name)
    git(repo, "commit", "-q", "-m", message)
    return git(repo, "rev-parse", "HEAD")


@pytest.fixture()
def origin(tmp_path: Path) -> Path:
    repo = tmp_path / "origin"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "checkout", "-q", "-b", "main")
    commit_file(repo, "README.md", "main\n", "initial")
    git(repo, "checkout", "-q", "-b", "feature-x")
    commit_file(repo, "feature.txt", "feature\n", "feature work")
    git(repo, "checkout", "-q", "main")
    return repo


@pytest.fixture()
def spec(origin: Path, tmp_path: Path) -> RepositorySpec:
    return RepositorySpec(id="sample", remote_url=str(origin), build_command=tmp_path / "build.sh")


def test_fresh_clone_checks_out_remote_branch(origin: Path, spec: RepositorySpec, tmp_path: Path) -> None:
    working_dir = tmp_path / "ws" / "repos" / "sample"

    result = RepositoryPreparer().prepare(spec, "feature-x", working_dir)

    assert result.ready, result.message
    assert git(working_dir, "rev-parse", "--abbrev-ref", "HEAD") == "feature-x"
    assert result.commit == git(origin, "rev-parse", "feature-x")


def test_local_modifications_are_discarded_and_prepare_is_idempotent(
    origin: Path, spec: RepositorySpec, tmp_path: Path
) -> None:
    working_dir = tmp_path / "sample"
    preparer = RepositoryPreparer()
    assert preparer.prepare(spec, "main", working_dir).ready

    (working_dir / "README.md").write_text("local edit\n", encoding="utf-8")
    (working_dir / "scratch.txt").write_text("untracked\n", encoding="utf-8")

    first = preparer.prepare(spec, "feature-x", working_dir)
    second = preparer.prepare(spec, "feature-x", working_dir)

    expected = git(origin, "rev-parse", "feature-x")
    assert first.ready and second.ready
    assert first.commit == second.commit == expected
    assert git(working_dir, "status", "--porcelain") == ""
    assert (working_dir / "README.md").read_text(encoding="utf-8") == "main\n"
    assert not (working_dir / "scratch.txt").exists()


def test_local_branch_is_reset_to_new_remote_tip(origin: Path, spec: RepositorySpec, tmp_path: Path) -> None:
    working_dir = tmp_path / "sample"
    preparer = RepositoryPreparer()
    assert preparer.prepare(spec, "feature-x", working_dir).ready
    commit_file(working_dir, "local.txt", "local only\n", "local commit")

    git(origin, "checkout", "-q", "feature-x")
    new_tip = commit_file(origin, "feature.txt", "feature v2\n", "more feature work")
    git(origin, "checkout", "-q", "main")

    result = preparer.prepare(spec, "feature-x", working_dir)

    assert result.ready
    assert result.commit == new_tip
    assert not (working_dir / "local.txt").exists()


def test_unknown_branch_leaves_working_copy_untouched(spec: RepositorySpec, tmp_path: Path) -> None:
    working_dir = tmp_path / "sample"
    preparer = RepositoryPreparer()
    assert preparer.prepare(spec, "main", working_dir).ready
    (working_dir / "README.md").write_text("work in progress\n", encoding="utf-8")
    head_before = git(working_dir, "rev-parse", "HEAD")

    result = preparer.prepare(spec, "does-not-exist", working_dir)

    assert result.failure is PrepareFailure.BRANCH_NOT_FOUND
    assert git(working_dir, "rev-parse", "HEAD") == head_before
    assert git(working_dir, "rev-parse", "--abbrev-ref", "HEAD") == "main"
    assert (working_dir / "README.md").read_text(encoding="utf-8") == "work in progress\n"


def test_directory_without_git_metadata_is_recloned(spec: RepositorySpec, tmp_path: Path) -> None:
    working_dir = tmp_path / "sample"
    working_dir.mkdir()
    (working_dir / "leftover.bin").write_text("junk", encoding="utf-8")

    result = RepositoryPreparer().prepare(spec, "main", working_dir)

    assert result.ready
    assert (working_dir / ".git").is_dir()
    assert not (working_dir / "leftover.bin").exists()


def test_clone_failure_is_not_cloned(tmp_path: Path) -> None:
    spec = RepositorySpec(
        id="ghost", remote_url=str(tmp_path / "no-such-remote"), build_command=tmp_path / "build.sh"
    )

    result = RepositoryPreparer().prepare(spec, "main", tmp_path / "ghost")

    assert result.failure is PrepareFailure.NOT_CLONED
    assert "ghost" in result.message


def test_git_runner_rejects_missing_executable(tmp_path: Path) -> None:
    with pytest.raises(GitNotFoundError):
        GitRunner(tmp_path / "missing-git")


def test_checkout_with_gitdir_file_is_updated_in_place(origin: Path, spec: RepositorySpec, tmp_path: Path) -> None:
    working_dir = tmp_path / "sample"
    git(tmp_path, "clone", "-q", "--separate-git-dir", str(tmp_path / "sample-gitdir"), str(origin), str(working_dir))
    (working_dir / "scratch.txt").write_text("local\n", encoding="utf-8")
    new_tip = commit_file(origin, "CHANGELOG.md", "v2\n", "second release")

    result = RepositoryPreparer().prepare(spec, "main", working_dir)

    assert result.ready
    assert result.commit == new_tip
    assert (working_dir / ".git").is_file()
    assert not (working_dir / "scratch.txt").exists()


def test_subdirectory_of_another_checkout_is_recloned(origin: Path, spec: RepositorySpec, tmp_path: Path) -> None:
    outer = tmp_path / "outer"
    git(tmp_path, "clone", "-q", str(origin), str(outer))
    working_dir = outer / "sample"
    working_dir.mkdir()
    (working_dir / ".git").write_text("gitdir: /nowhere\n", encoding="utf-8")

    result = RepositoryPreparer().prepare(spec, "main", working_dir)

    assert result.ready
    assert (working_dir / ".git").is_dir()
