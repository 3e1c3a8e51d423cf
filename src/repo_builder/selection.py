"""Resolve which repositories, branches and environment a run uses."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Sequence, TextIO

from .catalog import RepositorySpec
from .storage import ConfigurationRecord

logger = logging.getLogger(__name__)

Prompt = Callable[[str], str]

_ALL_TOKENS = {"0", "all"}


@dataclass(slots=True)
class RunPlan:
    base_directory: str
    repositories: list[RepositorySpec] = field(default_factory=list)
    branches: dict[str, str] = field(default_factory=dict)
    environment_tag: str | None = None

    @property
    def base_path(self) -> Path:
        return resolve_base_path(self.base_directory)

    def branch_for(self, spec: RepositorySpec) -> str:
        return self.branches.get(spec.id, spec.default_branch)


def resolve_base_path(base_directory: str) -> Path:
    """Relative base directories are taken relative to the user's home."""

    path = Path(base_directory).expanduser()
    return path if path.is_absolute() else Path.home() / path


def _ask(prompt: Prompt, message: str, default: str) -> str:
    answer = prompt(f"{message} [default: {default}]: ").strip()
    return answer or default


def _select_ids(
    tokens: Sequence[str],
    catalog: Mapping[str, RepositorySpec],
) -> list[str]:
    """Map numbers (1-based catalog positions) or ids to repository ids."""

    ordered = list(catalog)
    if any(token.lower() in _ALL_TOKENS for token in tokens):
        return ordered

    selected: list[str] = []
    for token in tokens:
        if token.isdigit() and 1 <= int(token) <= len(ordered):
            repository_id = ordered[int(token) - 1]
        elif token in catalog:
            repository_id = token
        else:
            logger.warning("Invalid selection: %s. Skipping...", token)
            continue
        if repository_id not in selected:
            selected.append(repository_id)
    return selected


def _choose_environment(
    prompt: Prompt, spec: RepositorySpec, default: str | None, output: TextIO
) -> str:
    options = list(spec.environments)
    print(f"\nChoose environment for {spec.id}:", file=output)
    for index, name in enumerate(options, start=1):
        print(f"  {index}) {name}", file=output)

    default_choice = default or (options[0] if options else "")
    while True:
        answer = _ask(prompt, "Enter environment number or name", default_choice)
        if answer.isdigit() and 1 <= int(answer) <= len(options):
            return options[int(answer) - 1]
        if answer and not answer.isdigit():
            return answer
        print("Invalid input. Please enter a valid number or environment name.", file=output)


def resolve_plan(
    catalog: Mapping[str, RepositorySpec],
    record: ConfigurationRecord,
    *,
    default_base: str,
    base_directory: str | None = None,
    repositories: Sequence[str] | None = None,
    branches: Mapping[str, str] | None = None,
    environment_tag: str | None = None,
    prompt: Prompt | None = None,
    output: TextIO | None = None,
) -> tuple[RunPlan, ConfigurationRecord]:
    """Combine explicit choices, saved choices and catalog defaults.

    Explicit arguments win over the saved record, which wins over catalog
    defaults. With a ``prompt`` every choice is confirmed interactively, using
    the resolved value as the default answer. Menus go to ``output``
    (standard output when unset).
    """

    output = output or sys.stdout
    branches = dict(branches or {})
    base = base_directory or record.base_directory or default_base
    if prompt is not None:
        base = _ask(prompt, "Enter base directory for cloning/building/logs (relative to ~)", base)

    if repositories:
        selected = _select_ids(repositories, catalog)
    elif record.selected_repositories:
        selected = [repo_id for repo_id in record.selected_repositories if repo_id in catalog]
    else:
        selected = list(catalog)

    if prompt is not None:
        print("\nAvailable repositories:", file=output)
        for index, repository_id in enumerate(catalog, start=1):
            print(f"  {index}) {repository_id}", file=output)
        print("  0) ALL", file=output)
        default_tokens = " ".join(str(list(catalog).index(repo_id) + 1) for repo_id in selected) or "0"
        answer = prompt(
            f"Enter repo numbers to build (space-separated or 0 for all) [default: {default_tokens}]: "
        ).split()
        if answer:
            selected = _select_ids(answer, catalog)

    environment = environment_tag if environment_tag is not None else record.environment_tag
    plan = RunPlan(base_directory=base)
    updated = ConfigurationRecord(
        base_directory=base,
        selected_repositories=list(selected),
        branches=dict(record.branches),
        environment_tag=record.environment_tag,
    )

    for repository_id in selected:
        spec = catalog[repository_id]
        if spec.takes_environment:
            if prompt is not None:
                environment = _choose_environment(prompt, spec, environment, output)
            elif not environment and spec.environments:
                environment = spec.environments[0]
            if not environment:
                logger.warning("No environment chosen for %s; skipping it", spec.id)
                continue
            plan.environment_tag = environment
            updated.environment_tag = environment

        branch = branches.get(spec.id) or record.branches.get(spec.id) or spec.default_branch
        if prompt is not None:
            branch = _ask(prompt, f"Enter branch name for {spec.id}", branch)
        plan.repositories.append(spec)
        plan.branches[spec.id] = branch
        updated.branches[spec.id] = branch

    return plan, updated


__all__ = ["Prompt", "RunPlan", "resolve_base_path", "resolve_plan"]
