"""Repository catalog loading utilities."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import RepositorySpec


class CatalogLoadError(RuntimeError):
    """Raised when the repository catalog cannot be parsed."""


class CatalogLoader:
    """Loads repository specs from a YAML catalog on disk.

    The catalog is a mapping with a ``repositories`` list; entry order is the
    order repositories are offered and built in.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load_all(self) -> dict[str, RepositorySpec]:
        """Load every repository spec, keyed by id in catalog order."""

        if not self._path.is_file():
            raise CatalogLoadError(f"Repository catalog not found at {self._path}")

        try:
            document = yaml.safe_load(self._path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise CatalogLoadError(f"Failed to parse YAML in {self._path}: {exc}") from exc

        if document is None:
            return {}
        if not isinstance(document, dict) or not isinstance(document.get("repositories"), list):
            raise CatalogLoadError(f"{self._path} must contain a 'repositories' list")

        specs: dict[str, RepositorySpec] = {}
        errors: list[str] = []

        for index, entry in enumerate(document["repositories"]):
            try:
                spec = RepositorySpec.model_validate(entry)
            except ValidationError as exc:
                errors.append(f"Repository #{index + 1} in {self._path}: {exc}")
                continue

            if spec.id in specs:
                errors.append(f"Duplicate repository id '{spec.id}' in {self._path}")
                continue

            if not spec.build_command.is_absolute():
                spec.build_command = (self._path.parent / spec.build_command).resolve()
            specs[spec.id] = spec

        environment_repos = [spec.id for spec in specs.values() if spec.takes_environment]
        if len(environment_repos) > 1:
            errors.append(
                "At most one repository may set takes_environment, found: "
                + ", ".join(environment_repos)
            )

        if errors:
            raise CatalogLoadError("; ".join(errors))

        return specs


__all__ = ["CatalogLoadError", "CatalogLoader", "RepositorySpec"]
