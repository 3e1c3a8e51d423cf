"""Repository catalog models and loader exports."""

from .loader import CatalogLoadError, CatalogLoader
from .models import RepositorySpec, validate_repository_id

__all__ = [
    "CatalogLoadError",
    "CatalogLoader",
    "RepositorySpec",
    "validate_repository_id",
]
