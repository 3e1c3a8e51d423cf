"""Parallel build orchestration for multiple git repositories."""

__version__ = "0.1.0"

__all__ = ["__version__"]
