"""Configuration management for repo-builder."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BuilderSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    config_file: Path = Field(
        default=Path("~/.repo_builder_config"), validation_alias="REPO_BUILDER_CONFIG_FILE"
    )
    catalog_path: Path = Field(
        default=Path("repositories.yaml"), validation_alias="REPO_BUILDER_CATALOG"
    )
    default_base_directory: str = Field(
        default="automation_workspace", validation_alias="REPO_BUILDER_DEFAULT_BASE"
    )
    log_level: str = Field(default="INFO", validation_alias="REPO_BUILDER_LOG_LEVEL")
    load_ceiling: float = Field(default=100.0, validation_alias="REPO_BUILDER_LOAD_CEILING")
    max_jobs: int | None = Field(default=None, validation_alias="REPO_BUILDER_MAX_JOBS")
    load_poll_seconds: float = Field(
        default=1.0, validation_alias="REPO_BUILDER_LOAD_POLL_SECONDS"
    )
    setup_script: Path | None = Field(default=None, validation_alias="REPO_BUILDER_SETUP_SCRIPT")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "REPO_BUILDER_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("load_ceiling")
    @classmethod
    def _validate_load_ceiling(cls, value: float) -> float:
        if not 0 < value <= 100:
            raise ValueError("REPO_BUILDER_LOAD_CEILING must be in (0, 100]")
        return value

    @field_validator("max_jobs")
    @classmethod
    def _validate_max_jobs(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("REPO_BUILDER_MAX_JOBS must be >= 1")
        return value

    @field_validator("load_poll_seconds")
    @classmethod
    def _validate_poll(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("REPO_BUILDER_LOAD_POLL_SECONDS must be > 0")
        return value

    @field_validator("setup_script", mode="before")
    @classmethod
    def _empty_setup_script(cls, value):
        if value is None or value == "":
            return None
        return value


@lru_cache(maxsize=1)
def get_settings() -> BuilderSettings:
    """Return cached settings instance."""

    settings = BuilderSettings()
    settings.config_file = settings.config_file.expanduser()
    settings.catalog_path = settings.catalog_path.expanduser().resolve()
    if settings.setup_script is not None:
        settings.setup_script = settings.setup_script.expanduser().resolve()
    return settings


__all__ = ["BuilderSettings", "get_settings"]
