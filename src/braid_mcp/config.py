"""Configuration management for Braid MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BraidSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    projects_root: Path = Field(default=Path("~/projects"), validation_alias="BRAID_PROJECTS_ROOT")
    workspaces_root: Path | None = Field(default=None, validation_alias="BRAID_WORKSPACES_ROOT")
    git_path: str | None = Field(default=None, validation_alias="GIT_PATH")
    git_timeout: float = Field(default=120.0, validation_alias="BRAID_GIT_TIMEOUT")
    default_base_branch: str = Field(default="main", validation_alias="BRAID_DEFAULT_BASE_BRANCH")
    queue_history_limit: int = Field(default=200, validation_alias="BRAID_QUEUE_HISTORY_LIMIT")
    integrator_name: str = Field(default="Braid Integrator", validation_alias="BRAID_INTEGRATOR_NAME")
    integrator_email: str = Field(
        default="braid@localhost", validation_alias="BRAID_INTEGRATOR_EMAIL"
    )
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    log_level: str = Field(default="INFO", validation_alias="BRAID_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "BRAID_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("workspaces_root", mode="before")
    @classmethod
    def _empty_workspaces_root(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return value

    @field_validator("default_base_branch")
    @classmethod
    def _validate_base_branch(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("BRAID_DEFAULT_BASE_BRANCH must not be empty")
        return normalized

    @field_validator("git_timeout")
    @classmethod
    def _validate_git_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("BRAID_GIT_TIMEOUT must be > 0")
        return value

    @field_validator("queue_history_limit")
    @classmethod
    def _validate_queue_history_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("BRAID_QUEUE_HISTORY_LIMIT must be >= 1")
        return value

    def resolved_projects_root(self) -> Path:
        return self.projects_root.expanduser().resolve()

    def resolved_workspaces_root(self) -> Path:
        """Directory holding per-project workspaces (space worktrees live here)."""

        if self.workspaces_root is not None:
            return self.workspaces_root.expanduser().resolve()
        return self.resolved_projects_root() / ".workspaces"


@lru_cache(maxsize=1)
def get_settings() -> BraidSettings:
    """Return cached settings instance."""

    settings = BraidSettings()
    settings.projects_root = settings.resolved_projects_root()
    settings.workspaces_root = settings.resolved_workspaces_root()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    return settings


__all__ = ["BraidSettings", "get_settings"]
