"""Project metadata models."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator


class ProjectMetadata(BaseModel):
    """Front matter of a project README, plus the directory it was read from."""

    id: str = Field(..., description="Unique identifier for the project, e.g. PRO-1.")
    title: str = Field(default="", description="Display title of the project.")
    repo: Path | None = Field(
        default=None,
        description="Backing git repository; absent when the project has none configured.",
    )
    base_branch: str | None = Field(
        default=None,
        description="Branch new project spaces fork from when the caller gives none.",
    )
    path: Path = Field(..., description="Project directory holding README.md and space.json.")
    frontmatter: dict[str, Any] = Field(
        default_factory=dict,
        description="Raw front matter, kept for callers that need extra keys.",
    )

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> str:
        normalized = str(value).strip()
        if not normalized:
            raise ValueError("Project id must not be empty")
        return normalized

    @field_validator("repo", mode="before")
    @classmethod
    def _expand_repo(cls, value: Any):
        if value is None:
            return None
        text = str(value).strip()
        if not text:
            return None
        return Path(text).expanduser()

    @field_validator("base_branch", mode="before")
    @classmethod
    def _blank_base_branch(cls, value: Any):
        if value is None:
            return None
        text = str(value).strip()
        return text or None


__all__ = ["ProjectMetadata"]
