"""Project metadata loading from README front matter."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .models import ProjectMetadata

logger = logging.getLogger(__name__)

_FRONTMATTER_FENCE = "---"


class ProjectLoadError(RuntimeError):
    """Raised when a project README cannot be parsed."""


class ProjectNotFoundError(ProjectLoadError):
    """Raised when no directory under the projects root matches the project id."""


class RepoNotConfiguredError(RuntimeError):
    """Raised when a project has no backing repository configured."""


def parse_frontmatter(text: str) -> dict[str, Any]:
    """Return the YAML front matter block of a markdown document (empty if absent)."""

    lines = text.splitlines()
    if not lines or lines[0].strip() != _FRONTMATTER_FENCE:
        return {}
    for index, line in enumerate(lines[1:], start=1):
        if line.strip() == _FRONTMATTER_FENCE:
            document = yaml.safe_load("\n".join(lines[1:index]))
            if document is None:
                return {}
            if not isinstance(document, dict):
                raise ProjectLoadError("Front matter must be a mapping")
            return document
    raise ProjectLoadError("Unterminated front matter block")


class ProjectLoader:
    """Resolves project ids to metadata stored under a projects root.

    A project lives in ``<root>/<id>`` or ``<root>/<id>_<slug>`` and describes
    itself in the front matter of its ``README.md``.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def find_project_dir(self, project_id: str) -> Path | None:
        if not self._root.is_dir():
            return None
        for entry in sorted(self._root.iterdir()):
            if not entry.is_dir():
                continue
            if entry.name == project_id or entry.name.startswith(f"{project_id}_"):
                return entry
        return None

    def _load_dir(self, directory: Path, fallback_id: str) -> ProjectMetadata:
        readme = directory / "README.md"
        frontmatter: dict[str, Any] = {}
        if readme.is_file():
            try:
                frontmatter = parse_frontmatter(readme.read_text(encoding="utf-8"))
            except yaml.YAMLError as exc:
                raise ProjectLoadError(f"Failed to parse front matter in {readme}: {exc}") from exc

        try:
            return ProjectMetadata.model_validate(
                {
                    "id": frontmatter.get("id") or fallback_id,
                    "title": frontmatter.get("title") or "",
                    "repo": frontmatter.get("repo"),
                    "base_branch": frontmatter.get("base_branch") or frontmatter.get("baseBranch"),
                    "path": directory,
                    "frontmatter": frontmatter,
                }
            )
        except ValidationError as exc:
            raise ProjectLoadError(f"Project metadata error in {readme}: {exc}") from exc

    def get(self, project_id: str) -> ProjectMetadata:
        directory = self.find_project_dir(project_id)
        if directory is None:
            raise ProjectNotFoundError(f"Project '{project_id}' not found under {self._root}")
        return self._load_dir(directory, project_id)

    def require_repo(self, project_id: str) -> tuple[ProjectMetadata, Path]:
        """Return the project and its repository path, or raise RepoNotConfiguredError."""

        project = self.get(project_id)
        if project.repo is None:
            raise RepoNotConfiguredError(f"Project '{project_id}' has no repo configured")
        return project, project.repo

    def list_projects(self) -> list[ProjectMetadata]:
        if not self._root.is_dir():
            return []

        projects: list[ProjectMetadata] = []
        for entry in sorted(self._root.iterdir()):
            if not entry.is_dir() or entry.name.startswith("."):
                continue
            fallback_id = entry.name.split("_", 1)[0]
            try:
                projects.append(self._load_dir(entry, fallback_id))
            except ProjectLoadError as exc:
                logger.warning("Skipping unreadable project", extra={"path": str(entry), "error": str(exc)})
                continue
        return projects


__all__ = [
    "ProjectLoadError",
    "ProjectLoader",
    "ProjectNotFoundError",
    "RepoNotConfiguredError",
    "parse_frontmatter",
]
