"""JSON persistence of project spaces under each project's directory."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from ..projects import ProjectLoader, ProjectNotFoundError
from .models import ProjectSpace, utcnow

SPACE_FILENAME = "space.json"


class SpaceStoreError(RuntimeError):
    """Raised when a persisted space file exists but cannot be read."""


class SpaceNotFoundError(LookupError):
    """Raised when an operation requires a project space that was never created."""


class SpaceStore:
    """Load and save ``space.json`` (descriptor plus integration queue) per project."""

    def __init__(self, projects: ProjectLoader) -> None:
        self._projects = projects

    def space_file(self, project_id: str) -> Path:
        project = self._projects.get(project_id)
        return project.path / SPACE_FILENAME

    def load(self, project_id: str) -> ProjectSpace | None:
        path = self.space_file(project_id)
        if not path.is_file():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            return ProjectSpace.model_validate(payload)
        except (json.JSONDecodeError, ValidationError) as exc:
            raise SpaceStoreError(f"Corrupted space file {path}: {exc}") from exc

    def require(self, project_id: str) -> ProjectSpace:
        space = self.load(project_id)
        if space is None:
            raise SpaceNotFoundError(f"Project space not found for '{project_id}'")
        return space

    def save(self, space: ProjectSpace) -> ProjectSpace:
        """Persist atomically; a crash mid-write leaves the previous file intact."""

        path = self.space_file(space.project_id)
        space.updated_at = utcnow()
        document = space.model_dump_json(indent=2)
        fd, tmp_name = tempfile.mkstemp(prefix=".space-", suffix=".json", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(document)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return space

    def list_spaces(self) -> list[ProjectSpace]:
        spaces: list[ProjectSpace] = []
        for project in self._projects.list_projects():
            try:
                space = self.load(project.id)
            except ProjectNotFoundError:
                continue
            if space is not None:
                spaces.append(space)
        return spaces


__all__ = ["SPACE_FILENAME", "SpaceNotFoundError", "SpaceStore", "SpaceStoreError"]
