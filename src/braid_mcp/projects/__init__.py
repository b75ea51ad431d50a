"""Project metadata provider."""

from .loader import (
    ProjectLoadError,
    ProjectLoader,
    ProjectNotFoundError,
    RepoNotConfiguredError,
    parse_frontmatter,
)
from .models import ProjectMetadata

__all__ = [
    "ProjectLoadError",
    "ProjectLoader",
    "ProjectMetadata",
    "ProjectNotFoundError",
    "RepoNotConfiguredError",
    "parse_frontmatter",
]
