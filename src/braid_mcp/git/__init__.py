"""Git CLI orchestration utilities."""

from .repository import GitRepository
from .runner import (
    FakeGitRunner,
    GitError,
    GitExecutionResult,
    GitFailureError,
    GitNotFoundError,
    GitRunner,
    GitTimeoutError,
    NotAGitRepositoryError,
)

__all__ = [
    "FakeGitRunner",
    "GitError",
    "GitExecutionResult",
    "GitFailureError",
    "GitNotFoundError",
    "GitRepository",
    "GitRunner",
    "GitTimeoutError",
    "NotAGitRepositoryError",
]
