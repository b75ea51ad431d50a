"""Pending-change inspection and commits against a project's authoritative working tree."""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Literal
from urllib.parse import quote

from ..git import GitRepository, NotAGitRepositoryError
from .locks import ProjectLocks
from .manager import SpaceManager

logger = logging.getLogger(__name__)

FileStatus = Literal["modified", "added", "deleted", "renamed"]

NOTHING_TO_COMMIT = "Nothing to commit"

_STATUS_CODES: dict[str, FileStatus] = {"A": "added", "D": "deleted", "R": "renamed", "?": "added"}
_GITHUB_SSH = re.compile(r"^git@github\.com:(.+/.+)$", re.IGNORECASE)
_GITHUB_HTTPS = re.compile(r"^https?://github\.com/(.+/.+)$", re.IGNORECASE)


class NothingToCommitError(RuntimeError):
    """The working tree is clean; reported to callers as a structured failure."""


class CommitFailedError(RuntimeError):
    """git commit exited non-zero for a reason other than a clean tree."""


@dataclass(slots=True)
class FileChange:
    path: str
    status: FileStatus
    staged: bool


@dataclass(slots=True)
class ChangeStats:
    files_changed: int = 0
    insertions: int = 0
    deletions: int = 0


@dataclass(slots=True)
class ChangeSet:
    """Uncommitted edits of the space worktree (or the repository when no space exists)."""

    source_type: Literal["space", "repo"]
    source_path: str
    base_branch: str
    branch: str
    files: list[FileChange] = field(default_factory=list)
    diff: str = ""
    stats: ChangeStats = field(default_factory=ChangeStats)
    ahead_of_base: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": {"type": self.source_type, "path": self.source_path},
            "base_branch": self.base_branch,
            "branch": self.branch,
            "files": [asdict(item) for item in self.files],
            "diff": self.diff,
            "stats": asdict(self.stats),
            "ahead_of_base": self.ahead_of_base,
        }


@dataclass(slots=True)
class PullRequestTarget:
    branch: str
    base_branch: str
    compare_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class _Target:
    repo: GitRepository
    base_branch: str
    source_type: Literal["space", "repo"]


def parse_status_porcelain(text: str) -> list[FileChange]:
    files: list[FileChange] = []
    for raw_line in text.splitlines():
        line = raw_line.rstrip()
        if len(line) < 4:
            continue
        x, y = line[0], line[1]
        path = line[3:].strip()
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        staged = x not in (" ", "?")
        code = x if staged else y
        files.append(FileChange(path=path.strip('"'), status=_STATUS_CODES.get(code, "modified"), staged=staged))
    return files


def parse_numstat(text: str) -> tuple[set[str], int, int]:
    files: set[str] = set()
    insertions = deletions = 0
    for line in text.splitlines():
        parts = line.strip().split("\t")
        if len(parts) < 3:
            continue
        added, removed, path = parts[0], parts[1], "\t".join(parts[2:])
        files.add(path)
        # Binary files report "-" for both counts.
        if added.isdigit():
            insertions += int(added)
        if removed.isdigit():
            deletions += int(removed)
    return files, insertions, deletions


def github_compare_url(remote: str, base_branch: str, branch: str) -> str | None:
    cleaned = re.sub(r"\.git$", "", remote.strip(), flags=re.IGNORECASE)
    match = _GITHUB_SSH.match(cleaned) or _GITHUB_HTTPS.match(cleaned)
    if match is None:
        return None
    return (
        f"https://github.com/{match.group(1)}/compare/"
        f"{quote(base_branch, safe='')}...{quote(branch, safe='')}?expand=1"
    )


class ChangeInspector:
    """Diff, stat and commit pending edits of a project.

    The space worktree is authoritative when the project has one; otherwise the
    configured repository is. Reads take the project lock so they never observe
    a worktree mid-merge.
    """

    def __init__(self, *, manager: SpaceManager, locks: ProjectLocks, default_base_branch: str = "main") -> None:
        self._manager = manager
        self._locks = locks
        self._default_base_branch = default_base_branch

    async def _resolve(self, project_id: str) -> _Target:
        project, repo_path = self._manager.projects.require_repo(project_id)
        space = self._manager.get_project_space(project_id)
        runner = self._manager.runner
        if space is not None and await runner.is_work_tree(space.worktree_path):
            return _Target(GitRepository(runner, space.worktree_path), space.base_branch, "space")

        repo = GitRepository(runner, repo_path)
        if not await repo.is_work_tree():
            raise NotAGitRepositoryError(f"Not a git repository: {repo_path}")
        return _Target(repo, project.base_branch or self._default_base_branch, "repo")

    async def get_project_changes(self, project_id: str) -> ChangeSet:
        async with self._locks.for_project(project_id):
            target = await self._resolve(project_id)
            repo = target.repo

            branch = await repo.current_branch() or "HEAD"
            files = parse_status_porcelain(await repo.status_porcelain())
            unstaged_diff = await repo.diff()
            staged_diff = await repo.diff(cached=True)
            unstaged_files, unstaged_ins, unstaged_del = parse_numstat(await repo.numstat())
            staged_files, staged_ins, staged_del = parse_numstat(await repo.numstat(cached=True))

            ahead: int | None = None
            if await repo.resolve_commit(target.base_branch) is not None:
                ahead = await repo.count_commits(target.base_branch, "HEAD")

            return ChangeSet(
                source_type=target.source_type,
                source_path=str(repo.path),
                base_branch=target.base_branch,
                branch=branch,
                files=files,
                diff="\n".join(part for part in (unstaged_diff, staged_diff) if part).strip(),
                stats=ChangeStats(
                    files_changed=len(unstaged_files | staged_files),
                    insertions=unstaged_ins + staged_ins,
                    deletions=unstaged_del + staged_del,
                ),
                ahead_of_base=ahead,
            )

    async def commit_project_changes(self, project_id: str, message: str) -> dict[str, Any]:
        """Stage and commit everything; failures come back as ``{"ok": False, "error": ...}``."""

        commit_message = message.strip()
        if not commit_message:
            return {"ok": False, "error": "Commit message is required"}

        async with self._locks.for_project(project_id):
            try:
                target = await self._resolve(project_id)
            except NotAGitRepositoryError:
                return {"ok": False, "error": "Not a git repository"}

            try:
                sha = await self._commit(target.repo, commit_message)
            except NothingToCommitError:
                return {"ok": False, "error": NOTHING_TO_COMMIT}
            except CommitFailedError as exc:
                logger.error("Commit failed", extra={"project_id": project_id, "error": str(exc)})
                return {"ok": False, "error": "Commit failed"}

        logger.info(
            "Committed project changes",
            extra={"project_id": project_id, "sha": sha, "source": target.source_type},
        )
        return {"ok": True, "sha": sha, "message": commit_message}

    async def _commit(self, repo: GitRepository, message: str) -> str:
        if not (await repo.status_porcelain()).strip():
            raise NothingToCommitError(NOTHING_TO_COMMIT)
        await repo.add_all()
        result = await repo.commit(message)
        if not result.ok:
            if "nothing to commit" in f"{result.stdout}\n{result.stderr}":
                raise NothingToCommitError(NOTHING_TO_COMMIT)
            raise CommitFailedError(result.describe())
        return await repo.short_head()

    async def get_project_pull_request_target(self, project_id: str) -> PullRequestTarget:
        async with self._locks.for_project(project_id):
            target = await self._resolve(project_id)
            branch = await target.repo.current_branch() or "HEAD"
            remote = await target.repo.remote_url("origin")
        compare_url = github_compare_url(remote, target.base_branch, branch) if remote else None
        return PullRequestTarget(branch=branch, base_branch=target.base_branch, compare_url=compare_url)


__all__ = [
    "ChangeInspector",
    "ChangeSet",
    "ChangeStats",
    "CommitFailedError",
    "FileChange",
    "NOTHING_TO_COMMIT",
    "NothingToCommitError",
    "PullRequestTarget",
    "github_compare_url",
    "parse_numstat",
    "parse_status_porcelain",
]
