"""Lifecycle of a project's shared integration worktree and branch."""

from __future__ import annotations

import logging
from pathlib import Path

from ..git import GitFailureError, GitRepository, GitRunner, NotAGitRepositoryError
from ..projects import ProjectLoader
from ..storage import ProjectSpace, SpaceStore, space_branch_name
from .locks import ProjectLocks

logger = logging.getLogger(__name__)

SPACE_DIRNAME = "_space"


class SpaceManager:
    """Creates, looks up and repairs project spaces.

    A space is the branch ``space/<project_id>`` checked out in a linked worktree at
    ``<workspaces_root>/<project_id>/_space`` of the project's repository.
    """

    def __init__(
        self,
        *,
        projects: ProjectLoader,
        store: SpaceStore,
        runner: GitRunner,
        locks: ProjectLocks,
        workspaces_root: Path,
        default_base_branch: str = "main",
    ) -> None:
        self._projects = projects
        self._store = store
        self._runner = runner
        self._locks = locks
        self._workspaces_root = Path(workspaces_root)
        self._default_base_branch = default_base_branch

    @property
    def runner(self) -> GitRunner:
        return self._runner

    @property
    def store(self) -> SpaceStore:
        return self._store

    @property
    def projects(self) -> ProjectLoader:
        return self._projects

    def worktree_path_for(self, project_id: str) -> Path:
        return self._workspaces_root / project_id / SPACE_DIRNAME

    async def repository(self, project_id: str) -> GitRepository:
        """Return the project's backing repository.

        Raises RepoNotConfiguredError or NotAGitRepositoryError.
        """

        _, repo_path = self._projects.require_repo(project_id)
        repo = GitRepository(self._runner, repo_path)
        if not await repo.is_work_tree():
            raise NotAGitRepositoryError(f"Not a git repository: {repo_path}")
        return repo

    def get_project_space(self, project_id: str) -> ProjectSpace | None:
        return self._store.load(project_id)

    async def ensure_project_space(self, project_id: str, base_branch: str | None = None) -> ProjectSpace:
        async with self._locks.for_project(project_id):
            return await self.ensure_space(project_id, base_branch)

    async def ensure_space(self, project_id: str, base_branch: str | None = None) -> ProjectSpace:
        """Idempotent create-or-return; the caller must hold the project lock."""

        repo = await self.repository(project_id)
        existing = self._store.load(project_id)
        if existing is not None:
            if not await self._runner.is_work_tree(existing.worktree_path):
                logger.warning(
                    "Space worktree missing; re-attaching",
                    extra={"project_id": project_id, "worktree_path": str(existing.worktree_path)},
                )
                await self._attach_worktree(
                    repo, existing.worktree_path, existing.branch, existing.base_branch
                )
            return existing

        project = self._projects.get(project_id)
        base = (base_branch or "").strip() or project.base_branch or self._default_base_branch
        space = ProjectSpace(
            project_id=project_id,
            branch=space_branch_name(project_id),
            base_branch=base,
            worktree_path=self.worktree_path_for(project_id),
        )
        await self._attach_worktree(repo, space.worktree_path, space.branch, space.base_branch)
        self._store.save(space)
        logger.info(
            "Created project space",
            extra={
                "project_id": project_id,
                "branch": space.branch,
                "base_branch": space.base_branch,
                "worktree_path": str(space.worktree_path),
            },
        )
        return space

    async def _attach_worktree(self, repo: GitRepository, path: Path, branch: str, base: str) -> None:
        """Check ``branch`` out at ``path``, reusing whatever a crashed attempt left behind."""

        worktree = GitRepository(self._runner, path)
        if await worktree.is_work_tree():
            checked_out = await worktree.current_branch()
            if checked_out == branch:
                return
            raise GitFailureError(
                f"{path} is a worktree on '{checked_out or 'detached HEAD'}', expected '{branch}'"
            )

        if path.exists():
            if any(path.iterdir()):
                raise GitFailureError(f"Cannot create space worktree: {path} exists and is not empty")
            path.rmdir()
        path.parent.mkdir(parents=True, exist_ok=True)

        # Registrations of worktree directories deleted out from under git block re-adding the branch.
        await repo.worktree_prune()
        if await repo.branch_exists(branch):
            logger.info("Reusing existing space branch", extra={"branch": branch, "path": str(path)})
            await repo.worktree_add(path, branch)
        else:
            await repo.worktree_add(path, branch, base=base)

    async def recover_interrupted_merge(self, space: ProjectSpace) -> str | None:
        """Abort a merge left in progress by a crash; returns the action taken."""

        worktree = GitRepository(self._runner, space.worktree_path)
        if not await worktree.is_work_tree():
            return None
        if not await worktree.merge_in_progress():
            return None
        await worktree.merge_abort()
        logger.warning(
            "Aborted interrupted merge in project space",
            extra={"project_id": space.project_id, "worktree_path": str(space.worktree_path)},
        )
        return "merge_aborted"


__all__ = ["SPACE_DIRNAME", "SpaceManager"]
