"""Project spaces: shared integration worktrees and their merge queues."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..config import BraidSettings
from ..git import GitRunner
from ..git.utils import identity_environment
from ..projects import ProjectLoader
from ..storage import IntegrationJournal, SpaceStore
from .changes import (
    ChangeInspector,
    ChangeSet,
    CommitFailedError,
    FileChange,
    NothingToCommitError,
    PullRequestTarget,
)
from .integrator import DeliveryIntegrator, IntegrationError, MergeConflictError
from .locks import ProjectLocks
from .manager import SpaceManager
from .queue import DeliveryNotFoundError, QueueController, QueueResult


@dataclass(slots=True)
class SpaceServices:
    """The wired-together subsystem for one process."""

    projects: ProjectLoader
    store: SpaceStore
    runner: GitRunner
    locks: ProjectLocks
    manager: SpaceManager
    integrator: DeliveryIntegrator
    queue: QueueController
    changes: ChangeInspector
    journal: IntegrationJournal | None = None


def build_services(
    settings: BraidSettings,
    *,
    runner: GitRunner | None = None,
    journal: IntegrationJournal | None = None,
) -> SpaceServices:
    """Wire loader, store, manager, integrator, queue and inspector from settings."""

    runner = runner or GitRunner(
        Path(settings.git_path) if settings.git_path else None,
        timeout=settings.git_timeout,
    )
    projects = ProjectLoader(settings.resolved_projects_root())
    store = SpaceStore(projects)
    locks = ProjectLocks()
    manager = SpaceManager(
        projects=projects,
        store=store,
        runner=runner,
        locks=locks,
        workspaces_root=settings.resolved_workspaces_root(),
        default_base_branch=settings.default_base_branch,
    )
    integrator = DeliveryIntegrator(
        runner,
        identity=identity_environment(settings.integrator_name, settings.integrator_email),
    )
    queue = QueueController(
        manager=manager,
        store=store,
        integrator=integrator,
        locks=locks,
        journal=journal,
        history_limit=settings.queue_history_limit,
    )
    changes = ChangeInspector(
        manager=manager,
        locks=locks,
        default_base_branch=settings.default_base_branch,
    )
    return SpaceServices(
        projects=projects,
        store=store,
        runner=runner,
        locks=locks,
        manager=manager,
        integrator=integrator,
        queue=queue,
        changes=changes,
        journal=journal,
    )


__all__ = [
    "ChangeInspector",
    "ChangeSet",
    "CommitFailedError",
    "DeliveryIntegrator",
    "DeliveryNotFoundError",
    "FileChange",
    "IntegrationError",
    "MergeConflictError",
    "NothingToCommitError",
    "ProjectLocks",
    "PullRequestTarget",
    "QueueController",
    "QueueResult",
    "SpaceManager",
    "SpaceServices",
    "build_services",
]
