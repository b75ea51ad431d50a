"""Per-project integration queue: ordering, blockage and resumption."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..storage import DeliveryRecord, IntegrationJournal, ProjectSpace, RunMode, SpaceStore
from .integrator import DeliveryIntegrator, IntegrationError
from .locks import ProjectLocks
from .manager import SpaceManager

logger = logging.getLogger(__name__)


class DeliveryNotFoundError(LookupError):
    """Raised when a delivery id is not present in the project's queue."""


@dataclass(slots=True)
class QueueResult:
    """Response of every queue operation; the queue is always included for inspection."""

    space: ProjectSpace
    integration_blocked: bool

    @property
    def queue(self) -> list[DeliveryRecord]:
        return self.space.queue

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.space.project_id,
            "branch": self.space.branch,
            "integration_blocked": self.integration_blocked,
            "queue": [entry.model_dump(mode="json") for entry in self.space.queue],
        }


class QueueController:
    """Serializes delivery attempts per project.

    A conflict blocks the queue: later deliveries are recorded ``pending`` and no
    merge is attempted until ``integrate_project_space_queue(resume=True)``. Resume
    acknowledges existing conflicts (they are never retried) and drains pending
    entries in arrival order until the next conflict.
    """

    def __init__(
        self,
        *,
        manager: SpaceManager,
        store: SpaceStore,
        integrator: DeliveryIntegrator,
        locks: ProjectLocks,
        journal: IntegrationJournal | None = None,
        history_limit: int = 200,
    ) -> None:
        self._manager = manager
        self._store = store
        self._integrator = integrator
        self._locks = locks
        self._journal = journal
        self._history_limit = history_limit

    async def record_worker_delivery(
        self,
        project_id: str,
        *,
        worker_slug: str,
        run_mode: RunMode,
        source_path: Path | str,
        start_sha: str | None = None,
        end_sha: str | None = None,
    ) -> QueueResult:
        async with self._locks.for_project(project_id):
            space = await self._manager.ensure_space(project_id)
            repo = await self._manager.repository(project_id)

            record = DeliveryRecord(
                worker_slug=worker_slug,
                run_mode=run_mode,
                source_path=Path(source_path),
                start_sha=start_sha,
                end_sha=end_sha,
            )
            space.queue.append(record)
            self._persist(space)
            self._journal_delivery(project_id, record, "delivery_recorded")

            if space.integration_blocked:
                logger.info(
                    "Integration blocked; delivery left pending",
                    extra={"project_id": project_id, "delivery_id": record.id, "worker_slug": worker_slug},
                )
                return self._result(space)

            await self._drain(space, repo.path, raise_for=record.id)
            return self._result(space)

    async def integrate_project_space_queue(self, project_id: str, *, resume: bool = False) -> QueueResult:
        async with self._locks.for_project(project_id):
            repo = await self._manager.repository(project_id)
            space = self._store.require(project_id)

            if resume:
                acknowledged = [entry.id for entry in space.queue if entry.status == "conflict"]
                space.integration_blocked = False
                self._persist(space)
                if self._journal is not None:
                    self._journal.record_event(
                        project_id=project_id,
                        event_type="queue_resumed",
                        body={"acknowledged_conflicts": acknowledged, "pending": len(space.pending())},
                        metadata={"pending": len(space.pending())},
                    )
                logger.info(
                    "Resuming integration queue",
                    extra={"project_id": project_id, "pending": len(space.pending())},
                )

            if not space.integration_blocked:
                await self._drain(space, repo.path)
            return self._result(space)

    async def resolve_delivery(
        self,
        project_id: str,
        delivery_id: str,
        *,
        end_sha: str,
        start_sha: str | None = None,
        source_path: Path | str | None = None,
        run_mode: RunMode | None = None,
        note: str | None = None,
    ) -> QueueResult:
        """Supersede a conflicted or failing delivery with a manually merged commit.

        Accepts ``conflict`` entries and ``pending`` entries whose last attempt
        failed. The entry keeps its queue position and returns to ``pending``; the
        next resume integrates it.
        """

        async with self._locks.for_project(project_id):
            space = self._store.require(project_id)
            record = space.find(delivery_id)
            if record is None:
                raise DeliveryNotFoundError(f"Delivery '{delivery_id}' not found in project '{project_id}'")
            failed = record.status == "pending" and record.error is not None
            if record.status != "conflict" and not failed:
                raise ValueError(
                    f"Delivery '{delivery_id}' is {record.status}; only conflicted or failed deliveries can be resolved"
                )

            previous_end = record.end_sha
            record.end_sha = end_sha
            if start_sha is not None:
                record.start_sha = start_sha
            if source_path is not None:
                record.source_path = Path(source_path)
            if run_mode is not None:
                record.run_mode = run_mode
            record.shas = []
            record.merge_sha = None
            record.mark("pending")
            record.resolution = note or f"superseded {previous_end} with {end_sha}"
            self._persist(space)
            self._journal_delivery(project_id, record, "delivery_resolved")
            logger.info(
                "Delivery superseded; pending resume",
                extra={"project_id": project_id, "delivery_id": delivery_id, "end_sha": end_sha},
            )
            return self._result(space)

    async def get_queue(self, project_id: str) -> QueueResult:
        async with self._locks.for_project(project_id):
            return self._result(self._store.require(project_id))

    async def _drain(self, space: ProjectSpace, repo_path: Path, *, raise_for: str | None = None) -> None:
        """Attempt pending entries in order; stop at the first conflict or failure.

        A failure re-raises unless ``raise_for`` names a different entry, in which
        case draining stops and the failed entry keeps the queue blocked.
        """

        for record in list(space.queue):
            if record.status != "pending":
                continue
            try:
                await self._integrator.integrate(space, record, repo_path=repo_path)
            except IntegrationError as exc:
                record.error = str(exc)
                self._persist(space)
                self._journal_delivery(space.project_id, record, "delivery_failed")
                logger.error(
                    "Delivery integration failed; left pending",
                    extra={"project_id": space.project_id, "delivery_id": record.id, "error": str(exc)},
                )
                if raise_for is None or raise_for == record.id:
                    raise
                return

            if record.status == "conflict":
                space.integration_blocked = True
            self._persist(space)
            self._journal_delivery(space.project_id, record, f"delivery_{record.status}")
            if space.integration_blocked:
                break

    def _persist(self, space: ProjectSpace) -> None:
        self._trim(space)
        self._store.save(space)

    def _trim(self, space: ProjectSpace) -> None:
        resolved = [entry for entry in space.queue if entry.is_resolved]
        excess = len(resolved) - self._history_limit
        if excess <= 0:
            return
        dropped = {entry.id for entry in resolved[:excess]}
        space.queue = [entry for entry in space.queue if entry.id not in dropped]

    def _journal_delivery(self, project_id: str, record: DeliveryRecord, event_type: str) -> None:
        if self._journal is None:
            return
        self._journal.record_delivery(project_id, record, event_type)

    @staticmethod
    def _result(space: ProjectSpace) -> QueueResult:
        blocked = space.integration_blocked or any(entry.status == "pending" for entry in space.queue)
        return QueueResult(space=space, integration_blocked=blocked)


__all__ = ["DeliveryNotFoundError", "QueueController", "QueueResult"]
