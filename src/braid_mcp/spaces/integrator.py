"""Merges a single worker delivery into the project space branch."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping

from ..git import GitExecutionResult, GitFailureError, GitRepository, GitRunner
from ..storage import DeliveryRecord, ProjectSpace

logger = logging.getLogger(__name__)

DELIVERY_REF_PREFIX = "refs/braid/deliveries"
INCOMING_REF_PREFIX = "refs/braid/incoming"

_CONFLICT_MARKERS = ("CONFLICT", "Automatic merge failed")


class IntegrationError(RuntimeError):
    """A delivery could not be attempted; the record stays pending for a retry."""


class MergeConflictError(RuntimeError):
    """The merge conflicted and was aborted. Recorded as queue state, not raised to callers."""

    def __init__(self, message: str, files: list[str] | None = None) -> None:
        super().__init__(message)
        self.files = files or []


def is_conflict(result: GitExecutionResult) -> bool:
    combined = f"{result.stdout}\n{result.stderr}"
    return any(marker in combined for marker in _CONFLICT_MARKERS)


def conflict_files(result: GitExecutionResult) -> list[str]:
    files: list[str] = []
    for line in result.stdout.splitlines():
        if not line.startswith("CONFLICT"):
            continue
        # "CONFLICT (content): Merge conflict in app.txt"
        _, _, tail = line.partition(" in ")
        if tail.strip():
            files.append(tail.strip())
    return files


class DeliveryIntegrator:
    """Three-way merges a delivery's end commit into the space tip.

    From the space worktree's point of view an attempt is atomic: it either
    produces a new tip or leaves the worktree at its pre-attempt tip.
    """

    def __init__(self, runner: GitRunner, *, identity: Mapping[str, str] | None = None) -> None:
        self._runner = runner
        self._identity = dict(identity or {})

    async def integrate(self, space: ProjectSpace, record: DeliveryRecord, *, repo_path: Path) -> DeliveryRecord:
        """Attempt ``record`` and update its status in place.

        Ends ``integrated``, ``conflict`` or ``skipped`` (empty range). Any other
        failure raises IntegrationError and leaves the record ``pending``.
        """

        shared = GitRepository(self._runner, repo_path)
        worktree = GitRepository(self._runner, space.worktree_path)

        try:
            end = await self._resolve_end(shared, record)
            start = await self._resolve_start(shared, record)
            shas = [] if end is None or start == end else await shared.rev_list(start, end)
        except GitFailureError as exc:
            raise IntegrationError(f"Cannot resolve delivery {record.id}: {exc}") from exc

        record.shas = shas
        if end is None or not shas:
            record.mark("skipped")
            logger.info(
                "Skipped empty delivery",
                extra={"project_id": space.project_id, "delivery_id": record.id},
            )
            return record

        try:
            record.merge_sha = await self._merge(worktree, space, record, end)
        except MergeConflictError as exc:
            record.merge_sha = None
            record.mark("conflict", error=str(exc))
            logger.warning(
                "Delivery conflicts with project space",
                extra={
                    "project_id": space.project_id,
                    "delivery_id": record.id,
                    "worker_slug": record.worker_slug,
                    "files": exc.files,
                },
            )
            return record
        except GitFailureError as exc:
            raise IntegrationError(f"Integration of delivery {record.id} failed: {exc}") from exc

        record.mark("integrated")
        logger.info(
            "Integrated delivery",
            extra={
                "project_id": space.project_id,
                "delivery_id": record.id,
                "worker_slug": record.worker_slug,
                "merge_sha": record.merge_sha,
                "commits": len(shas),
            },
        )
        return record

    async def _resolve_end(self, shared: GitRepository, record: DeliveryRecord) -> str | None:
        if record.end_sha is None:
            return None
        if record.run_mode == "clone":
            return await self._fetch_clone(shared, record)
        end = await shared.resolve_commit(record.end_sha)
        if end is None:
            raise IntegrationError(
                f"End commit {record.end_sha} of delivery {record.id} is missing from {shared.path}"
            )
        return end

    async def _resolve_start(self, shared: GitRepository, record: DeliveryRecord) -> str | None:
        if record.start_sha is None:
            return None
        start = await shared.resolve_commit(record.start_sha)
        if start is None:
            raise IntegrationError(
                f"Start commit {record.start_sha} of delivery {record.id} is missing from {shared.path}"
            )
        return start

    async def _fetch_clone(self, shared: GitRepository, record: DeliveryRecord) -> str:
        """Transfer the clone's objects, then pin the end commit under a delivery ref."""

        source = Path(record.source_path)
        if not source.exists():
            raise IntegrationError(f"Clone path {source} of delivery {record.id} does not exist")

        namespace = f"{INCOMING_REF_PREFIX}/{record.id}"
        await shared.fetch_from_path(source, namespace)
        try:
            end = await shared.resolve_commit(record.end_sha or "")
            if end is None:
                raise IntegrationError(
                    f"End commit {record.end_sha} of delivery {record.id} not found in clone {source}"
                )
            await shared.update_ref(f"{DELIVERY_REF_PREFIX}/{record.id}", end)
        finally:
            await shared.delete_refs(namespace)
        return end

    async def _merge(
        self,
        worktree: GitRepository,
        space: ProjectSpace,
        record: DeliveryRecord,
        end: str,
    ) -> str:
        branch = await worktree.current_branch()
        if branch != space.branch:
            raise IntegrationError(
                f"Space worktree {worktree.path} has '{branch or 'detached HEAD'}' checked out, "
                f"expected '{space.branch}'"
            )
        if await worktree.merge_in_progress():
            raise IntegrationError(f"A merge is already in progress in {worktree.path}")

        pre_tip = await worktree.head_sha()
        message = f"Integrate {record.worker_slug} delivery {record.id}"
        try:
            result = await worktree.merge(end, message=message, env=self._identity)
        except GitFailureError:
            await self._rollback(worktree, pre_tip)
            raise

        if result.ok:
            return await worktree.head_sha()

        await self._rollback(worktree, pre_tip)
        if is_conflict(result):
            files = conflict_files(result)
            detail = ", ".join(files) if files else result.describe()
            raise MergeConflictError(f"Merge conflict: {detail}", files)
        raise IntegrationError(result.describe())

    async def _rollback(self, worktree: GitRepository, pre_tip: str) -> None:
        if await worktree.merge_in_progress():
            await worktree.merge_abort()
        if await worktree.head_sha() != pre_tip:
            await worktree.reset_hard(pre_tip)


__all__ = [
    "DELIVERY_REF_PREFIX",
    "DeliveryIntegrator",
    "IntegrationError",
    "MergeConflictError",
    "conflict_files",
    "is_conflict",
]
