"""Tool registration for Braid MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

from fastmcp import Context, FastMCP

from ..spaces import QueueResult, SpaceServices
from ..storage import IntegrationJournal, ProjectSpace, SpaceStoreError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    ensure_project_space: Any
    get_project_space: Any
    record_worker_delivery: Any
    integrate_project_space_queue: Any
    resolve_delivery: Any
    get_project_changes: Any
    commit_project_changes: Any
    get_pull_request_target: Any
    delivery_history: Any
    queue_state: dict[str, dict[str, Any]]


def _space_payload(space: ProjectSpace) -> dict[str, Any]:
    return {
        **space.descriptor(),
        "integration_blocked": space.integration_blocked,
        "queue": [entry.model_dump(mode="json") for entry in space.queue],
        "updated_at": space.updated_at.isoformat(),
    }


def register_tools(
    server: FastMCP,
    *,
    services: SpaceServices,
) -> ToolHandles:
    """Register Braid's MCP tools on the server."""

    queue_state: dict[str, dict[str, Any]] = {}

    def _remember(result: QueueResult) -> dict[str, Any]:
        payload = result.to_dict()
        counts: dict[str, int] = {}
        for entry in result.queue:
            counts[entry.status] = counts.get(entry.status, 0) + 1
        queue_state[result.space.project_id] = {
            "project_id": result.space.project_id,
            "integration_blocked": result.integration_blocked,
            "status_counts": counts,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        return payload

    try:
        known_spaces = services.store.list_spaces()
    except SpaceStoreError as exc:
        logger.error("Cannot load project spaces", extra={"error": str(exc)})
        known_spaces = []
    for space in known_spaces:
        _remember(QueueResult(space=space, integration_blocked=space.integration_blocked or bool(space.pending())))

    async def _ensure_project_space(
        project_id: str,
        base_branch: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Create the project's integration space, or return the existing one unchanged."""

        space = await services.manager.ensure_project_space(project_id, base_branch)
        _emit_log(
            context,
            "info",
            "Ensured project space",
            extra={"project_id": project_id, "branch": space.branch},
        )
        return _space_payload(space)

    def _get_project_space(project_id: str, context: Context | None = None) -> dict[str, Any]:
        """Look up a project's space without side effects."""

        space = services.manager.get_project_space(project_id)
        if space is None:
            return {"ok": False, "error": "Project space not found"}
        return {"ok": True, "data": _space_payload(space)}

    tool_ensure = server.tool(
        name="ensure_project_space",
        description=(
            "Create (idempotently) the shared integration branch space/<project_id> and its "
            "worktree, forked from base_branch. Returns the space descriptor and queue."
        ),
    )(_ensure_project_space)

    tool_get = server.tool(
        name="get_project_space",
        description="Return the stored project space descriptor and integration queue, if any.",
    )(_get_project_space)

    async def _record_worker_delivery(
        project_id: str,
        worker_slug: str,
        source_path: str,
        run_mode: Literal["worktree", "clone"] = "worktree",
        start_sha: str | None = None,
        end_sha: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Enqueue a worker's commit range and merge it unless the queue is blocked."""

        result = await services.queue.record_worker_delivery(
            project_id,
            worker_slug=worker_slug,
            run_mode=run_mode,
            source_path=source_path,
            start_sha=start_sha,
            end_sha=end_sha,
        )
        _emit_log(
            context,
            "warning" if result.integration_blocked else "info",
            "Recorded worker delivery",
            extra={
                "project_id": project_id,
                "worker_slug": worker_slug,
                "status": result.queue[-1].status if result.queue else None,
                "integration_blocked": result.integration_blocked,
            },
        )
        return _remember(result)

    async def _integrate_project_space_queue(
        project_id: str,
        resume: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Drain pending deliveries; resume=True first clears the blockage left by a conflict."""

        result = await services.queue.integrate_project_space_queue(project_id, resume=resume)
        _emit_log(
            context,
            "info",
            "Integrated project space queue",
            extra={
                "project_id": project_id,
                "resume": resume,
                "integration_blocked": result.integration_blocked,
            },
        )
        return _remember(result)

    async def _resolve_delivery(
        project_id: str,
        delivery_id: str,
        end_sha: str,
        start_sha: str | None = None,
        source_path: str | None = None,
        run_mode: Literal["worktree", "clone"] | None = None,
        note: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Replace a conflicted or failing delivery's range with a manually merged commit."""

        result = await services.queue.resolve_delivery(
            project_id,
            delivery_id,
            end_sha=end_sha,
            start_sha=start_sha,
            source_path=source_path,
            run_mode=run_mode,
            note=note,
        )
        _emit_log(
            context,
            "info",
            "Resolved delivery",
            extra={"project_id": project_id, "delivery_id": delivery_id},
        )
        return _remember(result)

    tool_record = server.tool(
        name="record_worker_delivery",
        description=(
            "Report a finished worker commit range (start_sha exclusive, end_sha inclusive) from a "
            "worktree or clone. Merges it into the project space unless integration is blocked."
        ),
        annotations={
            "safety": {
                "level": "caution",
                "notes": "Mutates the project space branch when the queue is not blocked",
            }
        },
    )(_record_worker_delivery)

    tool_integrate = server.tool(
        name="integrate_project_space_queue",
        description=(
            "Drain pending deliveries in arrival order. Pass resume=true after inspecting a "
            "conflict to clear the blockage; conflicted entries are not retried."
        ),
    )(_integrate_project_space_queue)

    tool_resolve = server.tool(
        name="resolve_delivery",
        description=(
            "Supersede a conflicted delivery, or a pending one whose last attempt failed, with a "
            "manually merged commit; it returns to pending and is integrated by the next resume."
        ),
    )(_resolve_delivery)

    async def _get_project_changes(project_id: str, context: Context | None = None) -> dict[str, Any]:
        """Uncommitted files, diff and stats of the space worktree (or the repository)."""

        changes = await services.changes.get_project_changes(project_id)
        _emit_log(
            context,
            "debug",
            "Computed project changes",
            extra={"project_id": project_id, "files": len(changes.files)},
        )
        return changes.to_dict()

    async def _commit_project_changes(
        project_id: str,
        message: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Stage and commit all pending edits; a clean tree returns ok=false."""

        result = await services.changes.commit_project_changes(project_id, message)
        _emit_log(
            context,
            "info" if result.get("ok") else "warning",
            "Commit project changes",
            extra={"project_id": project_id, "ok": result.get("ok"), "error": result.get("error")},
        )
        return result

    async def _get_pull_request_target(project_id: str, context: Context | None = None) -> dict[str, Any]:
        target = await services.changes.get_project_pull_request_target(project_id)
        return target.to_dict()

    tool_changes = server.tool(
        name="get_project_changes",
        description="Show pending changes of the project space worktree, or of the repo when no space exists.",
    )(_get_project_changes)

    tool_commit = server.tool(
        name="commit_project_changes",
        description="Stage and commit all pending edits in the project's authoritative working tree.",
    )(_commit_project_changes)

    tool_pr = server.tool(
        name="get_pull_request_target",
        description="Return branch, base branch and a GitHub compare URL when origin points at GitHub.",
    )(_get_pull_request_target)

    def _require_journal() -> IntegrationJournal:
        if services.journal is None:
            raise RuntimeError("Integration journal is unavailable; enable Chroma persistence to use this tool")
        return services.journal

    def _delivery_history(
        project_id: str,
        delivery_id: str | None = None,
        limit: int | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Journaled integration events for a project, optionally for one delivery."""

        journal = _require_journal()
        if delivery_id:
            events = journal.delivery_history(project_id, delivery_id)
        else:
            events = journal.fetch_project_events(project_id)
        if limit:
            events = events[-limit:]
        timeline = [
            {
                "event_id": event.id,
                "event_type": event.event_type,
                "timestamp": event.timestamp.isoformat(),
                "metadata": event.metadata,
            }
            for event in events
        ]
        _emit_log(
            context,
            "debug",
            "Delivery history",
            extra={"project_id": project_id, "events": len(timeline)},
        )
        return {"project_id": project_id, "delivery_id": delivery_id, "events": timeline}

    tool_history = server.tool(
        name="delivery_history",
        description="List journaled queue and integration events for a project.",
    )(_delivery_history)

    return ToolHandles(
        ensure_project_space=tool_ensure,
        get_project_space=tool_get,
        record_worker_delivery=tool_record,
        integrate_project_space_queue=tool_integrate,
        resolve_delivery=tool_resolve,
        get_project_changes=tool_changes,
        commit_project_changes=tool_commit,
        get_pull_request_target=tool_pr,
        delivery_history=tool_history,
        queue_state=queue_state,
    )


__all__ = ["register_tools", "ToolHandles"]


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
