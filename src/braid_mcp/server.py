"""FastMCP server bootstrap for Braid."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import BraidSettings, get_settings
from .git import GitError, GitRunner
from .spaces import SpaceServices, build_services
from .storage import DEFAULT_COLLECTION, ChromaUnavailableError, IntegrationJournal, SpaceStoreError
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for the Braid server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Run a coroutine to completion before the server loop exists."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _recover_spaces(services: SpaceServices) -> list[dict[str, Any]]:
    """Abort merges a crash left half-done so every space sits on a committed tip."""

    actions: list[dict[str, Any]] = []
    try:
        spaces = services.store.list_spaces()
    except SpaceStoreError as exc:
        logging.getLogger(__name__).error("Cannot load project spaces", extra={"error": str(exc)})
        return [{"status": "load_failed", "error": str(exc)}]

    for space in spaces:
        action: dict[str, Any] = {
            "project_id": space.project_id,
            "worktree_path": str(space.worktree_path),
            "attempted_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            outcome = _run_sync(services.manager.recover_interrupted_merge(space))
        except GitError as exc:
            action.update({"status": "recovery_failed", "error": str(exc)})
            logging.getLogger(__name__).error(
                "Space recovery failed",
                extra={"project_id": space.project_id, "error": str(exc)},
            )
        else:
            if outcome is None:
                continue
            action["status"] = outcome

        actions.append(action)
        if services.journal is not None:
            services.journal.record_event(
                project_id=space.project_id,
                event_type="space_recovery",
                body=action,
                metadata={"recovery_status": action.get("status")},
            )
    return actions


def create_server(
    settings: Optional[BraidSettings] = None,
    git_runner: GitRunner | None = None,
) -> FastMCP:
    """Probe git and the journal, recover interrupted merges, then register tools and status."""

    settings = settings or get_settings()

    git_metadata = {
        "available": False,
        "version": None,
        "error": None,
    }

    if git_runner is None:
        # Without git nothing here can work; GitNotFoundError aborts startup.
        git_runner = GitRunner(
            Path(settings.git_path) if settings.git_path else None,
            timeout=settings.git_timeout,
        )
    git_metadata["available"] = True
    try:
        version_result = _run_sync(git_runner.version())
        if version_result.ok:
            git_metadata["version"] = version_result.stdout.strip()
        else:
            git_metadata["error"] = version_result.stderr.strip() or "git --version failed"
    except GitError as exc:
        git_metadata["error"] = str(exc)

    journal: IntegrationJournal | None = None
    journal_metadata = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "collection": DEFAULT_COLLECTION,
        "error": None,
    }

    try:
        journal = IntegrationJournal(settings.chroma_persist_path)
        journal.ping()
        journal_metadata["available"] = True
    except ChromaUnavailableError as exc:
        journal_metadata["error"] = str(exc)
        journal = None

    services = build_services(settings, runner=git_runner, journal=journal)
    recovery_actions = _recover_spaces(services)

    server = FastMCP(
        name="Braid MCP",
        version=__version__,
        instructions=(
            "Braid merges the commits of coding agents working in separate worktrees or clones "
            "into one shared integration branch per project. Report finished work with "
            "record_worker_delivery, inspect conflicts in the returned queue, and resume with "
            "integrate_project_space_queue."
        ),
    )

    handles = register_tools(server, services=services)
    queue_state = handles.queue_state

    @server.resource(
        "resource://braid/status",
        name="braid_status",
        title="Braid MCP Status",
        description="Provides the current integration status for all project spaces.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """JSON summary of git, journal, per-project blockage and startup recovery."""

        blocked = sorted(
            project_id for project_id, state in queue_state.items() if state.get("integration_blocked")
        )
        status_counts: dict[str, int] = {}
        for state in queue_state.values():
            for status, count in state.get("status_counts", {}).items():
                status_counts[status] = status_counts.get(status, 0) + count

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "projects_root": str(services.projects.root),
            "git": {
                "executable": str(git_runner.executable),
                "timeout": git_runner.timeout,
                **git_metadata,
            },
            "journal": journal_metadata,
            "spaces": {
                "count": len(queue_state),
                "blocked": blocked,
                "status_counts": status_counts,
                "projects": list(queue_state.values())[-10:],
            },
            "recovery": {
                "actions": recovery_actions[-10:],
                "count": len(recovery_actions),
            },
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "services", services)
    setattr(server, "git_metadata", git_metadata)
    setattr(server, "journal", journal)
    setattr(server, "journal_metadata", journal_metadata)
    setattr(server, "recovery_actions", recovery_actions)
    setattr(server, "tool_handles", handles)
    setattr(server, "queue_state", queue_state)
    return server


def main() -> None:
    """Entry point for running the Braid MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching Braid MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "projects_root": str(settings.resolved_projects_root()),
            "journal_available": getattr(server, "journal_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
