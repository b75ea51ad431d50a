"""Braid MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json

from braid_mcp.config import BraidSettings
from braid_mcp.git import GitError
from braid_mcp.projects import ProjectLoadError, RepoNotConfiguredError
from braid_mcp.spaces import SpaceServices, build_services
from braid_mcp.storage import ChromaUnavailableError, IntegrationJournal, SpaceStoreError


def load_journal(settings: BraidSettings) -> IntegrationJournal:
    try:
        journal = IntegrationJournal(settings.chroma_persist_path)
        journal.ping()
        return journal
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)


def load_services(settings: BraidSettings) -> SpaceServices:
    try:
        return build_services(settings)
    except GitError as exc:
        print(f"git unavailable: {exc}")
        raise SystemExit(1)


def cmd_spaces(args: argparse.Namespace) -> None:
    settings = BraidSettings()
    services = load_services(settings)
    try:
        spaces = services.store.list_spaces()
    except SpaceStoreError as exc:
        print(f"Space store error: {exc}")
        raise SystemExit(1)

    rows = []
    for space in spaces:
        counts: dict[str, int] = {}
        for entry in space.queue:
            counts[entry.status] = counts.get(entry.status, 0) + 1
        rows.append(
            {
                **space.descriptor(),
                "integration_blocked": space.integration_blocked,
                "status_counts": counts,
            }
        )
    if args.json:
        print(json.dumps(rows, indent=2))
    else:
        for row in rows:
            flag = "BLOCKED" if row["integration_blocked"] else "ok"
            print(f"{row['project_id']} [{flag}] {row['branch']} -> {row['worktree_path']}")


def cmd_queue(args: argparse.Namespace) -> None:
    settings = BraidSettings()
    services = load_services(settings)
    try:
        result = asyncio.run(services.queue.get_queue(args.project_id))
    except (LookupError, ProjectLoadError, SpaceStoreError) as exc:
        print(f"Queue unavailable: {exc}")
        raise SystemExit(1)

    payload = result.to_dict()
    if args.status:
        payload["queue"] = [entry for entry in payload["queue"] if entry["status"] == args.status]
    print(json.dumps(payload, indent=2))


def cmd_changes(args: argparse.Namespace) -> None:
    settings = BraidSettings()
    services = load_services(settings)
    try:
        changes = asyncio.run(services.changes.get_project_changes(args.project_id))
    except (GitError, ProjectLoadError, RepoNotConfiguredError) as exc:
        print(f"Changes unavailable: {exc}")
        raise SystemExit(1)

    payload = changes.to_dict()
    if not args.diff:
        payload.pop("diff")
    print(json.dumps(payload, indent=2))


def cmd_events(args: argparse.Namespace) -> None:
    settings = BraidSettings()
    journal = load_journal(settings)
    filters = {"project_id": args.project_id} if args.project_id else None
    events = journal.search_events(filters=filters)

    if args.event_type:
        events = [event for event in events if event.event_type == args.event_type]
    events.sort(key=lambda event: event.timestamp)
    if args.limit is not None and args.limit > 0:
        events = events[-args.limit :]

    payload = [
        {
            "event_id": getattr(event, "id", None),
            "project_id": event.metadata.get("project_id"),
            "event_type": event.event_type,
            "delivery_id": event.metadata.get("delivery_id"),
            "worker_slug": event.metadata.get("worker_slug"),
            "status": event.metadata.get("status"),
            "timestamp": event.timestamp.isoformat(),
        }
        for event in events
    ]
    print(json.dumps(payload, indent=2))


def cmd_metrics(args: argparse.Namespace) -> None:
    settings = BraidSettings()
    journal = load_journal(settings)
    try:
        integrated = journal.search_events(filters={"event_type": "delivery_integrated"})
        conflicts = journal.search_events(filters={"event_type": "delivery_conflict"})
        failures = journal.search_events(filters={"event_type": "delivery_failed"})
        resumes = journal.search_events(filters={"event_type": "queue_resumed"})
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)

    conflicts_by_worker: dict[str, int] = {}
    for event in conflicts:
        worker = event.metadata.get("worker_slug") or "unknown"
        conflicts_by_worker[worker] = conflicts_by_worker.get(worker, 0) + 1

    conflicts_by_project: dict[str, int] = {}
    for event in conflicts:
        project_id = event.metadata.get("project_id") or "unknown"
        conflicts_by_project[project_id] = conflicts_by_project.get(project_id, 0) + 1

    attempts = len(integrated) + len(conflicts)
    metrics = {
        "integrated_total": len(integrated),
        "conflict_total": len(conflicts),
        "failure_total": len(failures),
        "resume_total": len(resumes),
        "conflict_rate": round(len(conflicts) / attempts, 3) if attempts else 0.0,
        "conflicts_by_worker": conflicts_by_worker,
        "conflicts_by_project": conflicts_by_project,
    }

    print(json.dumps(metrics, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Braid MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_spaces = sub.add_parser("spaces", help="List project spaces and their blockage")
    p_spaces.add_argument("--json", action="store_true", help="Output JSON")
    p_spaces.set_defaults(func=cmd_spaces)

    p_queue = sub.add_parser("queue", help="Show a project's integration queue")
    p_queue.add_argument("project_id")
    p_queue.add_argument(
        "--status",
        choices=["pending", "integrated", "conflict", "skipped"],
        help="Only show entries with this status",
    )
    p_queue.set_defaults(func=cmd_queue)

    p_changes = sub.add_parser("changes", help="Show pending changes of a project")
    p_changes.add_argument("project_id")
    p_changes.add_argument("--diff", action="store_true", help="Include the unified diff")
    p_changes.set_defaults(func=cmd_changes)

    p_events = sub.add_parser("events", help="List journaled integration events")
    p_events.add_argument("--project-id")
    p_events.add_argument("--event-type")
    p_events.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N events",
    )
    p_events.set_defaults(func=cmd_events)

    p_metrics = sub.add_parser("metrics", help="Show integration and conflict counts")
    p_metrics.set_defaults(func=cmd_metrics)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
