from __future__ import annotations

import asyncio
import json
from datetime import datetime
from pathlib import Path

import pytest

from braid_mcp import server as server_module
from braid_mcp.server import create_server
from braid_mcp.storage import ChromaUnavailableError, IntegrationJournal

from conftest import StubClient, git_returncode, run_git


class StubFastMCP:
    def __init__(self, *args, **kwargs):
        self.options = kwargs
        self.tools: dict[str, object] = {}

    def resource(self, *args, **kwargs):
        def decorator(fn):
            name = kwargs.get("name") or (args[0] if args else fn.__name__)
            setattr(self, name, fn)
            return fn

        return decorator

    def tool(self, *args, **kwargs):
        def decorator(fn):
            self.tools[kwargs.get("name") or fn.__name__] = fn
            return fn

        return decorator

    def run(self):
        return None


class StubJournal(IntegrationJournal):
    last_instance: "StubJournal | None" = None

    def __init__(self, path, **_):
        super().__init__(
            path,
            client_factory=lambda: StubClient(),
            clock=lambda: datetime.fromisoformat("2025-01-01T00:00:00+00:00"),
        )
        StubJournal.last_instance = self


class UnavailableJournal:
    def __init__(self, *_, **__):
        pass

    def ping(self) -> bool:
        raise ChromaUnavailableError("chromadb package is not installed")


@pytest.fixture(autouse=True)
def stub_fastmcp(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(server_module, "FastMCP", StubFastMCP)


def test_create_server_reports_status(monkeypatch, settings, project: Path) -> None:
    monkeypatch.setattr(server_module, "IntegrationJournal", StubJournal)

    server = create_server(settings)

    assert server.options["name"] == "Braid MCP"
    assert "record_worker_delivery" in server.tools
    assert server.git_metadata["available"] is True
    assert server.git_metadata["version"].startswith("git version")
    assert server.journal is StubJournal.last_instance
    assert server.recovery_actions == []

    payload = json.loads(server.braid_status(None))
    assert payload["journal"]["available"] is True
    assert payload["spaces"]["count"] == 0
    assert payload["spaces"]["blocked"] == []
    assert payload["request_id"] is None
    assert payload["git"]["timeout"] == 30.0


def test_create_server_without_chroma(monkeypatch, settings, project: Path) -> None:
    monkeypatch.setattr(server_module, "IntegrationJournal", UnavailableJournal)

    server = create_server(settings)

    assert server.journal is None
    assert server.services.journal is None
    payload = json.loads(server.braid_status(None))
    assert payload["journal"]["available"] is False
    assert "not installed" in payload["journal"]["error"]


def test_startup_aborts_interrupted_merge(monkeypatch, settings, services, project: Path, repo_dir: Path, projects_root: Path) -> None:
    monkeypatch.setattr(server_module, "IntegrationJournal", StubJournal)
    space = asyncio.run(services.manager.ensure_project_space("PRO-1", "main"))

    (space.worktree_path / "app.txt").write_text("space\n", encoding="utf-8")
    run_git(space.worktree_path, "commit", "-am", "space edit")
    worker = projects_root / ".workspaces" / "PRO-1" / "w"
    run_git(repo_dir, "worktree", "add", "-b", "PRO-1/w", str(worker), "main")
    (worker / "app.txt").write_text("worker\n", encoding="utf-8")
    run_git(worker, "commit", "-am", "worker edit")
    assert git_returncode(space.worktree_path, "merge", "--no-edit", "PRO-1/w") != 0

    server = create_server(settings)

    action = server.recovery_actions[-1]
    assert action["project_id"] == "PRO-1"
    assert action["status"] == "merge_aborted"
    assert "attempted_at" in action
    assert git_returncode(space.worktree_path, "rev-parse", "--verify", "--quiet", "MERGE_HEAD") != 0
    recovery_events = StubJournal.last_instance.search_events(filters={"event_type": "space_recovery"})
    assert recovery_events[0].metadata["recovery_status"] == "merge_aborted"

    payload = json.loads(server.braid_status(None))
    assert payload["recovery"]["count"] == 1
    assert payload["spaces"]["count"] == 1
