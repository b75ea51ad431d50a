from __future__ import annotations

import argparse
import asyncio
import importlib.util
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from conftest import add_worker, commit_file


def _load_diag(module_name: str):
    module_path = Path(__file__).resolve().parents[1] / "scripts" / "braid_diag.py"
    spec = importlib.util.spec_from_file_location(module_name, module_path)
    assert spec and spec.loader
    diag = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(diag)
    return diag


def _event(event_type: str, minute: int, **metadata):
    return argparse.Namespace(
        id=f"event-{minute}",
        event_type=event_type,
        metadata={"event_type": event_type, **metadata},
        timestamp=datetime(2025, 1, 1, minute=minute, tzinfo=timezone.utc),
    )


def test_metrics_reports_conflict_counts(monkeypatch, capsys) -> None:
    class StubJournal:
        def search_events(self, filters=None):
            event_type = (filters or {}).get("event_type")
            if event_type == "delivery_integrated":
                return [_event(event_type, 0, project_id="PRO-1", worker_slug="alpha")] * 3
            if event_type == "delivery_conflict":
                return [
                    _event(event_type, 1, project_id="PRO-1", worker_slug="beta"),
                    _event(event_type, 2, project_id="PRO-2", worker_slug="beta"),
                    _event(event_type, 3, project_id="PRO-1", worker_slug="gamma"),
                ]
            if event_type == "queue_resumed":
                return [_event(event_type, 4, project_id="PRO-1")]
            return []

    diag = _load_diag("braid_diag_metrics_module")
    monkeypatch.setattr(diag, "load_journal", lambda _settings: StubJournal())

    diag.cmd_metrics(argparse.Namespace())

    payload = json.loads(capsys.readouterr().out)
    assert payload["integrated_total"] == 3
    assert payload["conflict_total"] == 3
    assert payload["failure_total"] == 0
    assert payload["resume_total"] == 1
    assert payload["conflict_rate"] == 0.5
    assert payload["conflicts_by_worker"] == {"beta": 2, "gamma": 1}
    assert payload["conflicts_by_project"] == {"PRO-1": 2, "PRO-2": 1}


def test_events_filters_and_limits(monkeypatch, capsys) -> None:
    class StubJournal:
        def search_events(self, filters=None):
            assert filters == {"project_id": "PRO-1"}
            return [
                _event("delivery_recorded", 3, project_id="PRO-1", delivery_id="d2"),
                _event("delivery_recorded", 1, project_id="PRO-1", delivery_id="d1"),
                _event("delivery_integrated", 2, project_id="PRO-1", delivery_id="d1"),
            ]

    diag = _load_diag("braid_diag_events_module")
    monkeypatch.setattr(diag, "load_journal", lambda _settings: StubJournal())

    diag.cmd_events(argparse.Namespace(project_id="PRO-1", event_type="delivery_recorded", limit=1))

    payload = json.loads(capsys.readouterr().out)
    assert len(payload) == 1
    assert payload[0]["delivery_id"] == "d2"
    assert payload[0]["event_id"] == "event-3"


def test_queue_and_spaces_commands(monkeypatch, capsys, services, project, repo_dir, projects_root) -> None:
    worker = add_worker(repo_dir, projects_root / ".workspaces" / "PRO-1", "alpha")
    start, end = commit_file(worker, "a.txt", "a\n", "alpha")
    asyncio.run(
        services.queue.record_worker_delivery(
            "PRO-1",
            worker_slug="alpha",
            run_mode="worktree",
            source_path=worker,
            start_sha=start,
            end_sha=end,
        )
    )

    diag = _load_diag("braid_diag_queue_module")
    monkeypatch.setattr(diag, "load_services", lambda _settings: services)

    diag.cmd_spaces(argparse.Namespace(json=True))
    spaces = json.loads(capsys.readouterr().out)
    assert spaces[0]["project_id"] == "PRO-1"
    assert spaces[0]["status_counts"] == {"integrated": 1}

    diag.cmd_queue(argparse.Namespace(project_id="PRO-1", status="conflict"))
    queue = json.loads(capsys.readouterr().out)
    assert queue["integration_blocked"] is False
    assert queue["queue"] == []


def test_queue_without_space_exits(monkeypatch, capsys, services, project) -> None:
    diag = _load_diag("braid_diag_missing_module")
    monkeypatch.setattr(diag, "load_services", lambda _settings: services)

    with pytest.raises(SystemExit):
        diag.cmd_queue(argparse.Namespace(project_id="PRO-1", status=None))
    assert "Queue unavailable" in capsys.readouterr().out


def test_main_without_command_prints_help(capsys) -> None:
    diag = _load_diag("braid_diag_help_module")

    diag.main([])

    assert "Braid MCP diagnostics" in capsys.readouterr().out
