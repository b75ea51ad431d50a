from __future__ import annotations

import json
import subprocess
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from braid_mcp.config import BraidSettings
from braid_mcp.spaces import SpaceServices, build_services


def run_git(cwd: Path, *args: str) -> str:
    process = subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        check=True,
    )
    return process.stdout.strip()


def git_returncode(cwd: Path, *args: str) -> int:
    return subprocess.run(["git", *args], cwd=str(cwd), capture_output=True, text=True).returncode


def configure_identity(repo_dir: Path) -> None:
    run_git(repo_dir, "config", "user.name", "Braid Test")
    run_git(repo_dir, "config", "user.email", "test@braid.local")


def create_repo(repo_dir: Path) -> Path:
    repo_dir.mkdir(parents=True, exist_ok=True)
    run_git(repo_dir, "init", "-b", "main")
    configure_identity(repo_dir)
    (repo_dir / "app.txt").write_text("base\n", encoding="utf-8")
    run_git(repo_dir, "add", ".")
    run_git(repo_dir, "commit", "-m", "init")
    return repo_dir


def write_project(
    projects_root: Path,
    repo: Path | None,
    *,
    project_id: str = "PRO-1",
    slug: str = "space-test",
    extra: dict[str, str] | None = None,
) -> Path:
    project_dir = projects_root / f"{project_id}_{slug}"
    project_dir.mkdir(parents=True, exist_ok=True)
    lines = ["---", f"id: {json.dumps(project_id)}", 'title: "Space Test"']
    if repo is not None:
        lines.append(f"repo: {json.dumps(str(repo))}")
    for key, value in (extra or {}).items():
        lines.append(f"{key}: {json.dumps(value)}")
    lines.extend(["---", "", "# Space Test", ""])
    (project_dir / "README.md").write_text("\n".join(lines), encoding="utf-8")
    return project_dir


def add_worker(repo_dir: Path, workers_root: Path, name: str, *, project_id: str = "PRO-1") -> Path:
    worker_path = workers_root / name
    workers_root.mkdir(parents=True, exist_ok=True)
    run_git(repo_dir, "worktree", "add", "-b", f"{project_id}/{name}", str(worker_path), "main")
    return worker_path


def commit_file(worktree: Path, filename: str, content: str, message: str) -> tuple[str, str]:
    """Write and commit a file; returns the (start, end) SHAs of the new range."""

    start = run_git(worktree, "rev-parse", "HEAD")
    (worktree / filename).write_text(content, encoding="utf-8")
    run_git(worktree, "add", filename)
    run_git(worktree, "commit", "-m", message)
    end = run_git(worktree, "rev-parse", "HEAD")
    return start, end


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    id: str


def _matches(metadata: dict[str, Any], where: dict[str, Any]) -> bool:
    if "$and" in where:
        return all(_matches(metadata, clause) for clause in where["$and"])
    return all(metadata.get(key) == value for key, value in where.items())


class StubCollection:
    def __init__(self) -> None:
        self.records: list[_Record] = []
        self.queries: list[dict[str, Any] | None] = []

    def add(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            self.records.append(_Record(document=document, metadata=dict(metadata), id=record_id))

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        self.queries.append(where)
        filtered = self.records
        if where:
            filtered = [record for record in filtered if _matches(record.metadata, where)]
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "ids": [record.id for record in filtered],
            "documents": [record.document for record in filtered],
            "metadatas": [record.metadata for record in filtered],
        }


class StubClient:
    def __init__(self) -> None:
        self.collections = defaultdict(StubCollection)

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collections[name]


@pytest.fixture
def projects_root(tmp_path: Path) -> Path:
    root = tmp_path / "projects"
    root.mkdir()
    return root


@pytest.fixture
def repo_dir(tmp_path: Path) -> Path:
    return create_repo(tmp_path / "repo")


@pytest.fixture
def settings(tmp_path: Path, projects_root: Path) -> BraidSettings:
    return BraidSettings(
        projects_root=projects_root,
        workspaces_root=projects_root / ".workspaces",
        chroma_persist_path=tmp_path / "chroma",
        git_timeout=30.0,
    )


@pytest.fixture
def services(settings: BraidSettings) -> SpaceServices:
    return build_services(settings)


@pytest.fixture
def project(projects_root: Path, repo_dir: Path) -> Path:
    return write_project(projects_root, repo_dir)
