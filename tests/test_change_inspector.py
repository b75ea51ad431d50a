from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from braid_mcp.projects import RepoNotConfiguredError
from braid_mcp.spaces import SpaceServices
from braid_mcp.spaces.changes import github_compare_url, parse_numstat, parse_status_porcelain

from conftest import run_git, write_project


def test_parse_status_porcelain() -> None:
    files = parse_status_porcelain(" M app.txt\nA  new.txt\n D gone.txt\nR  old.txt -> moved.txt\n?? extra.txt\n")

    assert [(item.path, item.status, item.staged) for item in files] == [
        ("app.txt", "modified", False),
        ("new.txt", "added", True),
        ("gone.txt", "deleted", False),
        ("moved.txt", "renamed", True),
        ("extra.txt", "added", False),
    ]


def test_parse_numstat_counts_binary_as_zero() -> None:
    files, insertions, deletions = parse_numstat("3\t1\tapp.txt\n-\t-\tlogo.png\n")

    assert files == {"app.txt", "logo.png"}
    assert (insertions, deletions) == (3, 1)


@pytest.mark.parametrize(
    "remote",
    ["git@github.com:acme/shop.git", "https://github.com/acme/shop.git", "https://github.com/acme/shop"],
)
def test_github_compare_url(remote: str) -> None:
    assert (
        github_compare_url(remote, "main", "space/PRO-1")
        == "https://github.com/acme/shop/compare/main...space%2FPRO-1?expand=1"
    )


def test_compare_url_for_other_hosts_is_none() -> None:
    assert github_compare_url("https://gitlab.com/acme/shop.git", "main", "feature") is None


def test_changes_use_repo_without_space(services: SpaceServices, project: Path, repo_dir: Path) -> None:
    (repo_dir / "app.txt").write_text("base\nmore\n", encoding="utf-8")
    (repo_dir / "extra.txt").write_text("new\n", encoding="utf-8")

    changes = asyncio.run(services.changes.get_project_changes("PRO-1"))
    payload = changes.to_dict()

    assert payload["source"] == {"type": "repo", "path": str(repo_dir)}
    assert payload["branch"] == "main"
    assert payload["base_branch"] == "main"
    assert {item["path"]: item["status"] for item in payload["files"]} == {
        "app.txt": "modified",
        "extra.txt": "added",
    }
    assert payload["stats"] == {"files_changed": 1, "insertions": 1, "deletions": 0}
    assert "+more" in payload["diff"]
    assert payload["ahead_of_base"] == 0


def test_changes_use_space_when_present(services: SpaceServices, project: Path, repo_dir: Path) -> None:
    async def scenario():
        space = await services.manager.ensure_project_space("PRO-1", "main")
        (space.worktree_path / "app.txt").write_text("space edit\n", encoding="utf-8")
        run_git(space.worktree_path, "add", "app.txt")
        return space, await services.changes.get_project_changes("PRO-1")

    space, changes = asyncio.run(scenario())

    assert changes.source_type == "space"
    assert changes.source_path == str(space.worktree_path)
    assert changes.branch == "space/PRO-1"
    assert [(item.path, item.staged) for item in changes.files] == [("app.txt", True)]
    assert changes.stats.insertions == 1
    assert changes.stats.deletions == 1


def test_commit_then_no_changes(services: SpaceServices, project: Path, repo_dir: Path) -> None:
    async def scenario():
        space = await services.manager.ensure_project_space("PRO-1", "main")
        (space.worktree_path / "feature.txt").write_text("feature\n", encoding="utf-8")
        committed = await services.changes.commit_project_changes("PRO-1", "  Add feature  ")
        after = await services.changes.get_project_changes("PRO-1")
        again = await services.changes.commit_project_changes("PRO-1", "Add feature")
        return space, committed, after, again

    space, committed, after, again = asyncio.run(scenario())

    assert committed["ok"] is True
    assert committed["message"] == "Add feature"
    assert committed["sha"] == run_git(space.worktree_path, "rev-parse", "--short", "HEAD")
    assert after.files == []
    assert after.stats.files_changed == 0
    assert after.ahead_of_base == 1
    assert again == {"ok": False, "error": "Nothing to commit"}
    # The shared checkout is untouched by space commits.
    assert not (repo_dir / "feature.txt").exists()


def test_commit_requires_message(services: SpaceServices, project: Path) -> None:
    result = asyncio.run(services.changes.commit_project_changes("PRO-1", "   "))
    assert result == {"ok": False, "error": "Commit message is required"}


def test_commit_reports_not_a_git_repository(services: SpaceServices, projects_root: Path, tmp_path: Path) -> None:
    plain = tmp_path / "plain"
    plain.mkdir()
    write_project(projects_root, plain)

    result = asyncio.run(services.changes.commit_project_changes("PRO-1", "msg"))
    assert result == {"ok": False, "error": "Not a git repository"}


def test_changes_require_repo(services: SpaceServices, projects_root: Path) -> None:
    write_project(projects_root, None)

    with pytest.raises(RepoNotConfiguredError):
        asyncio.run(services.changes.get_project_changes("PRO-1"))


def test_pull_request_target(services: SpaceServices, project: Path, repo_dir: Path) -> None:
    run_git(repo_dir, "remote", "add", "origin", "git@github.com:acme/shop.git")

    async def scenario():
        before = await services.changes.get_project_pull_request_target("PRO-1")
        await services.manager.ensure_project_space("PRO-1", "main")
        after = await services.changes.get_project_pull_request_target("PRO-1")
        return before, after

    before, after = asyncio.run(scenario())

    assert before.branch == "main"
    assert after.to_dict() == {
        "branch": "space/PRO-1",
        "base_branch": "main",
        "compare_url": "https://github.com/acme/shop/compare/main...space%2FPRO-1?expand=1",
    }


def test_pull_request_target_without_remote(services: SpaceServices, project: Path) -> None:
    target = asyncio.run(services.changes.get_project_pull_request_target("PRO-1"))
    assert target.compare_url is None
