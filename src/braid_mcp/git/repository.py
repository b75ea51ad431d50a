"""Repository-level git operations used by the space subsystem."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping

from .runner import GitExecutionResult, GitRunner


class GitRepository:
    """A working tree (main checkout or linked worktree) bound to a runner."""

    def __init__(self, runner: GitRunner, path: Path) -> None:
        self._runner = runner
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def runner(self) -> GitRunner:
        return self._runner

    async def git(
        self,
        *args: str,
        check: bool = True,
        env: Mapping[str, str] | None = None,
    ) -> GitExecutionResult:
        return await self._runner.run(*args, cwd=self._path, check=check, env=env)

    async def is_work_tree(self) -> bool:
        return await self._runner.is_work_tree(self._path)

    async def head_sha(self) -> str:
        return (await self.git("rev-parse", "HEAD")).output

    async def current_branch(self) -> str | None:
        """Return the checked-out branch, or ``None`` for a detached HEAD."""

        result = await self.git("symbolic-ref", "--quiet", "--short", "HEAD", check=False)
        if result.ok and result.output:
            return result.output
        return None

    async def resolve_commit(self, rev: str) -> str | None:
        result = await self.git("rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}", check=False)
        return result.output if result.ok and result.output else None

    async def branch_exists(self, branch: str) -> bool:
        return await self.resolve_commit(f"refs/heads/{branch}") is not None

    async def rev_list(self, start: str | None, end: str) -> list[str]:
        """Commits reachable from ``end`` but not ``start``, oldest first."""

        revisions = f"{start}..{end}" if start else end
        result = await self.git("rev-list", "--reverse", revisions)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def count_commits(self, start: str, end: str) -> int:
        result = await self.git("rev-list", "--count", f"{start}..{end}")
        return int(result.output or 0)

    async def worktree_add(self, path: Path, branch: str, *, base: str | None = None) -> None:
        """Add a linked worktree; creates ``branch`` from ``base`` when given."""

        if base is not None:
            await self.git("worktree", "add", "-b", branch, str(path), base)
        else:
            await self.git("worktree", "add", str(path), branch)

    async def worktree_prune(self) -> None:
        await self.git("worktree", "prune")

    async def fetch_from_path(self, source: Path, namespace: str) -> None:
        """Fetch every branch and HEAD of the repository at ``source`` into ``namespace``.

        The path is used directly as the fetch URL so no remote is configured.
        """

        await self.git(
            "fetch",
            "--no-tags",
            "--quiet",
            str(source),
            f"+refs/heads/*:{namespace}/heads/*",
            f"+HEAD:{namespace}/HEAD",
        )

    async def update_ref(self, ref: str, sha: str) -> None:
        await self.git("update-ref", ref, sha)

    async def delete_refs(self, prefix: str) -> None:
        result = await self.git("for-each-ref", "--format=%(refname)", prefix)
        for ref in result.stdout.splitlines():
            if ref.strip():
                await self.git("update-ref", "-d", ref.strip())

    async def merge(self, rev: str, *, message: str, env: Mapping[str, str] | None = None) -> GitExecutionResult:
        return await self.git("merge", "--no-edit", "-m", message, rev, check=False, env=env)

    async def merge_in_progress(self) -> bool:
        result = await self.git("rev-parse", "--verify", "--quiet", "MERGE_HEAD", check=False)
        return result.ok

    async def merge_abort(self) -> None:
        await self.git("merge", "--abort")

    async def reset_hard(self, sha: str) -> None:
        await self.git("reset", "--hard", "--quiet", sha)

    async def status_porcelain(self) -> str:
        return (await self.git("status", "--porcelain", "--untracked-files=all")).stdout

    async def diff(self, *, cached: bool = False) -> str:
        args = ["diff", "--no-color"]
        if cached:
            args.append("--cached")
        return (await self.git(*args)).stdout.rstrip()

    async def numstat(self, *, cached: bool = False) -> str:
        args = ["diff", "--numstat"]
        if cached:
            args.append("--cached")
        return (await self.git(*args)).stdout

    async def add_all(self) -> None:
        await self.git("add", "-A")

    async def commit(self, message: str) -> GitExecutionResult:
        return await self.git("commit", "-m", message, check=False)

    async def short_head(self) -> str:
        return (await self.git("rev-parse", "--short", "HEAD")).output

    async def remote_url(self, name: str = "origin") -> str | None:
        result = await self.git("remote", "get-url", name, check=False)
        return result.output if result.ok and result.output else None


__all__ = ["GitRepository"]
