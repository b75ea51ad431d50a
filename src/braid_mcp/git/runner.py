"""Async runner for the git CLI."""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping

from .utils import sanitize_environment


class GitError(RuntimeError):
    """Base class for git runner errors."""


class GitNotFoundError(GitError):
    """Raised when the git executable cannot be located."""


class NotAGitRepositoryError(GitError):
    """Raised when a path exists but is not inside a git work tree."""


class GitFailureError(GitError):
    """Raised when git exits non-zero for a reason other than a merge conflict."""

    def __init__(self, message: str, result: "GitExecutionResult | None" = None) -> None:
        super().__init__(message)
        self.result = result


class GitTimeoutError(GitFailureError):
    """Raised when a git subprocess exceeds the configured timeout."""


@dataclass(slots=True)
class GitExecutionResult:
    """Holds the outcome of a git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return self.stdout.strip()

    def describe(self) -> str:
        """Best human-readable explanation of a failed command."""

        detail = self.stderr.strip() or self.stdout.strip()
        command = " ".join(self.args[1:])
        if detail:
            return f"git {command} failed ({self.returncode}): {detail}"
        return f"git {command} failed with exit code {self.returncode}"


class GitRunner:
    """Execute git commands asynchronously with a per-call timeout."""

    def __init__(self, executable: Path | None = None, *, timeout: float = 120.0) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._timeout = timeout

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise GitNotFoundError(f"git executable not found at {candidate}")

        binary = shutil.which("git")
        if binary is None:
            raise GitNotFoundError("git executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    @property
    def timeout(self) -> float:
        return self._timeout

    async def version(self) -> GitExecutionResult:
        return await self._invoke("--version")

    async def run(
        self,
        *args: str,
        cwd: Path,
        check: bool = True,
        env: Mapping[str, str] | None = None,
    ) -> GitExecutionResult:
        """Run ``git <args>`` inside ``cwd``.

        With ``check`` a non-zero exit raises :class:`GitFailureError`; callers that
        need to inspect the failure (merges) pass ``check=False``.
        """

        result = await self._invoke("-C", str(cwd), *args, env=env)
        if check and not result.ok:
            raise GitFailureError(result.describe(), result)
        return result

    async def is_work_tree(self, path: Path) -> bool:
        if not Path(path).is_dir():
            return False
        result = await self.run("rev-parse", "--is-inside-work-tree", cwd=path, check=False)
        return result.ok and result.output == "true"

    async def _invoke(self, *args: str, env: Mapping[str, str] | None = None) -> GitExecutionResult:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(env),
        )
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise GitTimeoutError(
                f"git {' '.join(args)} timed out after {self._timeout:g}s"
            ) from exc
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return GitExecutionResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


class FakeGitRunner(GitRunner):
    """Test double that replays canned git responses."""

    def __init__(
        self,
        responses: Iterable[GitExecutionResult] | None = None,
        *,
        timeout: float = 120.0,
    ) -> None:  # type: ignore[override]
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, ...]] = []
        self._executable_path = Path("/tmp/fake-git")
        self._timeout = timeout

    async def _invoke(self, *args: str, env: Mapping[str, str] | None = None) -> GitExecutionResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        if self._responses:
            return self._responses.pop(0)
        return GitExecutionResult(args=tuple(args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations

