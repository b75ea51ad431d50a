"""Per-project mutual exclusion."""

from __future__ import annotations

import asyncio


class ProjectLocks:
    """Keyed registry of one ``asyncio.Lock`` per project.

    Projects are independent, so there is no cross-project lock. Locks are
    created lazily on the running event loop and never discarded.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def for_project(self, project_id: str) -> asyncio.Lock:
        lock = self._locks.get(project_id)
        if lock is None:
            lock = self._locks[project_id] = asyncio.Lock()
        return lock


__all__ = ["ProjectLocks"]
