"""Data models for persisted integration state."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

RunMode = Literal["worktree", "clone"]
DeliveryStatus = Literal["pending", "integrated", "conflict", "skipped"]

RESOLVED_STATUSES = frozenset({"integrated", "skipped"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def space_branch_name(project_id: str) -> str:
    return f"space/{project_id}"


class DeliveryRecord(BaseModel):
    """One worker's reported unit of work: the commit range ``start_sha..end_sha``."""

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    worker_slug: str
    run_mode: RunMode = "worktree"
    source_path: Path
    start_sha: str | None = None
    end_sha: str | None = None
    shas: list[str] = Field(default_factory=list)
    status: DeliveryStatus = "pending"
    enqueued_at: datetime = Field(default_factory=utcnow)
    resolved_at: datetime | None = None
    error: str | None = None
    merge_sha: str | None = None
    resolution: str | None = None

    @field_validator("worker_slug")
    @classmethod
    def _normalize_slug(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Worker slug must not be empty")
        return normalized

    @field_validator("start_sha", "end_sha", mode="before")
    @classmethod
    def _blank_sha(cls, value: Any):
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @property
    def is_resolved(self) -> bool:
        return self.status in RESOLVED_STATUSES

    def mark(self, status: DeliveryStatus, *, error: str | None = None) -> None:
        self.status = status
        self.error = error
        self.resolved_at = utcnow() if status in RESOLVED_STATUSES else None


class ProjectSpace(BaseModel):
    """Descriptor of a project's integration space together with its queue."""

    version: Literal[1] = 1
    project_id: str
    branch: str
    base_branch: str
    worktree_path: Path
    integration_blocked: bool = False
    queue: list[DeliveryRecord] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("queue", mode="before")
    @classmethod
    def _drop_malformed_entries(cls, value: Any):
        if value is None:
            return []
        if not isinstance(value, list):
            raise TypeError("queue must be a list of delivery records")
        entries: list[Any] = []
        for item in value:
            if isinstance(item, DeliveryRecord):
                entries.append(item)
                continue
            try:
                entries.append(DeliveryRecord.model_validate(item))
            except ValidationError as exc:
                logger.warning("Dropping malformed queue entry", extra={"error": str(exc)})
        return entries

    def find(self, delivery_id: str) -> DeliveryRecord | None:
        for entry in self.queue:
            if entry.id == delivery_id:
                return entry
        return None

    def pending(self) -> list[DeliveryRecord]:
        return [entry for entry in self.queue if entry.status == "pending"]

    def descriptor(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "branch": self.branch,
            "base_branch": self.base_branch,
            "worktree_path": str(self.worktree_path),
        }


__all__ = [
    "DeliveryRecord",
    "DeliveryStatus",
    "ProjectSpace",
    "RESOLVED_STATUSES",
    "RunMode",
    "space_branch_name",
    "utcnow",
]
