"""Chroma-backed integration journal."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from .models import DeliveryRecord

DEFAULT_COLLECTION = "braid_integrations"


class ChromaUnavailableError(RuntimeError):
    """The journal backend could not be opened (chromadb missing or store unreadable)."""


class JournalCollection(Protocol):
    """The two collection calls the journal relies on."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class JournalClient(Protocol):
    def get_or_create_collection(self, name: str) -> JournalCollection:
        ...


@dataclass(slots=True)
class JournalEvent:
    """One journaled queue or integration event."""

    id: str
    project_id: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


def _where_clause(filters: dict[str, Any] | None) -> dict[str, Any] | None:
    # Chroma accepts a single equality per mapping; several must be combined.
    if not filters:
        return None
    if len(filters) == 1:
        return dict(filters)
    return {"$and": [{key: value} for key, value in filters.items()]}


class IntegrationJournal:
    """Append-only log of deliveries, conflicts, resumes and recoveries.

    Every event carries ``project_id``, ``event_type``, an ISO ``timestamp`` and a
    per-project ``sequence`` in its metadata; the body is stored as the document.
    """

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = DEFAULT_COLLECTION,
        client_factory: Callable[[], JournalClient] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._open_persistent_client
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._collection: JournalCollection | None = None
        self._sequences: dict[str, int] = {}

    @property
    def collection_name(self) -> str:
        return self._collection_name

    def _open_persistent_client(self) -> JournalClient:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(
                "chromadb package is not installed; install braid-mcp with the journal extra"
            ) from exc

        self._path.mkdir(parents=True, exist_ok=True)
        return chromadb.PersistentClient(path=str(self._path))

    def _collection_handle(self) -> JournalCollection:
        if self._collection is None:
            self._collection = self._client_factory().get_or_create_collection(self._collection_name)
        return self._collection

    def _next_sequence(self, project_id: str) -> int:
        current = self._sequences.get(project_id)
        if current is None:
            # Continue numbering across restarts.
            existing = self._collection_handle().get(where={"project_id": project_id})
            current = len(existing.get("ids", []))
        self._sequences[project_id] = current + 1
        return current + 1

    def _parse_timestamp(self, raw: Any) -> datetime:
        if isinstance(raw, str):
            try:
                return datetime.fromisoformat(raw)
            except ValueError:
                pass
        return self._clock()

    def _events_from(self, result: dict[str, list[Any]]) -> list[JournalEvent]:
        rows = zip(result.get("ids", []), result.get("documents", []), result.get("metadatas", []))
        events = [
            JournalEvent(
                id=event_id,
                project_id=str(metadata.get("project_id", "")),
                event_type=str(metadata.get("event_type", "")),
                document=document or "",
                metadata=dict(metadata),
                timestamp=self._parse_timestamp(metadata.get("timestamp")),
            )
            for event_id, document, metadata in rows
        ]
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events

    def ping(self) -> bool:
        """Open the collection so a broken store fails at startup instead of mid-queue."""

        self._collection_handle()
        return True

    def record_event(
        self,
        *,
        project_id: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> JournalEvent:
        collection = self._collection_handle()
        timestamp = self._clock()
        event_metadata: dict[str, Any] = {
            key: value for key, value in (metadata or {}).items() if value is not None
        }
        event_metadata.update(
            {
                "project_id": project_id,
                "event_type": event_type,
                "timestamp": timestamp.isoformat(),
                "sequence": self._next_sequence(project_id),
            }
        )
        document = body if isinstance(body, str) else json.dumps(body, default=str, sort_keys=True)
        event_id = f"{project_id}:{uuid.uuid4().hex}"

        collection.add(documents=[document], metadatas=[event_metadata], ids=[event_id])
        return JournalEvent(
            id=event_id,
            project_id=project_id,
            event_type=event_type,
            document=document,
            metadata=event_metadata,
            timestamp=timestamp,
        )

    def record_delivery(
        self,
        project_id: str,
        record: DeliveryRecord,
        event_type: str,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> JournalEvent:
        """Journal a snapshot of ``record`` under ``event_type``."""

        snapshot = {
            "delivery_id": record.id,
            "worker_slug": record.worker_slug,
            "run_mode": record.run_mode,
            "status": record.status,
            "end_sha": record.end_sha,
            "merge_sha": record.merge_sha,
            **(metadata or {}),
        }
        return self.record_event(
            project_id=project_id,
            event_type=event_type,
            body=record.model_dump(mode="json"),
            metadata=snapshot,
        )

    def fetch_project_events(self, project_id: str, *, limit: int | None = None) -> list[JournalEvent]:
        result = self._collection_handle().get(where={"project_id": project_id}, limit=limit)
        return self._events_from(result)

    def delivery_history(self, project_id: str, delivery_id: str) -> list[JournalEvent]:
        result = self._collection_handle().get(
            where=_where_clause({"project_id": project_id, "delivery_id": delivery_id})
        )
        return self._events_from(result)

    def search_events(
        self,
        query: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[JournalEvent]:
        """Events matching ``filters`` exactly, then ``query`` as a case-insensitive substring."""

        result = self._collection_handle().get(where=_where_clause(filters), limit=None if query else limit)
        events = self._events_from(result)
        if query:
            needle = query.lower()
            events = [
                event
                for event in events
                if needle in event.document.lower()
                or any(needle in str(value).lower() for value in event.metadata.values())
            ]
        return events[:limit] if limit else events


__all__ = ["ChromaUnavailableError", "DEFAULT_COLLECTION", "IntegrationJournal", "JournalEvent"]
