"""Storage abstractions for Braid MCP."""

from .chroma import DEFAULT_COLLECTION, ChromaUnavailableError, IntegrationJournal, JournalEvent
from .models import (
    DeliveryRecord,
    DeliveryStatus,
    ProjectSpace,
    RunMode,
    space_branch_name,
)
from .spaces import SPACE_FILENAME, SpaceNotFoundError, SpaceStore, SpaceStoreError

__all__ = [
    "ChromaUnavailableError",
    "DEFAULT_COLLECTION",
    "DeliveryRecord",
    "DeliveryStatus",
    "IntegrationJournal",
    "JournalEvent",
    "ProjectSpace",
    "RunMode",
    "SPACE_FILENAME",
    "SpaceNotFoundError",
    "SpaceStore",
    "SpaceStoreError",
    "space_branch_name",
]
