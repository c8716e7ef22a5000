"""Persistence adapters."""

from mailtimeline.infrastructure.stores.memory import (
    InMemoryAccountDirectory,
    InMemoryCheckpointStore,
    InMemoryEventSource,
    InMemoryMessageRepository,
)
from mailtimeline.infrastructure.stores.sqlite_repository import (
    SQLiteCheckpointStore,
    SQLiteDatabase,
    SQLiteMessageRepository,
)

__all__ = [
    "InMemoryAccountDirectory",
    "InMemoryCheckpointStore",
    "InMemoryEventSource",
    "InMemoryMessageRepository",
    "SQLiteCheckpointStore",
    "SQLiteDatabase",
    "SQLiteMessageRepository",
]
