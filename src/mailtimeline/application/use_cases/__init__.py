"""Application use cases."""

from mailtimeline.application.use_cases.commands import MessageCommands
from mailtimeline.application.use_cases.ingest_email import IngestMessageUseCase, PreparedMessage
from mailtimeline.application.use_cases.queries import TimelineQueries
from mailtimeline.application.use_cases.sync_account import (
    SyncAccountUseCase,
    SyncError,
    SyncOptions,
    SyncResult,
)

__all__ = [
    "IngestMessageUseCase",
    "MessageCommands",
    "PreparedMessage",
    "SyncAccountUseCase",
    "SyncError",
    "SyncOptions",
    "SyncResult",
    "TimelineQueries",
]
