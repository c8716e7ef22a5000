"""Collaborator interfaces consumed by the pipeline."""

from mailtimeline.application.ports.checkpoint_store import CheckpointStore
from mailtimeline.application.ports.email_source import (
    AccountDirectory,
    EmailCursor,
    EmailSource,
    FetchPage,
    RawMessage,
)
from mailtimeline.application.ports.message_repository import (
    BusinessEventSource,
    MessageRepository,
    UpsertOutcome,
)

__all__ = [
    "AccountDirectory",
    "BusinessEventSource",
    "CheckpointStore",
    "EmailCursor",
    "EmailSource",
    "FetchPage",
    "MessageRepository",
    "RawMessage",
    "UpsertOutcome",
]
