from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from mailtimeline.domain.entities.content import ExtractedContent
from mailtimeline.domain.entities.records import MessageRecord


class EventKind(str, Enum):
    BUSINESS_CREATED = "business_created"
    CONTACT_CREATED = "contact_created"
    ACTIVITY = "activity"
    EMAIL = "email"
    SMS = "sms"
    OFFER_CREATED = "offer_created"
    OFFER_STATUS_CHANGED = "offer_status_changed"
    TICKET_CREATED = "ticket_created"
    TICKET_UPDATED = "ticket_updated"
    TICKET_COMMENT = "ticket_comment"
    STATUS_CHANGED = "status_changed"


# Filter groups exposed to callers
KIND_GROUPS: Mapping[str, frozenset[EventKind]] = {
    "email": frozenset({EventKind.EMAIL}),
    "activity": frozenset({EventKind.ACTIVITY}),
    "ticket": frozenset({EventKind.TICKET_CREATED, EventKind.TICKET_UPDATED, EventKind.TICKET_COMMENT}),
    "offer": frozenset({EventKind.OFFER_CREATED, EventKind.OFFER_STATUS_CHANGED}),
    "messaging": frozenset({EventKind.SMS}),
    "other": frozenset({EventKind.BUSINESS_CREATED, EventKind.CONTACT_CREATED, EventKind.STATUS_CHANGED}),
}


@dataclass(frozen=True)
class TimelineEvent:
    event_id: str
    kind: EventKind
    occurred_at: datetime
    business_id: Optional[str]
    title: str
    summary: str = ""
    contact_id: Optional[str] = None
    thread_id: Optional[str] = None
    thread_count: int = 1
    is_representative: bool = True
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TimelinePage:
    events: list[TimelineEvent]
    page: int
    page_size: int
    total: int

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total


@dataclass(frozen=True)
class ThreadEntry:
    record: MessageRecord
    content: ExtractedContent


@dataclass(frozen=True)
class ThreadView:
    thread_id: str
    entries: list[ThreadEntry]
    body: str
