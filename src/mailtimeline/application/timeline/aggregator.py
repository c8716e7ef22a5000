"""Business timeline: merged, filtered, thread-collapsed and paginated."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterable, Mapping, Optional

from loguru import logger

from mailtimeline.application.extraction.extractor import ContentExtractor
from mailtimeline.application.ports.message_repository import BusinessEventSource, MessageRepository
from mailtimeline.domain.entities.content import ExtractedContent
from mailtimeline.domain.entities.records import MessageRecord
from mailtimeline.domain.entities.timeline import (
    KIND_GROUPS,
    EventKind,
    ThreadEntry,
    ThreadView,
    TimelineEvent,
    TimelinePage,
)
from mailtimeline.domain.errors import NotFoundError

SUMMARY_CHARS = 280


@dataclass(frozen=True)
class TimelineFilters:
    groups: frozenset[str] = field(default_factory=frozenset)  # empty means every group
    collapse_threads: bool = True

    def kinds(self) -> Optional[frozenset[EventKind]]:
        if not self.groups:
            return None
        unknown = set(self.groups) - set(KIND_GROUPS)
        if unknown:
            raise ValueError(f"Unknown event group(s): {', '.join(sorted(unknown))}")
        return frozenset().union(*(KIND_GROUPS[g] for g in self.groups))


@dataclass(frozen=True)
class ThreadOptions:
    include_quoted: bool = False
    include_signatures: bool = False


def message_event(record: MessageRecord) -> TimelineEvent:
    msg = record.message
    return TimelineEvent(
        event_id=record.id,
        kind=EventKind.EMAIL,
        occurred_at=msg.sent_at,
        business_id=record.association.business_id,
        contact_id=record.association.contact_id,
        title=msg.subject or "(no subject)",
        summary=record.extraction.new_text[:SUMMARY_CHARS],
        thread_id=record.thread_id,
        metadata={
            "account_id": msg.account_id,
            "external_id": msg.external_id,
            "direction": msg.direction.value,
            "from": str(msg.from_address) if msg.from_address else "",
            "to": [str(a) for a in msg.to],
            "is_read": record.is_read,
            "is_starred": record.is_starred,
            "has_attachments": bool(msg.attachments),
            "association_confidence": record.association.confidence.value,
            "needs_review": record.association.needs_review,
            "thread_confidence": record.thread.confidence.value,
            "reply_style": record.extraction.reply_style.value,
        },
    )


def order_events(events: Iterable[TimelineEvent]) -> list[TimelineEvent]:
    """Newest first; equal timestamps ordered by event id."""
    by_id = sorted(events, key=lambda e: e.event_id)
    return sorted(by_id, key=lambda e: e.occurred_at, reverse=True)


def collapse_threads(
    events: list[TimelineEvent], sizes: Optional[Mapping[str, int]] = None
) -> list[TimelineEvent]:
    """Keep the newest email per thread, annotated with the thread size. Input must be ordered.

    ``sizes`` gives the full size of each thread; without it the size is
    the number of events in the input that share the thread.
    """
    counts: dict[str, int] = {}
    for e in events:
        if e.kind == EventKind.EMAIL and e.thread_id:
            counts[e.thread_id] = counts.get(e.thread_id, 0) + 1
    if sizes:
        counts.update({tid: max(n, counts.get(tid, 0)) for tid, n in sizes.items()})

    seen: set[str] = set()
    out: list[TimelineEvent] = []
    for e in events:
        if e.kind != EventKind.EMAIL or not e.thread_id:
            out.append(e)
            continue
        if e.thread_id in seen:
            continue
        seen.add(e.thread_id)
        out.append(replace(e, thread_count=counts[e.thread_id], is_representative=True))
    return out


class TimelineAggregator:
    def __init__(
        self,
        repository: MessageRepository,
        events: BusinessEventSource,
        extractor: Optional[ContentExtractor] = None,
        default_page_size: int = 25,
        max_page_size: int = 100,
    ) -> None:
        self.repository = repository
        self.events = events
        self.extractor = extractor or ContentExtractor()
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    def get_timeline(
        self,
        business_id: str,
        page: int = 1,
        page_size: Optional[int] = None,
        filters: Optional[TimelineFilters] = None,
    ) -> TimelinePage:
        """One page of the business timeline.

        Args:
            business_id: Business whose history is requested
            page: 1-based page number
            page_size: Events per page, capped at max_page_size
            filters: Kind groups to keep and whether to collapse threads

        Returns:
            TimelinePage with the total after filtering and collapsing
        """
        merged = [message_event(r) for r in self.repository.list_messages_for_business(business_id) if r.visible]
        merged.extend(self.events.list_events(business_id))
        logger.debug(f"Timeline {business_id}: {len(merged)} events before filtering")
        return self._paginate(merged, page, page_size, filters)

    def get_contact_timeline(
        self,
        contact_id: str,
        page: int = 1,
        page_size: Optional[int] = None,
        filters: Optional[TimelineFilters] = None,
    ) -> TimelinePage:
        """One page of a single contact's history within their business.

        Raises:
            NotFoundError: unknown contact
        """
        contact = self.repository.get_contact(contact_id)
        if contact is None:
            raise NotFoundError(f"Contact {contact_id} not found", resource="contact")

        merged = [
            message_event(r)
            for r in self.repository.list_messages_for_business(contact.business_id)
            if r.visible and r.association.contact_id == contact_id
        ]
        merged.extend(e for e in self.events.list_events(contact.business_id) if e.contact_id == contact_id)
        logger.debug(f"Contact timeline {contact_id}: {len(merged)} events before filtering")
        return self._paginate(merged, page, page_size, filters)

    def _paginate(
        self,
        merged: list[TimelineEvent],
        page: int,
        page_size: Optional[int],
        filters: Optional[TimelineFilters],
    ) -> TimelinePage:
        filters = filters or TimelineFilters()
        page = max(1, page)
        size = min(max(1, page_size or self.default_page_size), self.max_page_size)
        kinds = filters.kinds()

        selected = order_events(e for e in merged if kinds is None or e.kind in kinds)
        if filters.collapse_threads:
            selected = collapse_threads(selected, self._thread_sizes(selected))

        start = (page - 1) * size
        return TimelinePage(events=selected[start: start + size], page=page, page_size=size, total=len(selected))

    def _thread_sizes(self, events: list[TimelineEvent]) -> dict[str, int]:
        # Messages that belong to no business, or to another one, still count
        thread_ids = {e.thread_id for e in events if e.kind == EventKind.EMAIL and e.thread_id}
        return {tid: sum(1 for r in self.repository.list_thread(tid) if r.visible) for tid in thread_ids}

    def get_thread(self, thread_id: str, options: Optional[ThreadOptions] = None) -> ThreadView:
        options = options or ThreadOptions()
        records = [r for r in self.repository.list_thread(thread_id) if r.visible]
        if not records:
            raise NotFoundError(f"Thread {thread_id} not found", resource="thread")

        records.sort(key=lambda r: (r.sent_at, r.id))
        entries = [
            ThreadEntry(record=r, content=self.extractor.extract(r.message.text_body, r.message.markup_body))
            for r in records
        ]
        body = "\n\n".join(self._render_entry(e, options) for e in entries)
        return ThreadView(thread_id=thread_id, entries=entries, body=body)

    def _render_entry(self, entry: ThreadEntry, options: ThreadOptions) -> str:
        msg = entry.record.message
        sender = str(msg.from_address) if msg.from_address else "unknown sender"
        parts = [f"On {msg.sent_at:%Y-%m-%d %H:%M}, {sender} wrote:", _body_text(entry.content, options)]
        return "\n".join(p for p in parts if p)


def _body_text(content: ExtractedContent, options: ThreadOptions) -> str:
    parts = [content.new_text]
    if options.include_signatures and content.signature:
        parts.append(content.signature)
    if options.include_quoted and content.quoted_text:
        parts.append(content.quoted_text)
    return "\n\n".join(p for p in parts if p)
