"""Read side: business timelines and thread expansion."""

from __future__ import annotations

from typing import Iterable, Optional

from mailtimeline.application.timeline.aggregator import ThreadOptions, TimelineAggregator, TimelineFilters
from mailtimeline.domain.entities.timeline import ThreadView, TimelinePage


class TimelineQueries:
    def __init__(self, aggregator: TimelineAggregator) -> None:
        self.aggregator = aggregator

    def get_timeline(
        self,
        business_id: str,
        page: int = 1,
        page_size: Optional[int] = None,
        groups: Iterable[str] = (),
        collapse_threads: bool = True,
    ) -> TimelinePage:
        filters = _filters(groups, collapse_threads)
        return self.aggregator.get_timeline(business_id, page=page, page_size=page_size, filters=filters)

    def get_contact_timeline(
        self,
        contact_id: str,
        page: int = 1,
        page_size: Optional[int] = None,
        groups: Iterable[str] = (),
        collapse_threads: bool = True,
    ) -> TimelinePage:
        filters = _filters(groups, collapse_threads)
        return self.aggregator.get_contact_timeline(contact_id, page=page, page_size=page_size, filters=filters)

    def get_thread(self, thread_id: str, include_quoted: bool = False, include_signatures: bool = False) -> ThreadView:
        options = ThreadOptions(include_quoted=include_quoted, include_signatures=include_signatures)
        return self.aggregator.get_thread(thread_id, options)


def _filters(groups: Iterable[str], collapse_threads: bool) -> TimelineFilters:
    return TimelineFilters(groups=frozenset(g.strip().lower() for g in groups if g.strip()), collapse_threads=collapse_threads)
