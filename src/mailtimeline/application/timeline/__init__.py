"""Business timeline aggregation."""

from mailtimeline.application.timeline.aggregator import ThreadOptions, TimelineAggregator, TimelineFilters

__all__ = ["ThreadOptions", "TimelineAggregator", "TimelineFilters"]
