"""Domain entities and errors."""

from mailtimeline.domain.entities.association import AssociationConfidence, AssociationResult
from mailtimeline.domain.entities.attachment import AttachmentRef, InlineImageRef
from mailtimeline.domain.entities.content import ExtractedContent, ReplyStyle, Segment, SegmentKind
from mailtimeline.domain.entities.email_message import (
    Direction,
    EmailAddress,
    HeaderBag,
    NormalizedMessage,
)
from mailtimeline.domain.entities.records import Business, Contact, MailAccount, MessageRecord
from mailtimeline.domain.entities.thread import ThreadAssignment, ThreadConfidence, ThreadMethod
from mailtimeline.domain.entities.timeline import (
    EventKind,
    ThreadView,
    TimelineEvent,
    TimelinePage,
)

__all__ = [
    "AssociationConfidence",
    "AssociationResult",
    "AttachmentRef",
    "InlineImageRef",
    "ExtractedContent",
    "ReplyStyle",
    "Segment",
    "SegmentKind",
    "Direction",
    "EmailAddress",
    "HeaderBag",
    "NormalizedMessage",
    "Business",
    "Contact",
    "MailAccount",
    "MessageRecord",
    "ThreadAssignment",
    "ThreadConfidence",
    "ThreadMethod",
    "EventKind",
    "ThreadView",
    "TimelineEvent",
    "TimelinePage",
]
