from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ReplyStyle(str, Enum):
    TOP = "top"
    BOTTOM = "bottom"
    INLINE = "inline"
    UNKNOWN = "unknown"


class SegmentKind(str, Enum):
    NEW = "new"
    QUOTED = "quoted"
    SIGNATURE = "signature"
    DISCLAIMER = "disclaimer"


@dataclass(frozen=True)
class Segment:
    kind: SegmentKind
    text: str

    @property
    def is_blank(self) -> bool:
        return not self.text.strip()


def join_kind(segments: tuple[Segment, ...], kind: SegmentKind) -> str:
    return "".join(s.text for s in segments if s.kind == kind).strip()


@dataclass(frozen=True)
class ExtractedContent:
    new_text: str
    quoted_text: str
    signature: str
    disclaimer: str
    reply_style: ReplyStyle
    new_markup: Optional[str] = None
    quoted_markup: Optional[str] = None
    # Ordered slices of the plain-text body; concatenated they give the body back
    segments: tuple[Segment, ...] = ()

    @classmethod
    def from_segments(
        cls,
        segments: tuple[Segment, ...],
        reply_style: ReplyStyle,
        new_markup: Optional[str] = None,
        quoted_markup: Optional[str] = None,
    ) -> "ExtractedContent":
        return cls(
            new_text=join_kind(segments, SegmentKind.NEW),
            quoted_text=join_kind(segments, SegmentKind.QUOTED),
            signature=join_kind(segments, SegmentKind.SIGNATURE),
            disclaimer=join_kind(segments, SegmentKind.DISCLAIMER),
            reply_style=reply_style,
            new_markup=new_markup,
            quoted_markup=quoted_markup,
            segments=segments,
        )

    def reconstruct(self) -> str:
        return "".join(s.text for s in self.segments)

    def without_signature(self) -> str:
        """Body content with signature and disclaimer slices dropped."""
        keep = (SegmentKind.NEW, SegmentKind.QUOTED)
        return "".join(s.text for s in self.segments if s.kind in keep)
