from __future__ import annotations

from typing import Iterable

from mailtimeline.domain.entities.content import ReplyStyle, Segment, SegmentKind

INLINE_MIN_ALTERNATIONS = 3
SUBSTANTIAL_WORDS = 3


def _blocks(segments: Iterable[Segment]) -> list[tuple[SegmentKind, str]]:
    """Non-blank new/quoted blocks with adjacent same-kind blocks merged."""
    blocks: list[list] = []
    for seg in segments:
        if seg.is_blank or seg.kind not in (SegmentKind.NEW, SegmentKind.QUOTED):
            continue
        if blocks and blocks[-1][0] == seg.kind:
            blocks[-1][1] += seg.text
        else:
            blocks.append([seg.kind, seg.text])
    return [(kind, text) for kind, text in blocks]


def classify_reply_style(segments: Iterable[Segment]) -> ReplyStyle:
    blocks = _blocks(segments)
    if len(blocks) < 2:
        return ReplyStyle.UNKNOWN
    if len(blocks) - 1 >= INLINE_MIN_ALTERNATIONS:
        return ReplyStyle.INLINE
    first_kind, _ = blocks[0]
    second_kind, second_text = blocks[1]
    if first_kind == SegmentKind.QUOTED and second_kind == SegmentKind.NEW:
        if len(second_text.split()) >= SUBSTANTIAL_WORDS:
            return ReplyStyle.BOTTOM
    if blocks[-1][0] == SegmentKind.QUOTED and first_kind == SegmentKind.NEW:
        return ReplyStyle.TOP
    return ReplyStyle.UNKNOWN
