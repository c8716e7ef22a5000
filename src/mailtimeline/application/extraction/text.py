"""Quote separation for plain-text bodies."""

from __future__ import annotations

from typing import Optional

from mailtimeline.application.extraction.patterns import (
    ATTRIBUTION_NAMES,
    HEADER_FIELD_RE,
    QUOTE_PREFIX_RE,
    QUOTE_SEPARATORS,
    PatternMatch,
    earliest_match,
    first_line_match,
)
from mailtimeline.domain.entities.content import Segment, SegmentKind

ATTRIBUTIONS = tuple(p for p in QUOTE_SEPARATORS if p.name in ATTRIBUTION_NAMES)

HEADER_SCAN_LINES = 10
MIN_HEADER_FIELDS = 3


def _is_blank(line: str) -> bool:
    return not line.strip()


def merge_segments(pieces: list[tuple[SegmentKind, str]]) -> list[Segment]:
    """Merge adjacent pieces of the same kind and drop empty ones."""
    merged: list[list] = []
    for kind, text in pieces:
        if not text:
            continue
        if merged and merged[-1][0] == kind:
            merged[-1][1] += text
        else:
            merged.append([kind, text])
    return [Segment(kind, text) for kind, text in merged]


def _is_prefix_style(rest: str) -> bool:
    for line in rest.splitlines():
        if not _is_blank(line):
            return bool(QUOTE_PREFIX_RE.match(line))
    return False


def _line_kind(line: str) -> Optional[SegmentKind]:
    if _is_blank(line):
        return None
    if QUOTE_PREFIX_RE.match(line) or first_line_match(ATTRIBUTIONS, line):
        return SegmentKind.QUOTED
    return SegmentKind.NEW


def _segment_lines(text: str, start_kind: SegmentKind) -> list[tuple[SegmentKind, str]]:
    """Label each line; blank lines stay with the line above them."""
    pieces: list[tuple[SegmentKind, str]] = []
    current = start_kind
    for line in text.splitlines(keepends=True):
        kind = _line_kind(line)
        if kind is not None:
            current = kind
        pieces.append((current, line))
    return pieces


def _split_tail(tail: str, match: PatternMatch) -> list[tuple[SegmentKind, str]]:
    if match.name == "quote_prefix":
        if _is_prefix_style(tail):
            return _segment_lines(tail, SegmentKind.QUOTED)
        return [(SegmentKind.QUOTED, tail)]

    length = match.end - match.start
    separator, rest = tail[:length], tail[length:]
    if _is_prefix_style(rest):
        return [(SegmentKind.QUOTED, separator)] + _segment_lines(rest, SegmentKind.QUOTED)
    return [(SegmentKind.QUOTED, tail)]


def _header_block_end(lines: list[str]) -> Optional[int]:
    """Index just past the last header-field line among the leading lines."""
    hits = [i for i, line in enumerate(lines[:HEADER_SCAN_LINES]) if HEADER_FIELD_RE.match(line)]
    if len(hits) < MIN_HEADER_FIELDS:
        return None
    return hits[-1] + 1


def _largest_gap_end(lines: list[str], start: int) -> Optional[int]:
    """End of the longest blank-line run at or after ``start``; the first one wins ties."""
    best_len, best_end = 0, None
    i = start
    while i < len(lines):
        if not _is_blank(lines[i]):
            i += 1
            continue
        j = i
        while j < len(lines) and _is_blank(lines[j]):
            j += 1
        if j < len(lines) and j - i > best_len:
            best_len, best_end = j - i, j
        i = j
    return best_end


def split_bottom_posted(text: str, opened_by_separator: bool = False) -> list[Segment]:
    """Quoted header block on top, the reply below the largest blank gap."""
    fallback = SegmentKind.QUOTED if opened_by_separator else SegmentKind.NEW
    lines = text.splitlines(keepends=True)
    block_end = _header_block_end(lines)
    if block_end is None:
        return merge_segments([(fallback, text)])

    split = _largest_gap_end(lines, block_end)
    if split is None:
        return merge_segments([(SegmentKind.QUOTED, text)])
    quoted = "".join(lines[:split])
    return merge_segments([(SegmentKind.QUOTED, quoted), (SegmentKind.NEW, text[len(quoted):])])


def split_quotes(text: str) -> list[Segment]:
    """Split a plain-text body into new and quoted segments.

    The segments concatenate back to ``text`` exactly.
    """
    if not text:
        return []
    match = earliest_match(QUOTE_SEPARATORS, text)
    if match is None:
        return split_bottom_posted(text)

    head, tail = text[: match.start], text[match.start:]
    if _is_blank(head):
        rest = tail[match.end - match.start:] if match.name != "quote_prefix" else tail
        if not _is_prefix_style(rest):
            return split_bottom_posted(text, opened_by_separator=True)

    return merge_segments([(SegmentKind.NEW, head)] + _split_tail(tail, match))
