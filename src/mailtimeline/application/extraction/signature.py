"""Signature and disclaimer detection over the new text of a reply."""

from __future__ import annotations

import re
from typing import Optional, Sequence

from mailtimeline.application.extraction.patterns import (
    CLOSING_SALUTATIONS,
    DISCLAIMER_MARKERS,
    EMAIL_RE,
    NAME_LINE_RE,
    PHONE_RE,
    SIGNATURE_DELIMITERS,
    STRONG_DISCLAIMER_MARKERS,
    URL_RE,
    first_line_match,
    matching_names,
)
from mailtimeline.domain.entities.content import Segment, SegmentKind

SIGNATURE_WINDOW_LINES = 12
IMPLICIT_MAX_LINES = 6
IMPLICIT_MAX_LINE_LENGTH = 72
MIN_SIGNALS = 2

_PARAGRAPH_BREAK_RE = re.compile(r"\n[ \t]*\n\s*")


def _line_offsets(text: str) -> list[tuple[int, str]]:
    out = []
    pos = 0
    for line in text.splitlines(keepends=True):
        out.append((pos, line))
        pos += len(line)
    return out


def _paragraphs(text: str) -> list[tuple[int, str]]:
    out = []
    start = 0
    for m in _PARAGRAPH_BREAK_RE.finditer(text):
        out.append((start, text[start:m.start()]))
        start = m.end()
    if start < len(text):
        out.append((start, text[start:]))
    return out


def is_legal_boilerplate(paragraph: str) -> bool:
    names = matching_names(DISCLAIMER_MARKERS, paragraph)
    return bool(names & STRONG_DISCLAIMER_MARKERS) or len(names) >= 2


def find_disclaimer(text: str) -> Optional[int]:
    """Offset of the trailing run of legal-boilerplate paragraphs, never the first paragraph."""
    paragraphs = _paragraphs(text)
    cut = None
    for i in range(len(paragraphs) - 1, 0, -1):
        offset, paragraph = paragraphs[i]
        if not is_legal_boilerplate(paragraph):
            break
        cut = offset
    return cut


def signature_signals(lines: Sequence[str]) -> int:
    """Count of name / phone / email / URL signals in a candidate block."""
    if not lines:
        return 0
    joined = "\n".join(lines)
    return sum((
        bool(NAME_LINE_RE.match(lines[0])),
        bool(PHONE_RE.search(joined)),
        bool(EMAIL_RE.search(joined)),
        bool(URL_RE.search(joined)),
    ))


def looks_like_signature(lines: Sequence[str]) -> bool:
    lines = [line.strip() for line in lines if line.strip()]
    if not lines or len(lines) > IMPLICIT_MAX_LINES:
        return False
    if any(len(line) > IMPLICIT_MAX_LINE_LENGTH for line in lines):
        return False
    return bool(NAME_LINE_RE.match(lines[0])) and signature_signals(lines) >= MIN_SIGNALS


def _explicit_signature(lines: list[tuple[int, str]]) -> Optional[int]:
    window_start = max(0, len(lines) - SIGNATURE_WINDOW_LINES)
    for i in range(window_start, len(lines)):
        offset, line = lines[i]
        stripped = line.rstrip("\r\n")
        if first_line_match(SIGNATURE_DELIMITERS, stripped):
            pass
        elif first_line_match(CLOSING_SALUTATIONS, stripped):
            # A salutation is only a sign-off when a short name block follows
            after = [l.strip() for _, l in lines[i + 1:] if l.strip()]
            if len(after) > IMPLICIT_MAX_LINES or any(len(l) > IMPLICIT_MAX_LINE_LENGTH for l in after):
                continue
        else:
            continue
        if any(line.strip() for _, line in lines[:i]):
            return offset
    return None


def _implicit_signature(lines: list[tuple[int, str]]) -> Optional[int]:
    # Trailing run of short, non-blank lines
    run_start = len(lines)
    while run_start > 0:
        line = lines[run_start - 1][1].strip()
        if not line or len(line) > IMPLICIT_MAX_LINE_LENGTH or len(lines) - run_start >= IMPLICIT_MAX_LINES:
            break
        run_start -= 1

    for start in range(run_start, len(lines) - 1):
        candidate = [line for _, line in lines[start:]]
        if not any(line.strip() for _, line in lines[:start]):
            continue
        if looks_like_signature(candidate):
            return lines[start][0]
    return None


def find_signature(text: str) -> Optional[int]:
    """Offset where the signature block starts, or None."""
    lines = _line_offsets(text)
    while lines and not lines[-1][1].strip():
        lines.pop()
    if not lines:
        return None
    start = _explicit_signature(lines)
    if start is None:
        start = _implicit_signature(lines)
    return start


def _last_new(segments: list[Segment]) -> Optional[int]:
    for i in range(len(segments) - 1, -1, -1):
        if segments[i].kind == SegmentKind.NEW and not segments[i].is_blank:
            return i
    return None


def _replace(segments: list[Segment], index: int, pieces: list[Segment]) -> list[Segment]:
    return segments[:index] + [p for p in pieces if p.text] + segments[index + 1:]


def split_disclaimer(segments: list[Segment]) -> list[Segment]:
    """Move trailing legal boilerplate of the last new segment into its own segment."""
    last = _last_new(segments)
    if last is None:
        return list(segments)
    text = segments[last].text
    cut = find_disclaimer(text)
    if cut is None:
        return list(segments)
    return _replace(segments, last, [
        Segment(SegmentKind.NEW, text[:cut]),
        Segment(SegmentKind.DISCLAIMER, text[cut:]),
    ])


def split_signature(segments: list[Segment]) -> list[Segment]:
    """Carve the disclaimer, then the signature, out of the last new segment."""
    segments = split_disclaimer(segments)
    last = _last_new(segments)
    if last is None:
        return segments
    text = segments[last].text
    start = find_signature(text)
    if start is None:
        return segments
    return _replace(segments, last, [
        Segment(SegmentKind.NEW, text[:start]),
        Segment(SegmentKind.SIGNATURE, text[start:]),
    ])
