"""Quote and signature separation for markup bodies."""

from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass
from itertools import accumulate, islice
from typing import Iterator, Optional

from loguru import logger

from mailtimeline.application.extraction.markup_tree import MarkupTree, MarkupView
from mailtimeline.application.extraction.patterns import (
    HEADER_FIELD_RE,
    MARKUP_QUOTE_MARKERS,
    MARKUP_SIGNATURE_MARKERS,
    NodePattern,
    is_styling_discontinuity,
    match_node,
)
from mailtimeline.application.extraction.reply_style import classify_reply_style
from mailtimeline.application.extraction.signature import (
    IMPLICIT_MAX_LINES,
    looks_like_signature,
    split_disclaimer,
)
from mailtimeline.application.extraction.text import merge_segments
from mailtimeline.domain.entities.content import ReplyStyle, Segment, SegmentKind

HEADER_LOOKAHEAD_LINES = 10
MIN_HEADER_FIELDS = 3


@dataclass(frozen=True)
class MarkupAnalysis:
    reply_style: ReplyStyle
    segments: tuple[Segment, ...]
    new_markup: str
    quoted_markup: Optional[str]


def outermost_matches(tree: MarkupTree, table: tuple[NodePattern, ...], view: MarkupView = None) -> list[int]:
    """Indices of matching elements that have no matching ancestor."""
    roots: list[int] = []
    covered: set[int] = set()
    for node in tree.elements():
        if node.index in covered or (view is not None and not view.includes(node.index)):
            continue
        if match_node(table, node):
            roots.append(node.index)
            covered |= tree.subtree(node.index)
    return roots


def _lines_from(text: str, start: int) -> Iterator[str]:
    while True:
        end = text.find("\n", start)
        if end < 0:
            yield text[start:]
            return
        yield text[start:end]
        start = end + 1


def _opens_header_block(text: str, start: int = 0) -> bool:
    lines = list(islice((line for line in _lines_from(text, start) if line.strip()), HEADER_LOOKAHEAD_LINES))
    if not lines or not HEADER_FIELD_RE.match(lines[0]):
        return False
    hits = sum(1 for line in lines if HEADER_FIELD_RE.match(line))
    return hits >= MIN_HEADER_FIELDS


def find_styled_boundary(tree: MarkupTree) -> Optional[int]:
    """An hr or visually set-off element followed by header-looking text."""
    pieces = tree.view().pieces()
    if not pieces:
        return None
    owners = [index for index, _ in pieces]
    offsets = list(accumulate((len(s) for _, s in pieces), initial=0))
    text = "".join(s for _, s in pieces)

    for node in tree.elements():
        if not is_styling_discontinuity(node):
            continue
        # Text nodes are numbered in reading order, so what follows an element starts at its first piece
        k = bisect_left(owners, node.index)
        if k < len(pieces) and _opens_header_block(text, offsets[k]):
            return node.index
    return None


def _implicit_signature_nodes(view: MarkupView) -> frozenset[int]:
    """Trailing text nodes of ``view`` that read like a signature block."""
    pieces = [(i, s) for i, s in view.pieces() if s.strip()]
    lines: list[tuple[int, str]] = []
    for index, s in pieces:
        lines.extend((index, line) for line in s.splitlines() if line.strip())

    tail = lines[-IMPLICIT_MAX_LINES:]
    for k in range(len(tail), 1, -1):
        candidate = tail[-k:]
        first_index = candidate[0][0]
        # Only whole text nodes can be dropped from the view
        if any(i == first_index for i, _ in lines[: len(lines) - k]):
            continue
        if len(lines) == k:
            continue
        if looks_like_signature([line for _, line in candidate]):
            return frozenset(i for i, _ in candidate)
    return frozenset()


def analyze_markup(markup: str) -> MarkupAnalysis:
    tree = MarkupTree.from_html(markup)
    full = tree.view()

    quoted: frozenset[int] = frozenset()
    roots = outermost_matches(tree, MARKUP_QUOTE_MARKERS)
    boundary = None if roots else find_styled_boundary(tree)

    def label_with(quoted_set: frozenset[int]):
        return lambda i: SegmentKind.QUOTED if i in quoted_set else SegmentKind.NEW

    if roots:
        in_roots = frozenset().union(*(tree.subtree(r) for r in roots))
        style = classify_reply_style(
            Segment(kind, text) for kind, text in full.labelled(label_with(in_roots))
        )
        quoted = tree.from_index_on(roots[0]) if style == ReplyStyle.TOP else in_roots
    elif boundary is not None:
        quoted = tree.from_index_on(boundary)
        style = classify_reply_style(
            Segment(kind, text) for kind, text in full.labelled(label_with(quoted))
        )
    else:
        style = ReplyStyle.UNKNOWN

    new_view = tree.view(quoted)
    quoted_markup = full.only(quoted).render() if quoted else None

    signature_roots = outermost_matches(tree, MARKUP_SIGNATURE_MARKERS, new_view)
    if signature_roots:
        signature = frozenset().union(*(tree.subtree(r) for r in signature_roots))
    else:
        signature = _implicit_signature_nodes(new_view)
    if signature:
        logger.debug(f"Markup signature spans {len(signature)} node(s)")
    new_view = new_view.without(signature)

    def label(i: int) -> SegmentKind:
        if i in quoted:
            return SegmentKind.QUOTED
        if i in signature:
            return SegmentKind.SIGNATURE
        return SegmentKind.NEW

    segments = merge_segments(full.labelled(label))
    segments = split_disclaimer(segments)

    return MarkupAnalysis(
        reply_style=style,
        segments=tuple(segments),
        new_markup=new_view.render(),
        quoted_markup=quoted_markup,
    )
