"""Content extraction: new text vs. quoted history, signature and disclaimer."""

from __future__ import annotations

from typing import Optional

from loguru import logger

from mailtimeline.application.extraction.markup import MarkupAnalysis, analyze_markup
from mailtimeline.application.extraction.reply_style import classify_reply_style
from mailtimeline.application.extraction.signature import split_signature
from mailtimeline.application.extraction.text import split_quotes
from mailtimeline.domain.entities.content import ExtractedContent, ReplyStyle, Segment


def extract_text_segments(text: str) -> list[Segment]:
    return split_signature(split_quotes(text or ""))


class ContentExtractor:
    """Run the text and markup channels and merge them into one ExtractedContent.

    The markup channel decides the reply style when it has an opinion. When
    the two channels disagree, the text fields are taken from the markup
    segmentation too, so style and fields never contradict each other.
    """

    def extract(self, text: str, markup: Optional[str] = None) -> ExtractedContent:
        """Extract one message body.

        Args:
            text: Plain-text body (may be derived from the markup)
            markup: Optional HTML body

        Returns:
            ExtractedContent whose segments concatenate back to the body
            of the channel that decided it
        """
        segments = extract_text_segments(text)
        style = classify_reply_style(segments)
        if not markup:
            return ExtractedContent.from_segments(tuple(segments), style)

        analysis = self._analyze_markup(markup)
        if analysis is None:
            return ExtractedContent.from_segments(tuple(segments), style)

        if analysis.reply_style != ReplyStyle.UNKNOWN and analysis.reply_style != style:
            logger.debug(f"Reply style disagreement: text={style.value} markup={analysis.reply_style.value}")
            return ExtractedContent.from_segments(
                analysis.segments,
                analysis.reply_style,
                new_markup=analysis.new_markup,
                quoted_markup=analysis.quoted_markup,
            )

        return ExtractedContent.from_segments(
            tuple(segments),
            style,
            new_markup=analysis.new_markup,
            quoted_markup=analysis.quoted_markup,
        )

    def _analyze_markup(self, markup: str) -> Optional[MarkupAnalysis]:
        try:
            return analyze_markup(markup)
        except (ValueError, AssertionError) as e:
            # html.parser gives up on some pathological documents
            logger.warning(f"Markup analysis failed, using text channel only: {e}")
            return None
