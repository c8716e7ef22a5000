from mailtimeline.application.extraction.extractor import ContentExtractor, extract_text_segments
from mailtimeline.application.extraction.markup_tree import MarkupTree, MarkupView, html_to_text
from mailtimeline.application.extraction.reply_style import classify_reply_style

__all__ = [
    "ContentExtractor",
    "MarkupTree",
    "MarkupView",
    "classify_reply_style",
    "extract_text_segments",
    "html_to_text",
]
