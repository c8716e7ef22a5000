"""Tests for new/quoted text separation, signatures and reply style."""

import pytest

from mailtimeline.application.extraction import ContentExtractor, html_to_text
from mailtimeline.application.extraction.markup import find_styled_boundary
from mailtimeline.application.extraction.markup_tree import MarkupTree
from mailtimeline.application.extraction.text import split_quotes
from mailtimeline.domain.entities.content import ReplyStyle, SegmentKind


@pytest.fixture
def extractor():
    return ContentExtractor()


TOP_POSTED = "Thanks.\n\nOn Jan 1, 2024, J Doe wrote:\n> original"

BOTTOM_POSTED = (
    "From: Bob <bob@x.com>\n"
    "Sent: Monday, January 1, 2024 10:00 AM\n"
    "To: Alice <alice@y.com>\n"
    "Subject: Proposal\n"
    "\n"
    "That sounds great, let us schedule a meeting next week."
)

INLINE = "Hi Bob,\n\n> Can you send the report?\nYes, attached.\n\n> And the invoice?\nI will send it tomorrow.\n"

GMAIL_MARKUP = (
    '<div dir="ltr">Sounds good, see you then.</div><br>'
    '<div class="gmail_quote"><div class="gmail_attr">On Mon, Jan 1, 2024 at 10:00 AM Bob &lt;bob@x.com&gt; wrote:<br></div>'
    '<blockquote class="gmail_quote" style="margin:0 0 0 .8ex;border-left:1px #ccc solid;padding-left:1ex">'
    "Can we meet Tuesday?</blockquote></div>"
)

OUTLOOK_HEADERS = (
    "<p><b>From:</b> Bob &lt;bob@x.com&gt;<br><b>Sent:</b> Monday, January 1, 2024 10:00 AM<br>"
    "<b>To:</b> Alice &lt;alice@y.com&gt;<br><b>Subject:</b> Proposal</p><p>Can we meet Tuesday?</p>"
)

OUTLOOK_MARKUP = (
    "<div><p>Works for me.</p>"
    '<div style="border:none;border-top:solid #E1E1E1 1.0pt;padding:3.0pt 0cm 0cm 0cm">'
    f"{OUTLOOK_HEADERS}</div></div>"
)


class TestQuoteSeparation:
    def test_top_posted_reply(self, extractor):
        content = extractor.extract(TOP_POSTED)

        assert content.new_text == "Thanks."
        assert "> original" in content.quoted_text
        assert content.reply_style == ReplyStyle.TOP
        assert content.signature == ""

    def test_bottom_posted_after_header_block(self, extractor):
        content = extractor.extract(BOTTOM_POSTED)

        assert content.new_text == "That sounds great, let us schedule a meeting next week."
        assert content.quoted_text.startswith("From: Bob <bob@x.com>")
        assert content.reply_style == ReplyStyle.BOTTOM

    def test_inline_reply(self, extractor):
        content = extractor.extract(INLINE)
        assert content.reply_style == ReplyStyle.INLINE

    def test_plain_message_has_no_quote(self, extractor):
        content = extractor.extract("Just a short note.")

        assert content.new_text == "Just a short note."
        assert content.quoted_text == ""
        assert content.reply_style == ReplyStyle.UNKNOWN

    @pytest.mark.parametrize("text", [TOP_POSTED, BOTTOM_POSTED, INLINE, ""])
    def test_segments_concatenate_to_body(self, extractor, text):
        assert extractor.extract(text).reconstruct() == text

    def test_split_quotes_empty(self):
        assert split_quotes("") == []


class TestSignatures:
    def test_delimited_signature(self, extractor):
        content = extractor.extract("Hi team,\n\nThe report is attached.\n--\nJane Doe\nCEO\n555-1234")

        assert content.signature.startswith("--")
        assert "Jane Doe" in content.signature
        assert content.without_signature() == "Hi team,\n\nThe report is attached.\n"

    def test_salutation_and_disclaimer(self, extractor):
        content = extractor.extract(
            "Please find the contract attached.\n\nBest regards,\nJane Doe\n\n"
            "This email is confidential and intended only for the addressee."
        )

        assert content.new_text == "Please find the contract attached."
        assert content.signature == "Best regards,\nJane Doe"
        assert "confidential" in content.disclaimer
        kinds = [s.kind for s in content.segments]
        assert kinds == [SegmentKind.NEW, SegmentKind.SIGNATURE, SegmentKind.DISCLAIMER]

    def test_confidentiality_in_prose_is_not_a_disclaimer(self, extractor):
        body = (
            "Hi Bob,\n\nThe pricing in the attached deck is confidential, so please do not forward it. "
            "Can we meet Tuesday to go through it?\n\nThanks"
        )

        content = extractor.extract(body)

        assert content.disclaimer == ""
        assert "Can we meet Tuesday to go through it?" in content.new_text
        assert content.reconstruct() == body

    def test_only_trailing_boilerplate_is_a_disclaimer(self, extractor):
        content = extractor.extract(
            "Status update below.\n\n"
            "Confidential: the disclaimer on the old contract must go.\n\n"
            "Let us talk tomorrow.\n\n"
            "If you have received this message in error, please notify the sender."
        )

        assert content.disclaimer == "If you have received this message in error, please notify the sender."
        assert "Let us talk tomorrow." in content.new_text
        assert "old contract must go" in content.new_text

    def test_norwegian_disclaimer(self, extractor):
        content = extractor.extract(
            "Se vedlagt tilbud.\n\n"
            "Denne e-posten kan inneholde konfidensiell informasjon. "
            "Dersom du har mottatt denne e-posten ved en feil, vennligst slett e-posten."
        )

        assert content.new_text == "Se vedlagt tilbud."
        assert content.disclaimer.startswith("Denne e-posten")

    def test_implicit_signature_block(self, extractor):
        content = extractor.extract("Let me know if Thursday works.\n\nJohn Smith\n+47 912 34 567\nwww.acme.no")
        assert content.signature == "John Smith\n+47 912 34 567\nwww.acme.no"


class TestMarkupChannel:
    def test_gmail_quote_markup(self, extractor):
        content = extractor.extract(html_to_text(GMAIL_MARKUP), GMAIL_MARKUP)

        assert content.reply_style == ReplyStyle.TOP
        assert content.new_text == "Sounds good, see you then."
        assert "gmail_quote" not in content.new_markup
        assert "Can we meet Tuesday?" in content.quoted_markup

    def test_markup_style_wins_on_disagreement(self, extractor):
        markup = "<blockquote>Can we meet Tuesday?</blockquote><p>Yes, Tuesday at ten works well for me.</p>"
        text = "Can we meet Tuesday?\n\nYes, Tuesday at ten works well for me."

        assert extractor.extract(text).reply_style == ReplyStyle.UNKNOWN

        content = extractor.extract(text, markup)
        assert content.reply_style == ReplyStyle.BOTTOM
        assert content.new_text == "Yes, Tuesday at ten works well for me."
        assert content.quoted_text == "Can we meet Tuesday?"
        assert content.reconstruct() == html_to_text(markup)

    def test_outlook_header_block_after_top_border(self, extractor):
        content = extractor.extract(html_to_text(OUTLOOK_MARKUP), OUTLOOK_MARKUP)

        assert content.reply_style == ReplyStyle.TOP
        assert content.new_text == "Works for me."
        assert "Can we meet Tuesday?" in content.quoted_markup

    def test_styled_boundary_is_the_set_off_element(self):
        tree = MarkupTree.from_html(OUTLOOK_MARKUP)
        border = next(n.index for n in tree.elements() if "border-top" in n.style)

        assert find_styled_boundary(tree) == border

    def test_gray_text_without_headers_is_not_a_boundary(self):
        tree = MarkupTree.from_html('<p>See you.</p><p style="color:#888888">Sent from my phone</p>')
        assert find_styled_boundary(tree) is None

    def test_boundary_after_many_styled_elements(self):
        spans = '<span style="color:gray">note </span>' * 2000
        tree = MarkupTree.from_html(f"<p>{spans}</p><hr>{OUTLOOK_HEADERS}")
        hr = next(n.index for n in tree.elements() if n.tag == "hr")

        assert find_styled_boundary(tree) == hr

    def test_html_to_text_drops_hidden_content(self):
        text = html_to_text("<html><head><style>p {color: red}</style></head><body><p>Visible</p></body></html>")
        assert text.strip() == "Visible"
