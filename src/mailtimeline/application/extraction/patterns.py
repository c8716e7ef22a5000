"""Heuristic catalogs for quote, signature and disclaimer detection.

Each catalog is an ordered table of (name, matcher) entries; the extractors
never hard-code a pattern, they dispatch over these tables. Order matters:
when two entries match at the same offset the earlier entry wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from mailtimeline.application.extraction.markup_tree import MarkupNode

_M = re.MULTILINE
_MI = re.MULTILINE | re.IGNORECASE


@dataclass(frozen=True)
class TextPattern:
    name: str
    regex: re.Pattern


@dataclass(frozen=True)
class PatternMatch:
    name: str
    start: int
    end: int


def earliest_match(table: Sequence[TextPattern], text: str) -> Optional[PatternMatch]:
    """Earliest match across the table; ties go to the earlier entry."""
    best: Optional[PatternMatch] = None
    for entry in table:
        m = entry.regex.search(text)
        if m and (best is None or m.start() < best.start):
            best = PatternMatch(entry.name, m.start(), m.end())
    return best


def matching_names(table: Sequence[TextPattern], text: str) -> frozenset[str]:
    return frozenset(entry.name for entry in table if entry.regex.search(text))


def first_line_match(table: Sequence[TextPattern], line: str) -> Optional[str]:
    for entry in table:
        if entry.regex.match(line):
            return entry.name
    return None


# Separators between new text and quoted history
QUOTE_SEPARATORS: tuple[TextPattern, ...] = (
    TextPattern("quote_prefix", re.compile(r"^[ \t]*>", _M)),
    # Attribution lines, possibly wrapped over two lines by the client
    TextPattern("attribution_en", re.compile(r"^[ \t]*On\b[^\n]{0,200}(?:\n[^\n]{0,200})?\bwrote:[ \t]*$", _MI)),
    TextPattern("attribution_no", re.compile(r"^[ \t]*(?:Den|På)\b[^\n]{0,200}(?:\n[^\n]{0,200})?\bskrev[^\n]{0,120}:[ \t]*$", _MI)),
    TextPattern("attribution_de", re.compile(r"^[ \t]*Am\b[^\n]{0,200}(?:\n[^\n]{0,200})?\bschrieb[^\n]{0,120}:[ \t]*$", _MI)),
    TextPattern("attribution_fr", re.compile(r"^[ \t]*Le\b[^\n]{0,200}(?:\n[^\n]{0,200})?\ba écrit[ \t]*:[ \t]*$", _MI)),
    TextPattern("attribution_es", re.compile(r"^[ \t]*El\b[^\n]{0,200}(?:\n[^\n]{0,200})?\bescribió[ \t]*:[ \t]*$", _MI)),
    TextPattern("attribution_nl", re.compile(r"^[ \t]*Op\b[^\n]{0,200}(?:\n[^\n]{0,200})?\bschreef[^\n]{0,120}:[ \t]*$", _MI)),
    TextPattern("attribution_generic", re.compile(r"^[^\n]{1,120}\bwrote on\b[^\n]{1,120}:[ \t]*$", _MI)),
    TextPattern("original_message", re.compile(r"^[ \t]*-{2,}[ \t]*(?:Original Message|Opprinnelig melding|Ursprüngliche Nachricht|Message d'origine|Mensaje original)[ \t]*-{2,}", _MI)),
    TextPattern("forwarded_message", re.compile(r"^[ \t]*-{2,}[ \t]*(?:Forwarded message|Videresendt melding|Weitergeleitete Nachricht)[ \t]*-{2,}", _MI)),
    # Outlook header block: From/Fra line followed by Sent/Date/Sendt/Dato
    TextPattern("header_block", re.compile(r"^[ \t*]*(?:From|Fra|Von|De|Från)[ \t]*:[^\n]*\n[ \t*]*(?:Sent|Date|Sendt|Dato|Gesendet|Envoyé|Skickat)[ \t]*:", _MI)),
    TextPattern("header_block_mailto", re.compile(r"^[ \t]*From:[^\n]*\[mailto:[^\]]+\]", _MI)),
    TextPattern("horizontal_rule", re.compile(r"^[ \t]*(?:_{10,}|-{10,}|={10,})[ \t]*$", _M)),
)

ATTRIBUTION_NAMES = frozenset(p.name for p in QUOTE_SEPARATORS if p.name.startswith("attribution"))

QUOTE_PREFIX_RE = re.compile(r"^[ \t]*>")

HEADER_FIELD_RE = re.compile(
    r"^[ \t*]*(?:From|Sent|Date|To|Cc|Subject|Fra|Sendt|Dato|Til|Kopi|Emne|Von|Gesendet|An|Betreff|De|Envoyé|À|Objet|Från|Skickat|Till|Ämne)[ \t]*:",
    re.IGNORECASE,
)

SIGNATURE_DELIMITERS: tuple[TextPattern, ...] = (
    TextPattern("dash_dash", re.compile(r"^--[ \t]?$")),
    TextPattern("underscores", re.compile(r"^__[ \t]*$")),
    TextPattern("em_dash", re.compile(r"^\u2014[ \t]*$")),
)

CLOSING_SALUTATIONS: tuple[TextPattern, ...] = (
    TextPattern("en", re.compile(
        r"^[ \t]*(?:best regards|kind regards|warm regards|regards|best wishes|best|cheers|many thanks|"
        r"thanks|thank you|sincerely|yours sincerely|yours truly|respectfully)[ \t]*[,.!]?[ \t]*$",
        re.IGNORECASE,
    )),
    TextPattern("no", re.compile(
        r"^[ \t]*(?:mvh|med vennlig hilsen|vennlig hilsen|vennlige hilsener|hilsen|beste hilsen|takk)[ \t]*[,.!]?[ \t]*$",
        re.IGNORECASE,
    )),
    TextPattern("sv_da", re.compile(
        r"^[ \t]*(?:med vänliga hälsningar|vänliga hälsningar|hälsningar|med venlig hilsen|venlig hilsen)[ \t]*[,.!]?[ \t]*$",
        re.IGNORECASE,
    )),
    TextPattern("de", re.compile(r"^[ \t]*(?:mit freundlichen grüßen|viele grüße|beste grüße|gruß)[ \t]*[,.!]?[ \t]*$", re.IGNORECASE)),
    TextPattern("fr", re.compile(r"^[ \t]*(?:cordialement|bien à vous|salutations)[ \t]*[,.!]?[ \t]*$", re.IGNORECASE)),
)

# Signals used by the implicit (delimiter-less) signature heuristic
NAME_LINE_RE = re.compile(r"^[ \t]*[A-ZÆØÅÄÖÜÉ][\w'’.-]*(?:[ \t]+[A-ZÆØÅÄÖÜÉ][\w'’.-]*){0,3}[ \t]*$")
PHONE_RE = re.compile(r"(?:\+|\b)\d[\d \t().-]{5,}\d\b")
EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
URL_RE = re.compile(r"(?:https?://|www\.)\S+|\b[\w-]+\.(?:com|no|net|org|io|se|dk|de|co\.uk)\b", re.IGNORECASE)

# A paragraph is boilerplate with one strong marker or two distinct markers
DISCLAIMER_MARKERS: tuple[TextPattern, ...] = (
    TextPattern("confidential", re.compile(r"\b(?:confidential|privileged)\b", re.IGNORECASE)),
    TextPattern("intended_recipient", re.compile(r"intended (?:solely )?(?:only )?for the (?:use of the )?(?:addressee|recipient|individual)", re.IGNORECASE)),
    TextPattern("received_in_error", re.compile(r"received this (?:e-?mail|message|communication) in error", re.IGNORECASE)),
    TextPattern("disclaimer", re.compile(r"\bdisclaimer\b", re.IGNORECASE)),
    TextPattern("no_confidential", re.compile(r"\b(?:konfidensiell|fortrolig|taushetsbelagt|ansvarsfraskrivelse)\b", re.IGNORECASE)),
    TextPattern("no_received_in_error", re.compile(r"\bmottatt (?:denne|dette)\b[^.\n]*\bved en (?:feil|feiltakelse)", re.IGNORECASE)),
    TextPattern("de_confidential", re.compile(r"\bvertraulich", re.IGNORECASE)),
    TextPattern("delete_notice", re.compile(r"\b(?:notify the sender|delete this (?:e-?mail|message)|slett(?:e)? (?:meldingen|e-posten))\b", re.IGNORECASE)),
)
STRONG_DISCLAIMER_MARKERS = frozenset({"intended_recipient", "received_in_error", "no_received_in_error"})


# Markup catalogs: (name, predicate over an arena node)
NodePredicate = Callable[[MarkupNode], bool]


@dataclass(frozen=True)
class NodePattern:
    name: str
    matches: NodePredicate


def _has_class(*names: str) -> NodePredicate:
    wanted = {n.lower() for n in names}
    return lambda n: any(c.lower() in wanted for c in n.classes)


def _has_id(*names: str) -> NodePredicate:
    wanted = {n.lower() for n in names}
    return lambda n: (n.attr("id") or "").lower() in wanted


def _left_border_indent(node: MarkupNode) -> bool:
    style = node.style
    if "border-left" not in style:
        return False
    border = style.split("border-left", 1)[1].split(";", 1)[0]
    return "none" not in border and ("padding" in style or "margin" in style)


MARKUP_QUOTE_MARKERS: tuple[NodePattern, ...] = (
    NodePattern("blockquote", lambda n: n.tag == "blockquote"),
    NodePattern("gmail", _has_class("gmail_quote", "gmail_quote_container", "gmail_extra", "x_gmail_quote")),
    NodePattern("yahoo", _has_class("yahoo_quoted", "ydp-quoted")),
    NodePattern("thunderbird", _has_class("moz-cite-prefix", "moz-forward-container")),
    NodePattern("protonmail", _has_class("protonmail_quote")),
    NodePattern("zoho", _has_class("zmail_extra")),
    NodePattern("outlook_class", _has_class("OutlookMessageHeader", "x_OutlookMessageHeader")),
    NodePattern("outlook_id", _has_id("divRplyFwdMsg", "x_divRplyFwdMsg", "appendonsend", "OLK_SRC_BODY_SECTION", "mail-editor-reference-message-container")),
    NodePattern("apple", _has_class("AppleOriginalContents")),
    NodePattern("left_border", _left_border_indent),
)

MARKUP_SIGNATURE_MARKERS: tuple[NodePattern, ...] = (
    NodePattern("gmail", _has_class("gmail_signature", "x_gmail_signature")),
    NodePattern("gmail_smartmail", lambda n: (n.attr("data-smartmail") or "") == "gmail_signature"),
    NodePattern("thunderbird", _has_class("moz-signature")),
    NodePattern("generic_class", _has_class("signature", "x_signature", "email-signature")),
    NodePattern("outlook_id", _has_id("Signature", "x_Signature", "ms-outlook-mobile-signature", "signature")),
)

_GRAY_RE = re.compile(r"color\s*:\s*(?:gray|grey|#(?:808080|888888?|999999?|666666?|7f7f7f|a0a0a0|5f5f5f)|rgb\(\s*1[0-5]\d\s*,\s*1[0-5]\d\s*,\s*1[0-5]\d\s*\))")

_SHADED_RE = re.compile(r"background(?:-color)?:(?!none|transparent|inherit|white|#fff\b|#ffffff|rgb\(255,255,255\))")


def is_styling_discontinuity(node: MarkupNode) -> bool:
    """hr, gray text, shaded background or a top border."""
    if node.tag == "hr":
        return True
    style = node.style
    if not style:
        return False
    if _GRAY_RE.search(style):
        return True
    if _SHADED_RE.search(style):
        return True
    return "border-top" in style and "border-top:none" not in style


def match_node(table: Sequence[NodePattern], node: MarkupNode) -> Optional[str]:
    if node.tag is None:
        return None
    for entry in table:
        if entry.matches(node):
            return entry.name
    return None
