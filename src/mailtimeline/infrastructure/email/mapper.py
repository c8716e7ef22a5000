from __future__ import annotations
import base64
import binascii
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.header import decode_header, make_header
from email.errors import HeaderParseError
from email.message import Message
from email.utils import getaddresses, parsedate_to_datetime
from typing import Iterable, Optional

from loguru import logger

from mailtimeline.application.extraction.markup_tree import html_to_text
from mailtimeline.application.ports.email_source import RawMessage
from mailtimeline.domain.entities.email_message import Direction, EmailAddress, HeaderBag, NormalizedMessage
from mailtimeline.domain.errors import DegradedDecode
from mailtimeline.infrastructure.email.mime import DEFAULT_MAX_DEPTH, MimeNode, ParseTree, parse_message

_MSGID_RE = re.compile(r"<([^<>\s]+)>")
_WS_RE = re.compile(r"\s+")

SIGNED_TYPES = {"multipart/signed", "application/pkcs7-signature", "application/x-pkcs7-signature", "application/pgp-signature"}
ENCRYPTED_TYPES = {"multipart/encrypted", "application/pgp-encrypted"}
SMIME_TYPES = {"application/pkcs7-mime", "application/x-pkcs7-mime"}


def decode_header_value(value: Optional[str]) -> str:
    """Decode RFC 2047 encoded words into plain text."""
    if not value:
        return ""
    value = str(value)
    try:
        return _WS_RE.sub(" ", str(make_header(decode_header(value)))).strip()
    except (HeaderParseError, LookupError, UnicodeDecodeError, ValueError):
        parts = []
        for part, charset in decode_header(value):
            if isinstance(part, bytes):
                parts.append(part.decode("utf-8", errors="replace"))
            else:
                parts.append(part)
        return _WS_RE.sub(" ", "".join(parts)).strip()


def parse_addresses(values: Iterable[str]) -> tuple[EmailAddress, ...]:
    out: list[EmailAddress] = []
    for name, addr in getaddresses([str(v) for v in values if v]):
        addr = addr.strip().lower()
        if not addr or "@" not in addr:
            continue
        out.append(EmailAddress(name=decode_header_value(name), email=addr))
    return tuple(out)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken to be UTC."""
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_date(value: Optional[str]) -> Optional[datetime]:
    # Date parsing can be messy; caller supplies the fallback
    if not value:
        return None
    try:
        dt = parsedate_to_datetime(str(value))
    except (TypeError, ValueError, IndexError):
        logger.debug(f"Unparsable Date header: {value!r}")
        return None
    return as_utc(dt)


def parse_message_ids(value: Optional[str]) -> tuple[str, ...]:
    if not value:
        return ()
    ids = _MSGID_RE.findall(str(value))
    if not ids:
        ids = [v.strip("<>") for v in str(value).split() if v.strip("<>")]
    return tuple(dict.fromkeys(ids))


def _importance(em: Message) -> str:
    imp = str(em.get("Importance") or "").strip().lower()
    if imp in ("high", "low", "normal"):
        return imp
    prio = str(em.get("X-Priority") or "").strip()[:1]
    if prio in ("1", "2"):
        return "high"
    if prio in ("4", "5"):
        return "low"
    return "normal"


def thread_hint_from_headers(em: Message) -> Optional[str]:
    gm = em.get("X-GM-THRID")
    if gm:
        return f"gm:{str(gm).strip()}"
    index = em.get("Thread-Index")
    if index:
        # Outlook: the first 22 bytes identify the conversation, replies append 5-byte blocks
        try:
            head = base64.b64decode("".join(str(index).split()))[:22]
            if len(head) == 22:
                return f"ti:{head.hex()}"
        except (binascii.Error, ValueError):
            logger.debug(f"Invalid Thread-Index header: {index!r}")
    return None


@dataclass(frozen=True)
class BodySelection:
    text_index: Optional[int]
    markup_index: Optional[int]

    @property
    def indices(self) -> frozenset[int]:
        return frozenset(i for i in (self.text_index, self.markup_index) if i is not None)


def _is_body_candidate(node: MimeNode) -> bool:
    if node.disposition == "attachment" or node.filename:
        return False
    # A multipart without a usable boundary keeps its raw text as a degraded leaf
    return not node.degraded or bool(node.payload)


def select_bodies(tree: ParseTree) -> BodySelection:
    """First text/plain and first text/html leaf in a depth-first walk."""
    text_index = markup_index = None
    for node in tree.leaves():
        if not _is_body_candidate(node):
            continue
        if node.media_type == "text/plain" and text_index is None:
            text_index = node.index
        elif node.media_type == "text/html" and markup_index is None:
            markup_index = node.index
    return BodySelection(text_index=text_index, markup_index=markup_index)


def _leaf_text(tree: ParseTree, index: Optional[int]) -> tuple[Optional[str], bool]:
    if index is None:
        return None, False
    try:
        return tree.text(tree.nodes[index]), False
    except DegradedDecode as e:
        logger.warning(f"Body part {e.part_id} degraded: {e.message}")
        return "", True


def _security_flags(tree: ParseTree) -> tuple[bool, bool]:
    signed = encrypted = False
    for node in tree.walk():
        if node.media_type in SIGNED_TYPES:
            signed = True
        elif node.media_type in ENCRYPTED_TYPES:
            encrypted = True
        elif node.media_type in SMIME_TYPES:
            smime = (node.param("smime-type") or "enveloped-data").lower()
            if smime == "signed-data":
                signed = True
            else:
                encrypted = True
    return signed, encrypted


def _normalize_ws(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def rfc822_to_normalized_message(
    raw: RawMessage,
    own_addresses: frozenset[str] = frozenset(),
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> tuple[NormalizedMessage, ParseTree, BodySelection]:
    em, tree = parse_message(raw.rfc822_bytes, max_depth=max_depth, external_id=raw.external_id)

    subject = decode_header_value(em.get("Subject"))
    senders = parse_addresses(em.get_all("From") or [])
    sender = senders[0] if senders else None
    to = parse_addresses(em.get_all("To") or [])
    cc = parse_addresses(em.get_all("Cc") or [])
    bcc = parse_addresses(em.get_all("Bcc") or [])
    reply_to = parse_addresses(em.get_all("Reply-To") or [])

    received_at = as_utc(raw.received_at)
    sent_at = parse_date(em.get("Date")) or received_at or datetime.now(timezone.utc)

    selection = select_bodies(tree)
    text, text_degraded = _leaf_text(tree, selection.text_index)
    markup, markup_degraded = _leaf_text(tree, selection.markup_index)

    has_parallel = False
    if markup and text is None:
        text = html_to_text(markup)
    elif markup and text is not None:
        has_parallel = _normalize_ws(text) != _normalize_ws(html_to_text(markup))

    signed, encrypted = _security_flags(tree)
    msg_ids = parse_message_ids(em.get("Message-ID") or em.get("Message-Id"))
    in_reply_to = parse_message_ids(em.get("In-Reply-To"))

    headers = HeaderBag(
        message_id=msg_ids[0] if msg_ids else None,
        in_reply_to=in_reply_to[0] if in_reply_to else None,
        references=parse_message_ids(" ".join(str(v) for v in (em.get_all("References") or []))),
        importance=_importance(em),
        is_signed=signed,
        is_encrypted=encrypted,
    )

    direction = Direction.OUTBOUND if sender and sender.email in own_addresses else Direction.INBOUND

    msg = NormalizedMessage(
        external_id=raw.external_id,
        account_id=raw.account_id,
        thread_hint=raw.provider_thread_id or thread_hint_from_headers(em),
        subject=subject,
        from_address=sender,
        to=to,
        cc=cc,
        bcc=bcc,
        sent_at=sent_at,
        text_body=text.replace("\r\n", "\n").strip("\n") if text else "",
        markup_body=markup or None,
        headers=headers,
        reply_to=reply_to,
        received_at=received_at,
        direction=direction,
        degraded=tree.degraded or text_degraded or markup_degraded,
        has_parallel_bodies=has_parallel,
    )
    return msg, tree, selection
