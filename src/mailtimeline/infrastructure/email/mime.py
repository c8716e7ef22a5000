"""MIME parse tree: raw bytes -> immutable arena of nodes."""

from __future__ import annotations

import base64
import binascii
import codecs
import quopri
from dataclasses import dataclass
from email import policy
from email.message import Message
from email.parser import BytesParser
from typing import Iterator, Optional

from loguru import logger

from mailtimeline.domain.errors import DegradedDecode, ParseFailure
from mailtimeline.infrastructure.email.repair import (
    looks_like_header_section,
    repair_raw,
    repair_transfer_encoding,
    strip_mbox_envelope,
)

DEFAULT_MAX_DEPTH = 20
_TRANSFER_ENCODED = frozenset({"base64", "quoted-printable", "x-uuencode", "uuencode", "x-uue"})

_CHARSET_ALIASES = {
    "utf8": "utf-8",
    "unicode-1-1-utf-8": "utf-8",
    "ks_c_5601-1987": "cp949",
    "iso-8859-8-i": "iso-8859-8",
    "ansi_x3.4-1968": "ascii",
    "windows-874": "cp874",
    "x-sjis": "shift_jis",
    "gb2312": "gb18030",
}


@dataclass(frozen=True)
class MimeNode:
    index: int
    part_id: str
    parent: Optional[int]
    children: tuple[int, ...]
    depth: int
    media_type: str
    transfer_encoding: str
    headers: tuple[tuple[str, str], ...]
    payload: bytes  # still transfer-encoded; empty for containers
    charset: Optional[str] = None
    disposition: Optional[str] = None
    filename: Optional[str] = None
    content_id: Optional[str] = None
    params: tuple[tuple[str, str], ...] = ()
    degraded: bool = False

    @property
    def is_container(self) -> bool:
        return bool(self.children)

    @property
    def main_type(self) -> str:
        return self.media_type.split("/", 1)[0]

    def header(self, name: str) -> Optional[str]:
        lname = name.lower()
        for k, v in self.headers:
            if k.lower() == lname:
                return v
        return None

    def param(self, name: str) -> Optional[str]:
        for k, v in self.params:
            if k == name.lower():
                return v
        return None


@dataclass(frozen=True)
class ParseTree:
    nodes: tuple[MimeNode, ...]

    @property
    def root(self) -> MimeNode:
        return self.nodes[0]

    def walk(self, index: int = 0) -> Iterator[MimeNode]:
        """Depth-first, pre-order."""
        stack = [index]
        while stack:
            node = self.nodes[stack.pop()]
            yield node
            stack.extend(reversed(node.children))

    def leaves(self) -> Iterator[MimeNode]:
        return (n for n in self.walk() if not n.is_container)

    @property
    def degraded(self) -> bool:
        return any(n.degraded for n in self.nodes)

    def decoded_bytes(self, node: MimeNode) -> bytes:
        """Transfer-decode a leaf payload. Raises DegradedDecode."""
        return decode_transfer(node.payload, node.transfer_encoding, node.part_id)

    def text(self, node: MimeNode) -> str:
        return decode_charset(self.decoded_bytes(node), node.charset)


def decode_transfer(payload: bytes, declared: str, part_id: str = "") -> bytes:
    cte = repair_transfer_encoding(declared, payload)
    try:
        if cte == "base64":
            compact = b"".join(payload.split())
            compact += b"=" * (-len(compact) % 4)
            return base64.b64decode(compact)
        if cte == "quoted-printable":
            return quopri.decodestring(payload)
    except (binascii.Error, ValueError) as e:
        raise DegradedDecode(f"Cannot decode {cte} payload: {e}", part_id=part_id) from e
    return payload


def _charset_candidates(data: bytes, declared: Optional[str]) -> list[str]:
    out: list[str] = []
    if declared:
        cs = declared.strip().strip('"').lower()
        cs = _CHARSET_ALIASES.get(cs, cs)
        try:
            codecs.lookup(cs)
            out.append(cs)
        except LookupError:
            logger.debug(f"Unknown charset {declared!r}; sniffing")
    if data.startswith(codecs.BOM_UTF8):
        out.insert(0, "utf-8-sig")
    elif data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        out.insert(0, "utf-16")
    out.extend(["utf-8", "cp1252", "latin-1"])
    return out


def decode_charset(data: bytes, declared: Optional[str]) -> str:
    for cs in _charset_candidates(data, declared):
        try:
            return data.decode(cs)
        except (UnicodeDecodeError, LookupError):
            continue
    return data.decode("utf-8", errors="replace")


def _raw_payload(part: Message, cte: str) -> bytes:
    if cte not in _TRANSFER_ENCODED:
        # compat32 re-decodes 8-bit data with the declared charset unless decode=True
        payload = part.get_payload(decode=True)
        return payload if isinstance(payload, bytes) else b""
    payload = part.get_payload(decode=False)
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8", "surrogateescape")
    return b""


def _content_id(part: Message) -> Optional[str]:
    cid = part.get("Content-ID") or part.get("Content-Id")
    if not cid:
        return None
    return str(cid).strip().strip("<>").strip() or None


class _TreeBuilder:
    def __init__(self, max_depth: int) -> None:
        self.max_depth = max_depth
        self.nodes: list[Optional[MimeNode]] = []

    def build(self, part: Message, parent: Optional[int], depth: int, part_id: str) -> int:
        index = len(self.nodes)
        self.nodes.append(None)  # reserve slot so children get later indices

        media_type = part.get_content_type()
        cte = str(part.get("Content-Transfer-Encoding") or "7bit").strip().lower()
        headers = tuple((k, str(v)) for k, v in part.items())
        params = tuple(
            (str(k).lower(), str(v)) for k, v in (part.get_params() or [])[1:]
        )
        disposition = part.get_content_disposition()
        try:
            filename = part.get_filename()
        except (TypeError, ValueError):
            filename = None
        charset = part.get_content_charset()
        degraded = False
        children: list[int] = []
        payload = b""

        if part.is_multipart():
            subparts = part.get_payload() or []
            if depth >= self.max_depth:
                logger.warning(f"MIME nesting exceeds {self.max_depth} at part {part_id}; truncating")
                degraded = True
            elif not subparts:
                degraded = True
            else:
                for i, sub in enumerate(subparts, start=1):
                    child_id = f"{part_id}.{i}" if part_id else str(i)
                    children.append(self.build(sub, index, depth + 1, child_id))
        else:
            payload = _raw_payload(part, cte)
            if media_type.startswith("multipart/"):
                # Declared multipart but no usable boundary: keep the text best-effort
                media_type = "text/plain"
                degraded = True

        if part.defects:
            logger.debug(f"Part {part_id or 'root'} defects: {[type(d).__name__ for d in part.defects]}")

        self.nodes[index] = MimeNode(
            index=index,
            part_id=part_id or "0",
            parent=parent,
            children=tuple(children),
            depth=depth,
            media_type=media_type,
            transfer_encoding=cte,
            headers=headers,
            payload=payload,
            charset=charset,
            disposition=disposition,
            filename=filename,
            content_id=_content_id(part),
            params=params,
            degraded=degraded,
        )
        return index


def parse_message(raw: bytes, *, max_depth: int = DEFAULT_MAX_DEPTH, external_id: str = None) -> tuple[Message, ParseTree]:
    """Repair and parse raw RFC 822 bytes.

    Raises:
        ParseFailure: when the header section cannot be parsed at all.
    """
    if not raw or not raw.strip():
        raise ParseFailure("Empty message", external_id=external_id)
    if not looks_like_header_section(strip_mbox_envelope(raw)):
        raise ParseFailure("Message does not start with a header section", external_id=external_id)

    repaired = repair_raw(raw)
    try:
        em = BytesParser(policy=policy.compat32).parsebytes(repaired)
    except Exception as e:
        raise ParseFailure(f"Header section unparsable: {e}", external_id=external_id) from e

    if not em.keys():
        raise ParseFailure("Message has no header fields", external_id=external_id)

    builder = _TreeBuilder(max_depth)
    builder.build(em, None, 0, "")
    return em, ParseTree(nodes=tuple(builder.nodes))
