"""Byte-level repairs applied before and during MIME parsing."""

from __future__ import annotations

import re

from loguru import logger

_BOUNDARY_RE = re.compile(rb'boundary\s*=\s*(?:"([^"\r\n]+)"|([^\s;"]+))', re.IGNORECASE)
_HEADER_LINE_RE = re.compile(rb"^[!-9;-~]+[ \t]*:")
_CONTENT_TYPE_RE = re.compile(rb"^content-type[ \t]*:", re.IGNORECASE | re.MULTILINE)
_BASE64_BODY_RE = re.compile(rb"^[A-Za-z0-9+/=\s]*$")
_QP_ESCAPE_RE = re.compile(rb"=[0-9A-Fa-f]{2}|=\r?\n")

DEFAULT_CONTENT_TYPE = b"Content-Type: text/plain; charset=utf-8"


def strip_mbox_envelope(raw: bytes) -> bytes:
    """Drop a leading mbox 'From ' line if a provider left it in."""
    if raw.startswith(b"From "):
        nl = raw.find(b"\n")
        return raw[nl + 1:] if nl != -1 else b""
    return raw


def looks_like_header_section(raw: bytes) -> bool:
    first = raw.lstrip(b"\r\n").split(b"\n", 1)[0]
    return bool(_HEADER_LINE_RE.match(first))


def _newline(raw: bytes) -> bytes:
    return b"\r\n" if b"\r\n" in raw else b"\n"


def _split_headers(raw: bytes) -> tuple[bytes, bytes, bytes]:
    """Return (header block, separator, body)."""
    m = re.search(rb"\r?\n\r?\n", raw)
    if not m:
        return raw, b"", b""
    return raw[: m.start()], raw[m.start(): m.end()], raw[m.end():]


def ensure_content_type(raw: bytes) -> bytes:
    headers, sep, body = _split_headers(raw)
    if _CONTENT_TYPE_RE.search(headers):
        return raw
    nl = _newline(raw)
    logger.debug("No top-level Content-Type; defaulting to text/plain utf-8")
    return headers + nl + DEFAULT_CONTENT_TYPE + (sep or nl + nl) + body


def declared_boundaries(raw: bytes) -> list[bytes]:
    seen: list[bytes] = []
    for m in _BOUNDARY_RE.finditer(raw):
        b = (m.group(1) or m.group(2)).strip()
        if b and b not in seen:
            seen.append(b)
    return seen


def close_open_boundaries(raw: bytes) -> bytes:
    """Synthesize closing delimiters for boundaries that open but never close.

    Boundaries declared later are nested deeper, so they are closed first.
    """
    missing: list[bytes] = []
    for boundary in declared_boundaries(raw):
        esc = re.escape(boundary)
        opens = re.search(rb"^--" + esc + rb"[ \t]*\r?$", raw, re.MULTILINE)
        closes = re.search(rb"^--" + esc + rb"--", raw, re.MULTILINE)
        if opens and not closes:
            missing.append(boundary)
    if not missing:
        return raw

    nl = _newline(raw)
    tail = b"".join(nl + b"--" + b + b"--" for b in reversed(missing))
    logger.debug(f"Synthesized {len(missing)} missing MIME terminator(s)")
    out = raw if raw.endswith(nl) else raw + nl
    return out + tail.lstrip(b"\r\n") + nl


def repair_raw(raw: bytes) -> bytes:
    raw = strip_mbox_envelope(raw)
    raw = ensure_content_type(raw)
    return close_open_boundaries(raw)


def repair_transfer_encoding(declared: str, payload: bytes) -> str:
    """Downgrade a base64 declaration whose payload is not base64."""
    cte = (declared or "7bit").strip().lower()
    if cte != "base64":
        return cte
    if _BASE64_BODY_RE.match(payload):
        return cte
    repaired = "quoted-printable" if _QP_ESCAPE_RE.search(payload) else "7bit"
    logger.debug(f"Payload declared base64 is not base64; treating as {repaired}")
    return repaired
