"""Pull binary parts out of a parse tree and make the markup self-contained."""

from __future__ import annotations

import base64
import mimetypes
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote

from loguru import logger

from mailtimeline.domain.entities.attachment import AttachmentRef, InlineImageRef
from mailtimeline.domain.errors import DegradedDecode
from mailtimeline.infrastructure.attachments.store import BlobStore
from mailtimeline.infrastructure.email.mapper import BodySelection
from mailtimeline.infrastructure.email.mime import MimeNode, ParseTree

_CID_REF_RE = re.compile(r"""(?P<lead>["'(=]\s*)cid:(?P<cid>[^"')\s>]+)""", re.IGNORECASE)


@dataclass(frozen=True)
class ExtractedParts:
    attachments: tuple[AttachmentRef, ...]
    inline_images: tuple[InlineImageRef, ...]
    markup: Optional[str]


def referenced_cids(markup: Optional[str]) -> frozenset[str]:
    if not markup:
        return frozenset()
    return frozenset(unquote(m.group("cid")).strip("<>").lower() for m in _CID_REF_RE.finditer(markup))


def generated_filename(n: int, content_type: str) -> str:
    ext = mimetypes.guess_extension(content_type) or ".bin"
    return f"attachment-{n}{ext}"


def is_inline_image(node: MimeNode, cids_in_markup: frozenset[str]) -> bool:
    if node.main_type != "image" or not node.content_id:
        return False
    if node.disposition == "inline":
        return True
    return node.disposition is None and node.content_id.lower() in cids_in_markup


class AttachmentExtractor:
    """Classify non-body leaves as attachments or inline images and store their bytes."""

    def __init__(self, blob_store: BlobStore, attachment_max_bytes: int, inline_data_max_bytes: int) -> None:
        self.blob_store = blob_store
        self.attachment_max_bytes = attachment_max_bytes
        self.inline_data_max_bytes = inline_data_max_bytes

    def extract(
        self,
        account_id: str,
        external_id: str,
        tree: ParseTree,
        selection: BodySelection,
        markup: Optional[str] = None,
    ) -> ExtractedParts:
        cids = referenced_cids(markup)
        attachments: list[AttachmentRef] = []
        inline: list[InlineImageRef] = []
        replacements: dict[str, str] = {}
        generated = 0

        for node in tree.leaves():
            if node.index in selection.indices or (node.index == tree.root.index and not node.payload):
                continue

            try:
                data = tree.decoded_bytes(node)
                degraded = node.degraded
            except DegradedDecode as e:
                logger.warning(f"{external_id}: part {e.part_id} kept as empty stub ({e.message})")
                data, degraded = b"", True

            if not degraded and is_inline_image(node, cids):
                ref = self.blob_store.put(
                    account_id=account_id,
                    message_id=external_id,
                    part_id=node.part_id,
                    data=data,
                    media_type=node.media_type,
                )
                inline.append(InlineImageRef(
                    content_id=node.content_id,
                    content_type=node.media_type,
                    size_bytes=len(data),
                    part_id=node.part_id,
                    storage_ref=ref,
                    filename=node.filename,
                ))
                replacements[node.content_id.lower()] = self._inline_target(data, node.media_type, ref)
                continue

            filename = node.filename
            if not filename:
                generated += 1
                filename = generated_filename(generated, node.media_type)

            if degraded or len(data) > self.attachment_max_bytes:
                if not degraded:
                    logger.info(f"{external_id}: {filename} ({len(data)} bytes) over limit; storing metadata only")
                attachments.append(AttachmentRef(
                    filename=filename,
                    content_type=node.media_type,
                    size_bytes=len(data),
                    part_id=node.part_id,
                    content_id=node.content_id,
                    is_stub=True,
                ))
                continue

            ref = self.blob_store.put(
                account_id=account_id,
                message_id=external_id,
                part_id=node.part_id,
                data=data,
                media_type=node.media_type,
            )
            attachments.append(AttachmentRef(
                filename=filename,
                content_type=node.media_type,
                size_bytes=len(data),
                part_id=node.part_id,
                storage_ref=ref,
                content_id=node.content_id,
            ))
            if node.content_id:
                replacements.setdefault(node.content_id.lower(), self.blob_store.url_for(ref))

        return ExtractedParts(
            attachments=tuple(attachments),
            inline_images=tuple(inline),
            markup=rewrite_cid_references(markup, replacements) if markup else markup,
        )

    def _inline_target(self, data: bytes, media_type: str, storage_ref: str) -> str:
        if len(data) <= self.inline_data_max_bytes:
            return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"
        return self.blob_store.url_for(storage_ref)


def rewrite_cid_references(markup: str, replacements: dict[str, str]) -> str:
    """Replace each resolvable cid: reference; unknown ones are left alone."""
    if not replacements:
        return markup

    def sub(m: re.Match) -> str:
        target = replacements.get(unquote(m.group("cid")).strip("<>").lower())
        return f"{m.group('lead')}{target}" if target else m.group(0)

    return _CID_REF_RE.sub(sub, markup)
