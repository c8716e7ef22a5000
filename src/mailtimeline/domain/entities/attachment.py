from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

@dataclass(frozen=True)
class AttachmentRef:
    filename: str
    content_type: str
    size_bytes: int
    part_id: str

    # Where the bytes live; None for metadata-only stubs
    storage_ref: Optional[str] = None
    content_id: Optional[str] = None
    is_stub: bool = False

@dataclass(frozen=True)
class InlineImageRef:
    content_id: str
    content_type: str
    size_bytes: int
    part_id: str
    storage_ref: str
    filename: Optional[str] = None
