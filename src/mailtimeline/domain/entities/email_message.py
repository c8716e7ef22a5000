from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from mailtimeline.domain.entities.attachment import AttachmentRef, InlineImageRef


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


@dataclass(frozen=True)
class EmailAddress:
    name: str
    email: str  # always lower-cased

    @property
    def domain(self) -> str:
        return self.email.rsplit("@", 1)[-1] if "@" in self.email else ""

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>" if self.name else self.email


@dataclass(frozen=True)
class HeaderBag:
    message_id: Optional[str] = None
    in_reply_to: Optional[str] = None
    references: tuple[str, ...] = ()
    importance: str = "normal"
    is_signed: bool = False
    is_encrypted: bool = False

    def parent_ids(self) -> list[str]:
        """Ancestor Message-IDs, nearest parent first."""
        out: list[str] = []
        if self.in_reply_to:
            out.append(self.in_reply_to)
        for ref in reversed(self.references):
            if ref not in out:
                out.append(ref)
        return out


@dataclass(frozen=True)
class NormalizedMessage:
    external_id: str
    account_id: str
    thread_hint: Optional[str]
    subject: str
    from_address: Optional[EmailAddress]
    to: tuple[EmailAddress, ...]
    cc: tuple[EmailAddress, ...]
    bcc: tuple[EmailAddress, ...]
    sent_at: datetime
    text_body: str
    markup_body: Optional[str] = None
    attachments: tuple[AttachmentRef, ...] = ()
    inline_images: tuple[InlineImageRef, ...] = ()
    headers: HeaderBag = field(default_factory=HeaderBag)
    reply_to: tuple[EmailAddress, ...] = ()
    received_at: Optional[datetime] = None
    direction: Direction = Direction.INBOUND
    degraded: bool = False
    has_parallel_bodies: bool = False

    def participants(self) -> frozenset[str]:
        """Lower-cased from ∪ to ∪ cc."""
        addrs = list(self.to) + list(self.cc)
        if self.from_address:
            addrs.append(self.from_address)
        return frozenset(a.email for a in addrs if a.email)
