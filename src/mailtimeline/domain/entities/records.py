from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from mailtimeline.domain.entities.association import AssociationResult
from mailtimeline.domain.entities.content import ExtractedContent
from mailtimeline.domain.entities.email_message import NormalizedMessage
from mailtimeline.domain.entities.thread import ThreadAssignment


def record_id(account_id: str, external_id: str) -> str:
    return f"{account_id}:{external_id}"


@dataclass(frozen=True)
class MailAccount:
    account_id: str
    workspace_id: str
    address: str
    provider: str = "imap"
    aliases: tuple[str, ...] = ()

    def own_addresses(self) -> frozenset[str]:
        return frozenset(a.lower().strip() for a in (self.address, *self.aliases) if a)


@dataclass(frozen=True)
class Contact:
    contact_id: str
    business_id: str
    email: str
    name: str = ""
    last_activity_at: Optional[datetime] = None


@dataclass(frozen=True)
class Business:
    business_id: str
    name: str
    email: Optional[str] = None
    website: Optional[str] = None
    domains: tuple[str, ...] = ()
    last_activity_at: Optional[datetime] = None

    def known_domains(self) -> frozenset[str]:
        """Declared domains plus the ones implied by email and website."""
        out = {d.lower().strip() for d in self.domains if d}
        if self.email and "@" in self.email:
            out.add(self.email.rsplit("@", 1)[1].lower())
        if self.website:
            host = self.website.lower().strip()
            for prefix in ("https://", "http://"):
                if host.startswith(prefix):
                    host = host[len(prefix):]
            host = host.split("/", 1)[0].split(":", 1)[0]
            if host.startswith("www."):
                host = host[4:]
            if host:
                out.add(host)
        return frozenset(out)


@dataclass(frozen=True)
class MessageRecord:
    """Persisted shape of one ingested message, unique on (account_id, external_id)."""

    message: NormalizedMessage
    thread: ThreadAssignment
    association: AssociationResult
    extraction: ExtractedContent
    workspace_id: str = ""
    subject_key: str = ""
    is_read: bool = False
    is_starred: bool = False
    is_deleted: bool = False
    labels: tuple[str, ...] = field(default_factory=tuple)
    superseded_by: Optional[str] = None

    @property
    def id(self) -> str:
        return record_id(self.message.account_id, self.message.external_id)

    @property
    def account_id(self) -> str:
        return self.message.account_id

    @property
    def external_id(self) -> str:
        return self.message.external_id

    @property
    def thread_id(self) -> str:
        return self.thread.thread_id

    @property
    def sent_at(self) -> datetime:
        return self.message.sent_at

    @property
    def visible(self) -> bool:
        return not self.is_deleted and self.superseded_by is None
