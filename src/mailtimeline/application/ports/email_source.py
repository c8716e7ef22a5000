from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from mailtimeline.domain.entities.records import MailAccount

@dataclass(frozen=True)
class EmailCursor:
    # Opaque provider position (IMAP: UIDVALIDITY + last seen UID)
    account_id: str
    position: str

@dataclass(frozen=True)
class RawMessage:
    account_id: str
    external_id: str
    rfc822_bytes: bytes
    is_read: bool = False
    labels: tuple[str, ...] = ()
    provider_thread_id: Optional[str] = None
    received_at: Optional[datetime] = None

@dataclass(frozen=True)
class FetchPage:
    messages: list[RawMessage]
    next_cursor: Optional[EmailCursor]
    has_more: bool = False
    # Ids the provider listed but could not return; the cursor already covers them
    failed_ids: tuple[str, ...] = ()

class EmailSource(Protocol):
    """Provider fetch collaborator.

    Raises ProviderAuthError when credentials are rejected and
    ProviderTransientError for rate limits and timeouts.
    """

    def fetch_messages(self, account: MailAccount, since: Optional[EmailCursor], max_count: int) -> FetchPage: ...

    def refresh_auth(self, account: MailAccount) -> MailAccount: ...

class AccountDirectory(Protocol):
    def get_account(self, account_id: str) -> Optional[MailAccount]: ...
