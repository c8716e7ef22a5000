from __future__ import annotations
from datetime import datetime
from typing import Iterable, Literal, Optional, Protocol

from mailtimeline.domain.entities.association import AssociationResult
from mailtimeline.domain.entities.records import Business, Contact, MessageRecord
from mailtimeline.domain.entities.thread import ThreadCandidate
from mailtimeline.domain.entities.timeline import TimelineEvent

UpsertOutcome = Literal["created", "updated"]

class MessageRepository(Protocol):
    """Persistence collaborator. Implementations must be safe for concurrent use."""

    def upsert_normalized_message(self, account_id: str, external_id: str, record: MessageRecord) -> UpsertOutcome: ...

    def get_message(self, account_id: str, external_id: str) -> Optional[MessageRecord]: ...

    def get_message_by_id(self, message_id: str) -> Optional[MessageRecord]: ...

    def find_by_provider_thread(self, account_id: str, thread_hint: str) -> Optional[MessageRecord]: ...

    def find_by_rfc_message_ids(self, account_id: str, message_ids: Iterable[str]) -> list[MessageRecord]: ...

    def find_thread_candidates(
        self, account_id: str, subject_key: str, participants: frozenset[str], since: datetime
    ) -> list[ThreadCandidate]: ...

    def find_contacts_by_address(self, workspace_id: str, addresses: Iterable[str]) -> list[Contact]: ...

    def get_contact(self, contact_id: str) -> Optional[Contact]: ...

    def find_businesses_by_address_or_domain(self, workspace_id: str, candidates: Iterable[str]) -> list[Business]: ...

    def list_messages_for_business(self, business_id: str) -> list[MessageRecord]: ...

    def list_thread(self, thread_id: str) -> list[MessageRecord]: ...

    def save_association(self, message_id: str, result: AssociationResult) -> MessageRecord: ...

    def set_status(
        self,
        message_id: str,
        *,
        read: Optional[bool] = None,
        starred: Optional[bool] = None,
        deleted: Optional[bool] = None,
    ) -> MessageRecord: ...

class BusinessEventSource(Protocol):
    """Non-email timeline events (activities, tickets, offers, SMS)."""

    def list_events(self, business_id: str) -> list[TimelineEvent]: ...
