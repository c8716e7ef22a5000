"""Lock-protected in-memory adapters for every persistence port."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional

from mailtimeline.application.ports.email_source import EmailCursor
from mailtimeline.application.ports.message_repository import UpsertOutcome
from mailtimeline.domain.entities.association import AssociationResult
from mailtimeline.domain.entities.records import Business, Contact, MailAccount, MessageRecord
from mailtimeline.domain.entities.thread import ThreadCandidate
from mailtimeline.domain.entities.timeline import TimelineEvent
from mailtimeline.domain.errors import NotFoundError


def business_matches(business: Business, candidates: set[str]) -> bool:
    """Candidates mix full addresses and bare domains."""
    if business.email and business.email.lower() in candidates:
        return True
    return bool(business.known_domains() & candidates)


class InMemoryMessageRepository:
    def __init__(self) -> None:
        self._records: dict[str, MessageRecord] = {}
        self._contacts: dict[str, list[Contact]] = {}
        self._businesses: dict[str, list[Business]] = {}
        self._lock = threading.RLock()

    # CRM fixtures

    def add_contact(self, workspace_id: str, contact: Contact) -> None:
        with self._lock:
            self._contacts.setdefault(workspace_id, []).append(contact)

    def add_business(self, workspace_id: str, business: Business) -> None:
        with self._lock:
            self._businesses.setdefault(workspace_id, []).append(business)

    # Messages

    def upsert_normalized_message(self, account_id: str, external_id: str, record: MessageRecord) -> UpsertOutcome:
        with self._lock:
            outcome: UpsertOutcome = "updated" if record.id in self._records else "created"
            self._records[record.id] = record
            return outcome

    def get_message(self, account_id: str, external_id: str) -> Optional[MessageRecord]:
        with self._lock:
            return self._records.get(f"{account_id}:{external_id}")

    def get_message_by_id(self, message_id: str) -> Optional[MessageRecord]:
        with self._lock:
            return self._records.get(message_id)

    def _account_records(self, account_id: str) -> list[MessageRecord]:
        with self._lock:
            records = [r for r in self._records.values() if r.account_id == account_id]
        return sorted(records, key=lambda r: (r.sent_at, r.id))

    def find_by_provider_thread(self, account_id: str, thread_hint: str) -> Optional[MessageRecord]:
        return next((r for r in self._account_records(account_id) if r.message.thread_hint == thread_hint), None)

    def find_by_rfc_message_ids(self, account_id: str, message_ids: Iterable[str]) -> list[MessageRecord]:
        wanted = set(message_ids)
        return [r for r in self._account_records(account_id) if r.message.headers.message_id in wanted]

    def find_thread_candidates(
        self, account_id: str, subject_key: str, participants: frozenset[str], since: datetime
    ) -> list[ThreadCandidate]:
        return [
            ThreadCandidate(r.thread_id, r.external_id, r.sent_at, r.message.participants())
            for r in self._account_records(account_id)
            if r.subject_key == subject_key and r.sent_at >= since and r.message.participants() & participants
        ]

    def find_contacts_by_address(self, workspace_id: str, addresses: Iterable[str]) -> list[Contact]:
        wanted = {a.lower() for a in addresses}
        with self._lock:
            return [c for c in self._contacts.get(workspace_id, []) if c.email.lower() in wanted]

    def get_contact(self, contact_id: str) -> Optional[Contact]:
        with self._lock:
            return next((c for contacts in self._contacts.values() for c in contacts if c.contact_id == contact_id), None)

    def find_businesses_by_address_or_domain(self, workspace_id: str, candidates: Iterable[str]) -> list[Business]:
        wanted = {c.lower() for c in candidates}
        with self._lock:
            return [b for b in self._businesses.get(workspace_id, []) if business_matches(b, wanted)]

    def list_messages_for_business(self, business_id: str) -> list[MessageRecord]:
        with self._lock:
            return [r for r in self._records.values() if r.association.business_id == business_id]

    def list_thread(self, thread_id: str) -> list[MessageRecord]:
        with self._lock:
            return [r for r in self._records.values() if r.thread_id == thread_id]

    def save_association(self, message_id: str, result: AssociationResult) -> MessageRecord:
        with self._lock:
            record = self._require(message_id)
            updated = replace(record, association=result)
            self._records[message_id] = updated
            return updated

    def set_status(
        self,
        message_id: str,
        *,
        read: Optional[bool] = None,
        starred: Optional[bool] = None,
        deleted: Optional[bool] = None,
    ) -> MessageRecord:
        with self._lock:
            record = self._require(message_id)
            updated = replace(
                record,
                is_read=record.is_read if read is None else read,
                is_starred=record.is_starred if starred is None else starred,
                is_deleted=record.is_deleted if deleted is None else deleted,
            )
            self._records[message_id] = updated
            return updated

    def _require(self, message_id: str) -> MessageRecord:
        record = self._records.get(message_id)
        if record is None:
            raise NotFoundError(f"Message {message_id} not found", resource="message")
        return record

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class InMemoryCheckpointStore:
    def __init__(self) -> None:
        self._cursors: dict[str, EmailCursor] = {}
        self._lock = threading.Lock()

    def load(self, account_id: str) -> Optional[EmailCursor]:
        with self._lock:
            return self._cursors.get(account_id)

    def save(self, account_id: str, cursor: EmailCursor) -> None:
        with self._lock:
            self._cursors[account_id] = cursor


class InMemoryAccountDirectory:
    def __init__(self, accounts: Iterable[MailAccount] = ()) -> None:
        self._accounts = {a.account_id: a for a in accounts}

    def add(self, account: MailAccount) -> None:
        self._accounts[account.account_id] = account

    def get_account(self, account_id: str) -> Optional[MailAccount]:
        return self._accounts.get(account_id)

    def account_ids(self) -> list[str]:
        return sorted(self._accounts)


class InMemoryEventSource:
    """Non-email business events (activities, tickets, offers, SMS)."""

    def __init__(self, events: Iterable[TimelineEvent] = ()) -> None:
        self._events: list[TimelineEvent] = list(events)

    def add(self, event: TimelineEvent) -> None:
        self._events.append(event)

    def list_events(self, business_id: str) -> list[TimelineEvent]:
        return [e for e in self._events if e.business_id == business_id]
