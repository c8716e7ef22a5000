"""Outward operations of the ingestion pipeline, used by the API and the CLI."""

from __future__ import annotations

from typing import Iterable, Optional

from mailtimeline.application.use_cases.commands import MessageCommands
from mailtimeline.application.use_cases.queries import TimelineQueries
from mailtimeline.application.use_cases.sync_account import SyncAccountUseCase, SyncOptions, SyncResult
from mailtimeline.domain.entities.records import MessageRecord
from mailtimeline.domain.entities.timeline import ThreadView, TimelinePage


class MailTimelineService:
    def __init__(self, sync: SyncAccountUseCase, queries: TimelineQueries, commands: MessageCommands) -> None:
        self.sync = sync
        self.queries = queries
        self.commands = commands

    def sync_account(self, account_id: str, options: Optional[SyncOptions] = None) -> SyncResult:
        return self.sync.run(account_id, options)

    def get_timeline(
        self,
        business_id: str,
        page: int = 1,
        page_size: Optional[int] = None,
        groups: Iterable[str] = (),
        collapse_threads: bool = True,
    ) -> TimelinePage:
        return self.queries.get_timeline(business_id, page, page_size, groups, collapse_threads)

    def get_contact_timeline(
        self,
        contact_id: str,
        page: int = 1,
        page_size: Optional[int] = None,
        groups: Iterable[str] = (),
        collapse_threads: bool = True,
    ) -> TimelinePage:
        return self.queries.get_contact_timeline(contact_id, page, page_size, groups, collapse_threads)

    def get_thread(self, thread_id: str, include_quoted: bool = False, include_signatures: bool = False) -> ThreadView:
        return self.queries.get_thread(thread_id, include_quoted, include_signatures)

    def manually_associate(self, message_id: str, business_id: str, contact_id: Optional[str] = None) -> MessageRecord:
        return self.commands.manually_associate(message_id, business_id, contact_id)

    def set_message_status(
        self,
        message_id: str,
        read: Optional[bool] = None,
        starred: Optional[bool] = None,
        deleted: Optional[bool] = None,
    ) -> MessageRecord:
        return self.commands.set_message_status(message_id, read=read, starred=starred, deleted=deleted)
