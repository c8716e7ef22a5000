"""Wire the pipeline from Settings."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from mailtimeline.application.association.associator import BusinessContactAssociator
from mailtimeline.application.extraction.extractor import ContentExtractor
from mailtimeline.application.ports.checkpoint_store import CheckpointStore
from mailtimeline.application.ports.email_source import AccountDirectory, EmailSource
from mailtimeline.application.ports.message_repository import BusinessEventSource, MessageRepository
from mailtimeline.application.service import MailTimelineService
from mailtimeline.application.threading.identifier import ThreadIdentifier
from mailtimeline.application.timeline.aggregator import TimelineAggregator
from mailtimeline.application.use_cases.commands import MessageCommands
from mailtimeline.application.use_cases.ingest_email import IngestMessageUseCase
from mailtimeline.application.use_cases.queries import TimelineQueries
from mailtimeline.application.use_cases.sync_account import SyncAccountUseCase
from mailtimeline.infrastructure.accounts import AccountConfig, accounts_from_env, credential_lookup
from mailtimeline.infrastructure.attachments.s3_store import s3_store_from_settings
from mailtimeline.infrastructure.attachments.store import BlobStore, InMemoryBlobStore
from mailtimeline.infrastructure.email.attachments import AttachmentExtractor
from mailtimeline.infrastructure.email.providers.imap.auth import ImapAuthenticator
from mailtimeline.infrastructure.email.providers.imap.client import ImapEmailSource
from mailtimeline.infrastructure.settings import Settings
from mailtimeline.infrastructure.stores.memory import (
    InMemoryAccountDirectory,
    InMemoryCheckpointStore,
    InMemoryEventSource,
    InMemoryMessageRepository,
)
from mailtimeline.infrastructure.stores.sqlite_repository import (
    SQLiteCheckpointStore,
    SQLiteDatabase,
    SQLiteMessageRepository,
)


@dataclass
class Container:
    service: MailTimelineService
    repository: MessageRepository
    accounts: AccountDirectory
    source: EmailSource
    ingest: IngestMessageUseCase
    account_ids: list[str]


def build_blob_store(settings: Settings) -> BlobStore:
    if settings.blob_backend == "s3":
        logger.info(f"Attachment storage: S3 bucket {settings.s3_bucket}")
        return s3_store_from_settings(settings)
    logger.info("Attachment storage: in-memory")
    return InMemoryBlobStore(prefix=settings.s3_prefix)


def build_stores(settings: Settings) -> tuple[MessageRepository, CheckpointStore]:
    if settings.store_backend == "sqlite":
        db = SQLiteDatabase(settings.sqlite_path)
        return SQLiteMessageRepository(db), SQLiteCheckpointStore(db)
    logger.warning("Using in-memory stores; nothing survives a restart")
    return InMemoryMessageRepository(), InMemoryCheckpointStore()


def build_imap_source(settings: Settings, configs: list[AccountConfig]) -> ImapEmailSource:
    authenticator = ImapAuthenticator(
        host=settings.imap_host,
        port=settings.imap_port,
        timeout=settings.imap_timeout_seconds,
    )
    return ImapEmailSource(
        credentials=credential_lookup(configs),
        authenticator=authenticator,
        folder=settings.imap_folder,
        gmail_extensions=settings.imap_gmail_extensions,
    )


def build_container(
    settings: Settings,
    *,
    configs: Optional[list[AccountConfig]] = None,
    source: Optional[EmailSource] = None,
    repository: Optional[MessageRepository] = None,
    checkpoints: Optional[CheckpointStore] = None,
    events: Optional[BusinessEventSource] = None,
    blob_store: Optional[BlobStore] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Container:
    """Build every collaborator from settings; any of them can be injected instead."""
    if configs is None:
        configs = accounts_from_env(settings.mail_accounts)
    directory = InMemoryAccountDirectory(c.account for c in configs)

    if repository is None or checkpoints is None:
        default_repo, default_checkpoints = build_stores(settings)
        # Explicit None checks: the in-memory stores define __len__
        repository = default_repo if repository is None else repository
        checkpoints = default_checkpoints if checkpoints is None else checkpoints
    if source is None:
        source = build_imap_source(settings, configs)
    if blob_store is None:
        blob_store = build_blob_store(settings)
    if events is None:
        events = InMemoryEventSource()
    extractor = ContentExtractor()

    ingest = IngestMessageUseCase(
        repository=repository,
        attachments=AttachmentExtractor(
            blob_store,
            attachment_max_bytes=settings.attachment_max_bytes,
            inline_data_max_bytes=settings.inline_data_max_bytes,
        ),
        extractor=extractor,
        threads=ThreadIdentifier(repository, window_days=settings.thread_window_days),
        associator=BusinessContactAssociator(repository, settings.freemail_domains),
        max_mime_depth=settings.max_mime_depth,
    )
    sync = SyncAccountUseCase(
        accounts=directory,
        source=source,
        checkpoints=checkpoints,
        ingest=ingest,
        page_size=settings.fetch_page_size,
        message_parallelism=settings.message_parallelism,
        max_retries=settings.max_retries,
        backoff_base_seconds=settings.backoff_base_seconds,
        backoff_max_seconds=settings.backoff_max_seconds,
        sleep=sleep,
    )
    aggregator = TimelineAggregator(
        repository,
        events,
        extractor=extractor,
        default_page_size=settings.timeline_page_size,
        max_page_size=settings.timeline_max_page_size,
    )
    service = MailTimelineService(sync, TimelineQueries(aggregator), MessageCommands(repository))
    return Container(
        service=service,
        repository=repository,
        accounts=directory,
        source=source,
        ingest=ingest,
        account_ids=directory.account_ids(),
    )
