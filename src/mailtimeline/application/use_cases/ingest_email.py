"""Turn one raw provider message into a committed, threaded, associated record."""

from __future__ import annotations

from dataclasses import dataclass, replace

from loguru import logger

from mailtimeline.application.association.associator import BusinessContactAssociator
from mailtimeline.application.extraction.extractor import ContentExtractor
from mailtimeline.application.ports.email_source import RawMessage
from mailtimeline.application.ports.message_repository import MessageRepository, UpsertOutcome
from mailtimeline.application.threading.identifier import ThreadIdentifier, subject_key
from mailtimeline.domain.entities.content import ExtractedContent
from mailtimeline.domain.entities.email_message import NormalizedMessage
from mailtimeline.domain.entities.records import MailAccount, MessageRecord
from mailtimeline.infrastructure.email.attachments import AttachmentExtractor
from mailtimeline.infrastructure.email.mapper import rfc822_to_normalized_message
from mailtimeline.infrastructure.email.mime import DEFAULT_MAX_DEPTH


@dataclass(frozen=True)
class PreparedMessage:
    """Output of the parallel half of the pipeline."""

    raw: RawMessage
    message: NormalizedMessage
    extraction: ExtractedContent


class IngestMessageUseCase:
    """Normalize, extract, thread, associate and commit a single message.

    Flow:
    1. prepare(): MIME normalization, attachment extraction, content extraction.
       Pure per message, so the sync use case runs it on a thread pool.
    2. commit(): thread assignment, association and the idempotent upsert.
       Runs sequentially in sent_at order so threading within a page is
       deterministic.

    Re-processing a committed message keeps its thread, its association and
    its normalized content; only the extraction and provider labels refresh.
    An explicit resync recomputes thread and association (manual
    associations are never replaced).
    """

    def __init__(
        self,
        repository: MessageRepository,
        attachments: AttachmentExtractor,
        extractor: ContentExtractor,
        threads: ThreadIdentifier,
        associator: BusinessContactAssociator,
        max_mime_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self.repository = repository
        self.attachments = attachments
        self.extractor = extractor
        self.threads = threads
        self.associator = associator
        self.max_mime_depth = max_mime_depth

    def prepare(self, account: MailAccount, raw: RawMessage) -> PreparedMessage:
        """Parse and extract one message.

        Raises:
            ParseFailure: the message has no usable header section
            BlobStoreError: storing a part failed (retryable)
        """
        message, tree, selection = rfc822_to_normalized_message(
            raw, own_addresses=account.own_addresses(), max_depth=self.max_mime_depth
        )
        parts = self.attachments.extract(raw.account_id, raw.external_id, tree, selection, message.markup_body)
        message = replace(
            message,
            attachments=parts.attachments,
            inline_images=parts.inline_images,
            markup_body=parts.markup,
        )
        if message.degraded:
            logger.warning(f"{raw.account_id}/{raw.external_id}: message decoded with degraded parts")

        extraction = self.extractor.extract(message.text_body, message.markup_body)
        return PreparedMessage(raw=raw, message=message, extraction=extraction)

    def commit(self, account: MailAccount, prepared: PreparedMessage, resync: bool = False) -> UpsertOutcome:
        raw, message = prepared.raw, prepared.message
        existing = self.repository.get_message(raw.account_id, raw.external_id)

        if existing is not None and not resync:
            record = replace(existing, extraction=prepared.extraction, labels=raw.labels)
        else:
            # associate() returns a stored manual association untouched
            record = MessageRecord(
                message=message,
                thread=self.threads.assign(message, resync=resync),
                association=self.associator.associate(message, account),
                extraction=prepared.extraction,
                workspace_id=account.workspace_id,
                subject_key=subject_key(message.subject),
                is_read=existing.is_read if existing else raw.is_read,
                is_starred=existing.is_starred if existing else False,
                is_deleted=existing.is_deleted if existing else False,
                labels=raw.labels,
            )

        outcome = self.repository.upsert_normalized_message(raw.account_id, raw.external_id, record)
        logger.debug(
            f"{outcome} {record.id}: thread={record.thread_id} ({record.thread.confidence.value}), "
            f"business={record.association.business_id} ({record.association.confidence.value})"
        )
        return outcome

    def ingest(self, account: MailAccount, raw: RawMessage, resync: bool = False) -> UpsertOutcome:
        return self.commit(account, self.prepare(account, raw), resync=resync)
