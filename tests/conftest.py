"""Pytest fixtures for the mail timeline tests."""

import pytest

from fakes import ACCOUNT
from mailtimeline.application.association.associator import BusinessContactAssociator
from mailtimeline.application.extraction.extractor import ContentExtractor
from mailtimeline.application.threading.identifier import ThreadIdentifier
from mailtimeline.application.use_cases.ingest_email import IngestMessageUseCase
from mailtimeline.infrastructure.attachments.store import InMemoryBlobStore
from mailtimeline.infrastructure.email.attachments import AttachmentExtractor
from mailtimeline.infrastructure.stores.memory import InMemoryMessageRepository


@pytest.fixture
def account():
    return ACCOUNT


@pytest.fixture
def repository():
    return InMemoryMessageRepository()


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def attachment_extractor(blob_store):
    return AttachmentExtractor(blob_store, attachment_max_bytes=25 * 1024 * 1024, inline_data_max_bytes=64 * 1024)


@pytest.fixture
def ingest(repository, attachment_extractor):
    return IngestMessageUseCase(
        repository=repository,
        attachments=attachment_extractor,
        extractor=ContentExtractor(),
        threads=ThreadIdentifier(repository, window_days=30),
        associator=BusinessContactAssociator(repository),
    )
