"""Tests for the account sync use case."""

from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from fakes import ACCOUNT, BASE_TIME, FakeEmailSource, build_eml, build_raw
from mailtimeline.application.association.associator import BusinessContactAssociator
from mailtimeline.application.extraction.extractor import ContentExtractor
from mailtimeline.application.ports.email_source import RawMessage
from mailtimeline.application.threading.identifier import ThreadIdentifier
from mailtimeline.application.use_cases.ingest_email import IngestMessageUseCase
from mailtimeline.application.use_cases.sync_account import SyncAccountUseCase, SyncOptions
from mailtimeline.domain.errors import (
    BlobStoreError,
    NotFoundError,
    ProviderAuthError,
    ProviderTransientError,
)
from mailtimeline.infrastructure.attachments.store import InMemoryBlobStore
from mailtimeline.infrastructure.email.attachments import AttachmentExtractor
from mailtimeline.infrastructure.stores.memory import InMemoryAccountDirectory, InMemoryCheckpointStore

ATTACHED = """--M
Content-Type: text/plain; charset=utf-8

See attached.
--M
Content-Type: application/pdf
Content-Disposition: attachment; filename="report.pdf"
Content-Transfer-Encoding: base64

JVBERi0xLjQK
--M--
"""


def three_messages():
    return [
        build_raw(str(i), subject=f"Message {i}", message_id=f"m{i}@acme.no", sent_at=BASE_TIME + timedelta(hours=i))
        for i in range(1, 4)
    ]


class FlakyBlobStore(InMemoryBlobStore):
    """Fails the first ``failures`` puts."""

    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures

    def put(self, **kwargs) -> str:
        if self.failures:
            self.failures -= 1
            raise BlobStoreError("S3 unavailable")
        return super().put(**kwargs)


class GappySource(FakeEmailSource):
    """The first page also lists a message the provider could not return."""

    def fetch_messages(self, account, since, max_count):
        page = super().fetch_messages(account, since, max_count)
        return replace(page, failed_ids=("gone",)) if since is None else page


class ExplodingExtractor(ContentExtractor):
    def extract(self, text, markup=None):
        raise RuntimeError("boom")


@pytest.fixture
def checkpoints():
    return InMemoryCheckpointStore()


@pytest.fixture
def delays():
    return []


@pytest.fixture
def make_sync(ingest, checkpoints, delays):
    def make(source: FakeEmailSource, **kwargs) -> SyncAccountUseCase:
        kwargs.setdefault("page_size", 2)
        return SyncAccountUseCase(
            accounts=InMemoryAccountDirectory([ACCOUNT]),
            source=source,
            checkpoints=checkpoints,
            ingest=ingest,
            message_parallelism=2,
            sleep=delays.append,
            **kwargs,
        )

    return make


class TestSync:
    def test_first_sync_creates_everything(self, make_sync, repository, checkpoints):
        source = FakeEmailSource(three_messages())

        result = make_sync(source).run("acct")

        assert result.processed == 3
        assert result.created == 3
        assert result.updated == 0
        assert result.skipped == 0
        assert result.errors == []
        assert result.aborted is False
        assert len(repository) == 3
        assert checkpoints.load("acct").position == "3"
        assert len(source.fetches) == 2

    def test_second_sync_starts_from_checkpoint(self, make_sync, repository):
        source = FakeEmailSource(three_messages())
        sync = make_sync(source)
        sync.run("acct")

        result = sync.run("acct")

        assert result.processed == 0
        assert source.fetches[-1].position == "3"

    def test_resync_updates_without_duplicates(self, make_sync, repository):
        source = FakeEmailSource(three_messages())
        sync = make_sync(source)
        sync.run("acct")
        ids = ("acct:1", "acct:2", "acct:3")
        threads = [repository.get_message_by_id(i).thread_id for i in ids]

        result = sync.run("acct", SyncOptions(resync=True))

        assert result.created == 0
        assert result.updated == 3
        assert len(repository) == 3
        assert [repository.get_message_by_id(i).thread_id for i in ids] == threads

    def test_resync_keeps_user_flags(self, make_sync, repository):
        source = FakeEmailSource(three_messages())
        sync = make_sync(source)
        sync.run("acct")
        repository.set_status("acct:1", starred=True, read=True)

        sync.run("acct", SyncOptions(resync=True))

        record = repository.get_message("acct", "1")
        assert record.is_starred is True
        assert record.is_read is True

    def test_max_pages(self, make_sync, checkpoints):
        result = make_sync(FakeEmailSource(three_messages())).run("acct", SyncOptions(max_pages=1))

        assert result.processed == 2
        assert checkpoints.load("acct").position == "2"

    def test_unknown_account(self, make_sync):
        with pytest.raises(NotFoundError):
            make_sync(FakeEmailSource()).run("nobody")

    def test_commit_follows_sent_order(self, make_sync, repository):
        # The reply is fetched first but sent later; it must still join the parent's thread
        reply = build_raw("2", subject="Re: Offer", in_reply_to="parent@acme.no",
                          sent_at=BASE_TIME + timedelta(hours=1))
        parent = build_raw("1", subject="Offer", message_id="parent@acme.no")

        make_sync(FakeEmailSource([reply, parent])).run("acct")

        assert repository.get_message("acct", "2").thread_id == repository.get_message("acct", "1").thread_id

    def test_dateless_message_with_naive_receive_time(self, make_sync, repository):
        dateless = RawMessage(
            account_id="acct",
            external_id="1",
            rfc822_bytes=build_eml(subject="No date", sent_at=None),
            received_at=datetime(2024, 1, 1, 9, 0),
        )

        result = make_sync(FakeEmailSource([dateless, build_raw("2", subject="Dated")])).run("acct")

        assert result.created == 2
        assert result.errors == []
        assert repository.get_message("acct", "1").message.sent_at == BASE_TIME - timedelta(hours=1)


class TestFailures:
    def test_unparsable_message_is_skipped(self, make_sync, repository):
        messages = three_messages()
        messages.insert(1, build_raw("bad", b""))

        result = make_sync(FakeEmailSource(messages)).run("acct")

        assert result.processed == 4
        assert result.created == 3
        assert result.skipped == 1
        assert [(e.external_id, e.error_code) for e in result.errors] == [("bad", "PARSE_FAILURE")]
        assert result.aborted is False

    def test_message_the_provider_could_not_return_is_recorded(self, make_sync):
        result = make_sync(GappySource(three_messages())).run("acct")

        assert result.processed == 4
        assert result.created == 3
        assert result.skipped == 1
        assert [(e.external_id, e.error_code) for e in result.errors] == [("gone", "FETCH_FAILED")]

    def test_unexpected_error_is_skipped(self, make_sync, ingest):
        ingest.extractor = ExplodingExtractor()

        result = make_sync(FakeEmailSource(three_messages())).run("acct")

        assert result.skipped == 3
        assert {e.error_code for e in result.errors} == {"INTERNAL_ERROR"}
        assert result.aborted is False

    def test_auth_refreshed_once_then_recovers(self, make_sync):
        source = FakeEmailSource(three_messages(), failures=[ProviderAuthError("expired token")])

        result = make_sync(source).run("acct")

        assert source.refreshes == 1
        assert result.created == 3
        assert result.aborted is False

    def test_auth_failure_after_refresh_aborts(self, make_sync, repository):
        source = FakeEmailSource(three_messages(), failures=[ProviderAuthError("bad"), ProviderAuthError("still bad")])

        result = make_sync(source).run("acct")

        assert source.refreshes == 1
        assert result.aborted is True
        assert result.processed == 0
        assert [(e.external_id, e.error_code) for e in result.errors] == [("", "PROVIDER_AUTH")]
        assert len(repository) == 0

    def test_transient_fetch_errors_are_retried(self, make_sync, delays):
        source = FakeEmailSource(
            three_messages(), failures=[ProviderTransientError("rate limited"), ProviderTransientError("timeout")]
        )

        result = make_sync(source).run("acct")

        assert delays == [1.0, 2.0]
        assert result.created == 3
        assert result.aborted is False

    def test_retries_exhausted_abort_the_unit(self, make_sync, delays):
        source = FakeEmailSource(three_messages(), failures=[ProviderTransientError("down")] * 3)

        result = make_sync(source, max_retries=2).run("acct")

        assert delays == [1.0, 2.0]
        assert result.aborted is True
        assert result.errors[0].error_code == "PROVIDER_TRANSIENT"

    def test_blob_store_failure_is_retried_per_message(self, repository, checkpoints, delays, account):
        ingest = IngestMessageUseCase(
            repository=repository,
            attachments=AttachmentExtractor(FlakyBlobStore(failures=1), attachment_max_bytes=1024, inline_data_max_bytes=64),
            extractor=ContentExtractor(),
            threads=ThreadIdentifier(repository),
            associator=BusinessContactAssociator(repository),
        )
        raw = build_raw("1", body=ATTACHED, content_type='multipart/mixed; boundary="M"')
        sync = SyncAccountUseCase(
            accounts=InMemoryAccountDirectory([account]),
            source=FakeEmailSource([raw]),
            checkpoints=checkpoints,
            ingest=ingest,
            sleep=delays.append,
        )

        result = sync.run("acct")

        assert delays == [1.0]
        assert result.created == 1
        assert repository.get_message("acct", "1").message.attachments[0].storage_ref is not None


class TestBackoff:
    @pytest.fixture
    def sync(self, make_sync):
        return make_sync(FakeEmailSource(), backoff_base_seconds=1.0, backoff_max_seconds=30.0)

    def test_exponential(self, sync):
        assert [sync.backoff_delay(n) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self, sync):
        assert sync.backoff_delay(10) == 30.0

    def test_retry_after_is_honored(self, sync):
        assert sync.backoff_delay(0, ProviderTransientError("slow down", retry_after=5)) == 5.0
        assert sync.backoff_delay(0, ProviderTransientError("slow down", retry_after=120)) == 30.0
