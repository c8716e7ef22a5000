"""Tests for single-message ingest: processing the same input twice changes nothing."""

from datetime import timedelta

import pytest

from fakes import BASE_TIME, build_raw
from mailtimeline.domain.entities.association import AssociationConfidence
from mailtimeline.domain.entities.records import Business, Contact

REPLY_BODY = "Works for me.\n\nOn Mon, Jan 1, 2024 at 10:00, Me <me@mycrm.com> wrote:\n> Does Tuesday work?"


@pytest.fixture
def directory(repository):
    repository.add_business("ws", Business("b1", "Acme", domains=("acme.no",)))
    repository.add_contact("ws", Contact("c1", "b1", "bob@acme.no", name="Bob"))
    return repository


@pytest.fixture
def reply():
    return build_raw(
        "2",
        subject="Re: Meeting",
        body=REPLY_BODY,
        message_id="reply@acme.no",
        in_reply_to="parent@acme.no",
        sent_at=BASE_TIME + timedelta(hours=1),
    )


class TestIdempotence:
    def test_prepare_is_deterministic(self, ingest, account, reply):
        first = ingest.prepare(account, reply)
        second = ingest.prepare(account, reply)

        assert first.message == second.message
        assert first.extraction == second.extraction
        assert first.extraction.new_text == "Works for me."

    def test_reprocessing_yields_the_same_record(self, ingest, directory, account, reply):
        ingest.ingest(account, build_raw("1", subject="Meeting", message_id="parent@acme.no"))
        assert ingest.ingest(account, reply) == "created"
        first = directory.get_message("acct", "2")

        assert ingest.ingest(account, reply) == "updated"
        again = directory.get_message("acct", "2")
        assert ingest.ingest(account, reply, resync=True) == "updated"
        resynced = directory.get_message("acct", "2")

        for record in (again, resynced):
            assert record.message == first.message
            assert record.thread == first.thread
            assert record.association == first.association
            assert record.extraction == first.extraction
        assert first.thread_id == directory.get_message("acct", "1").thread_id
        assert first.association.business_id == "b1"
        assert first.association.confidence == AssociationConfidence.EXACT
        assert len(directory) == 2
