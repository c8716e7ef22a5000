"""Tests for the SQLite repository and checkpoint store."""

from datetime import timedelta

import pytest

from fakes import BASE_TIME, build_record
from mailtimeline.application.ports.email_source import EmailCursor
from mailtimeline.domain.entities.association import AssociationConfidence, AssociationResult
from mailtimeline.domain.entities.records import Business, Contact
from mailtimeline.domain.errors import NotFoundError
from mailtimeline.infrastructure.stores.sqlite_repository import (
    SQLiteCheckpointStore,
    SQLiteDatabase,
    SQLiteMessageRepository,
)


@pytest.fixture
def db(tmp_path):
    return SQLiteDatabase(tmp_path / "mail.db")


@pytest.fixture
def repo(db):
    return SQLiteMessageRepository(db)


class TestMessages:
    def test_upsert_outcomes(self, repo):
        record = build_record("1", business_id="b1")

        assert repo.upsert_normalized_message("acct", "1", record) == "created"
        assert repo.upsert_normalized_message("acct", "1", record) == "updated"
        assert len(repo.list_messages_for_business("b1")) == 1

    def test_round_trip(self, repo):
        record = build_record("1", business_id="b1", subject="Re: Offer", message_id="a@acme.no",
                              text="Thanks.\n\nOn Jan 1, 2024, J Doe wrote:\n> original")
        repo.upsert_normalized_message("acct", "1", record)

        loaded = repo.get_message("acct", "1")

        assert loaded.id == "acct:1"
        assert loaded.message.subject == "Re: Offer"
        assert loaded.message.from_address.email == "bob@acme.no"
        assert loaded.message.sent_at == BASE_TIME
        assert loaded.message.headers.message_id == "a@acme.no"
        assert loaded.thread == record.thread
        assert loaded.association == record.association
        assert loaded.extraction.new_text == "Thanks."
        assert loaded.extraction.reconstruct() == record.message.text_body
        assert repo.get_message_by_id("acct:1").id == "acct:1"
        assert repo.get_message("acct", "missing") is None

    def test_lookup_by_rfc_message_id(self, repo):
        repo.upsert_normalized_message("acct", "1", build_record("1", message_id="a@acme.no"))
        repo.upsert_normalized_message("other", "1", build_record("1", account_id="other", message_id="a@acme.no"))

        found = repo.find_by_rfc_message_ids("acct", ["a@acme.no", "b@acme.no"])

        assert [r.id for r in found] == ["acct:1"]
        assert repo.find_by_rfc_message_ids("acct", []) == []

    def test_thread_candidates(self, repo):
        repo.upsert_normalized_message("acct", "1", build_record("1", thread_id="T1", subject="Status"))
        repo.upsert_normalized_message("acct", "2", build_record(
            "2", thread_id="T2", subject="Status", sender="carol@other.no", to=("dave@other.no",)
        ))
        repo.upsert_normalized_message("acct", "3", build_record(
            "3", thread_id="T3", subject="Status", sent_at=BASE_TIME - timedelta(days=90)
        ))

        candidates = repo.find_thread_candidates(
            "acct", "status", frozenset({"bob@acme.no"}), since=BASE_TIME - timedelta(days=30)
        )

        assert [c.thread_id for c in candidates] == ["T1"]

    def test_list_thread_is_chronological(self, repo):
        repo.upsert_normalized_message("acct", "2", build_record("2", thread_id="T1", sent_at=BASE_TIME + timedelta(hours=1)))
        repo.upsert_normalized_message("acct", "1", build_record("1", thread_id="T1"))

        assert [r.id for r in repo.list_thread("T1")] == ["acct:1", "acct:2"]

    def test_save_association_moves_business(self, repo):
        repo.upsert_normalized_message("acct", "1", build_record("1", business_id="b1"))

        repo.save_association("acct:1", AssociationResult("b2", None, AssociationConfidence.EXACT, manual=True))

        assert repo.list_messages_for_business("b1") == []
        assert repo.list_messages_for_business("b2")[0].association.manual is True

    def test_set_status(self, repo):
        repo.upsert_normalized_message("acct", "1", build_record("1"))

        record = repo.set_status("acct:1", starred=True)

        assert record.is_starred is True
        assert record.is_read is False
        assert repo.get_message("acct", "1").is_starred is True

    def test_unknown_message(self, repo):
        with pytest.raises(NotFoundError):
            repo.set_status("acct:nope", read=True)


class TestDirectory:
    def test_contacts_by_address(self, repo):
        repo.add_contact("ws", Contact("c1", "b1", "Bob@Acme.no", name="Bob"))
        repo.add_contact("other", Contact("c2", "b2", "bob@acme.no"))

        found = repo.find_contacts_by_address("ws", ["BOB@acme.no"])

        assert [(c.contact_id, c.email) for c in found] == [("c1", "bob@acme.no")]

    def test_contact_by_id(self, repo):
        repo.add_contact("ws", Contact("c1", "b1", "bob@acme.no", name="Bob"))

        assert repo.get_contact("c1") == Contact("c1", "b1", "bob@acme.no", name="Bob")
        assert repo.get_contact("nobody") is None

    def test_business_by_domain_and_website(self, repo):
        repo.add_business("ws", Business("b1", "Acme", domains=("acme.no",)))
        repo.add_business("ws", Business("b2", "Fjord", website="https://www.fjord.no"))
        repo.add_business("ws", Business("b3", "Ola", email="ola@gmail.com"))

        assert [b.business_id for b in repo.find_businesses_by_address_or_domain("ws", ["acme.no"])] == ["b1"]
        assert [b.business_id for b in repo.find_businesses_by_address_or_domain("ws", ["fjord.no"])] == ["b2"]
        assert [b.business_id for b in repo.find_businesses_by_address_or_domain("ws", ["ola@gmail.com"])] == ["b3"]
        assert repo.find_businesses_by_address_or_domain("other", ["acme.no"]) == []


class TestCheckpoints:
    def test_save_and_load(self, db):
        store = SQLiteCheckpointStore(db)
        assert store.load("acct") is None

        store.save("acct", EmailCursor("acct", "42:10"))
        store.save("acct", EmailCursor("acct", "42:20"))

        assert store.load("acct") == EmailCursor("acct", "42:20")

    def test_survives_reopen(self, tmp_path):
        SQLiteCheckpointStore(SQLiteDatabase(tmp_path / "mail.db")).save("acct", EmailCursor("acct", "7:1"))

        assert SQLiteCheckpointStore(SQLiteDatabase(tmp_path / "mail.db")).load("acct").position == "7:1"
