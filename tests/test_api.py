"""Tests for the HTTP API."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from fakes import ACCOUNT, BASE_TIME, FakeEmailSource, build_raw
from mailtimeline.api.main import create_app
from mailtimeline.domain.entities.records import Contact
from mailtimeline.infrastructure.accounts import AccountConfig
from mailtimeline.infrastructure.attachments.store import InMemoryBlobStore
from mailtimeline.infrastructure.container import build_container
from mailtimeline.infrastructure.email.providers.imap.auth import ImapCredentials
from mailtimeline.infrastructure.settings import Settings
from mailtimeline.infrastructure.stores.memory import InMemoryMessageRepository


@pytest.fixture
def client():
    repository = InMemoryMessageRepository()
    repository.add_contact("ws", Contact("c1", "b1", "bob@acme.no", name="Bob"))
    source = FakeEmailSource([
        build_raw("1", subject="Offer", message_id="a@acme.no", body="Can you send the offer?"),
        build_raw("2", subject="Re: Offer", in_reply_to="a@acme.no", sent_at=BASE_TIME + timedelta(hours=1),
                  body="Thanks.\n\nOn Jan 1, 2024, Bob wrote:\n> Can you send the offer?"),
    ])
    container = build_container(
        Settings(store_backend="memory", _env_file=None),
        configs=[AccountConfig(account=ACCOUNT, credentials=ImapCredentials(email=ACCOUNT.address, secret="secret"))],
        source=source,
        repository=repository,
        blob_store=InMemoryBlobStore(),
        sleep=lambda _: None,
    )
    with TestClient(create_app(container)) as client:
        yield client


def sync(client):
    response = client.post("/accounts/acct/sync")
    assert response.status_code == 200
    return response.json()


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestSyncEndpoint:
    def test_sync_creates_messages(self, client):
        body = sync(client)

        assert body["account_id"] == "acct"
        assert body["created"] == 2
        assert body["aborted"] is False
        assert body["errors"] == []

    def test_resync_updates(self, client):
        sync(client)

        response = client.post("/accounts/acct/sync", json={"resync": True})

        assert response.json()["updated"] == 2

    def test_unknown_account(self, client):
        assert client.post("/accounts/nobody/sync").status_code == 404

    def test_invalid_max_pages(self, client):
        assert client.post("/accounts/acct/sync", json={"max_pages": 0}).status_code == 422


class TestTimelineEndpoint:
    def test_thread_collapsed_to_one_event(self, client):
        sync(client)

        body = client.get("/businesses/b1/timeline").json()

        assert body["total"] == 1
        assert body["has_more"] is False
        event = body["events"][0]
        assert event["event_id"] == "acct:2"
        assert event["kind"] == "email"
        assert event["thread_count"] == 2
        assert event["summary"] == "Thanks."

    def test_uncollapsed(self, client):
        sync(client)

        body = client.get("/businesses/b1/timeline", params={"collapse_threads": False}).json()

        assert [e["event_id"] for e in body["events"]] == ["acct:2", "acct:1"]

    def test_contact_timeline(self, client):
        sync(client)

        body = client.get("/contacts/c1/timeline", params={"collapse_threads": False}).json()

        assert [e["event_id"] for e in body["events"]] == ["acct:2", "acct:1"]
        assert {e["contact_id"] for e in body["events"]} == {"c1"}

    def test_unknown_contact_timeline(self, client):
        assert client.get("/contacts/nobody/timeline").status_code == 404

    def test_contact_timeline_rejects_unknown_group(self, client):
        assert client.get("/contacts/c1/timeline", params={"groups": ["bogus"]}).status_code == 400

    def test_group_filter(self, client):
        sync(client)

        assert client.get("/businesses/b1/timeline", params={"groups": ["activity"]}).json()["total"] == 0
        assert client.get("/businesses/b1/timeline", params={"groups": ["email"]}).json()["total"] == 1

    def test_unknown_group(self, client):
        assert client.get("/businesses/b1/timeline", params={"groups": ["bogus"]}).status_code == 400


class TestThreadEndpoint:
    def test_expand_thread(self, client):
        sync(client)
        thread_id = client.get("/businesses/b1/timeline").json()["events"][0]["thread_id"]

        body = client.get(f"/threads/{thread_id}").json()

        assert [m["message_id"] for m in body["messages"]] == ["acct:1", "acct:2"]
        assert body["messages"][1]["reply_style"] == "top"
        assert body["messages"][1]["new_text"] == "Thanks."
        assert "> Can you send the offer?" not in body["body"]

    def test_include_quoted(self, client):
        sync(client)
        thread_id = client.get("/businesses/b1/timeline").json()["events"][0]["thread_id"]

        body = client.get(f"/threads/{thread_id}", params={"include_quoted": True}).json()

        assert "> Can you send the offer?" in body["body"]

    def test_unknown_thread(self, client):
        assert client.get("/threads/nope").status_code == 404


class TestMessageEndpoints:
    def test_set_status(self, client):
        sync(client)

        response = client.patch("/messages/acct:1/status", json={"read": True, "starred": True})

        assert response.status_code == 200
        assert response.json()["is_read"] is True
        assert response.json()["is_starred"] is True
        assert response.json()["is_deleted"] is False

    def test_deleted_message_leaves_timeline(self, client):
        sync(client)
        client.patch("/messages/acct:2/status", json={"deleted": True})

        event = client.get("/businesses/b1/timeline").json()["events"][0]

        assert event["event_id"] == "acct:1"
        assert event["thread_count"] == 1

    def test_manual_association(self, client):
        sync(client)

        response = client.post("/messages/acct:1/association", json={"business_id": "b7"})

        assert response.status_code == 200
        assert response.json()["business_id"] == "b7"
        assert response.json()["manual"] is True
        assert client.get("/businesses/b7/timeline").json()["total"] == 1

    def test_manual_association_survives_resync(self, client):
        sync(client)
        client.post("/messages/acct:1/association", json={"business_id": "b7"})

        client.post("/accounts/acct/sync", json={"resync": True})

        assert client.get("/businesses/b7/timeline").json()["events"][0]["event_id"] == "acct:1"

    def test_unknown_message(self, client):
        assert client.patch("/messages/acct:nope/status", json={"read": True}).status_code == 404
        assert client.post("/messages/acct:nope/association", json={"business_id": "b1"}).status_code == 404
