"""SQLite persistence for message records, CRM lookups and sync cursors."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, Iterable, Optional

from loguru import logger
from pydantic import TypeAdapter

from mailtimeline.application.ports.email_source import EmailCursor
from mailtimeline.application.ports.message_repository import UpsertOutcome
from mailtimeline.domain.entities.association import AssociationResult
from mailtimeline.domain.entities.records import Business, Contact, MessageRecord
from mailtimeline.domain.entities.thread import ThreadCandidate
from mailtimeline.domain.errors import NotFoundError
from mailtimeline.infrastructure.stores.memory import business_matches

_RECORD = TypeAdapter(MessageRecord)

SCHEMA = """
    PRAGMA journal_mode=WAL;

    CREATE TABLE IF NOT EXISTS messages (
        id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL,
        external_id TEXT NOT NULL,
        workspace_id TEXT NOT NULL,
        thread_id TEXT NOT NULL,
        thread_hint TEXT,
        rfc_message_id TEXT,
        subject_key TEXT NOT NULL,
        sent_at TEXT NOT NULL,
        business_id TEXT,
        record_json TEXT NOT NULL,

        UNIQUE(account_id, external_id)
    );

    CREATE INDEX IF NOT EXISTS idx_messages_thread ON messages(thread_id);
    CREATE INDEX IF NOT EXISTS idx_messages_business ON messages(business_id);
    CREATE INDEX IF NOT EXISTS idx_messages_hint ON messages(account_id, thread_hint);
    CREATE INDEX IF NOT EXISTS idx_messages_rfc_id ON messages(account_id, rfc_message_id);
    CREATE INDEX IF NOT EXISTS idx_messages_subject ON messages(account_id, subject_key, sent_at);

    CREATE TABLE IF NOT EXISTS contacts (
        contact_id TEXT PRIMARY KEY,
        workspace_id TEXT NOT NULL,
        business_id TEXT NOT NULL,
        email TEXT NOT NULL,
        name TEXT NOT NULL DEFAULT '',
        last_activity_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_contacts_email ON contacts(workspace_id, email);

    CREATE TABLE IF NOT EXISTS businesses (
        business_id TEXT PRIMARY KEY,
        workspace_id TEXT NOT NULL,
        name TEXT NOT NULL,
        email TEXT,
        website TEXT,
        domains_json TEXT NOT NULL DEFAULT '[]',
        last_activity_at TEXT
    );

    CREATE TABLE IF NOT EXISTS checkpoints (
        account_id TEXT PRIMARY KEY,
        position TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
"""


def _ts(dt: Optional[datetime]) -> Optional[str]:
    # UTC ISO strings sort chronologically
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteDatabase:
    """Owns the database file and hands out short-lived connections."""

    def __init__(self, db_path: str | Path = "data/mailtimeline.db"):
        self.db_path = Path(db_path)
        self._ensure_db()

    def _ensure_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.executescript(SCHEMA)
        logger.info(f"SQLite database initialized at {self.db_path}")

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


class SQLiteMessageRepository:
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    @staticmethod
    def _load(row: sqlite3.Row) -> MessageRecord:
        return _RECORD.validate_json(row["record_json"])

    def _write(self, conn: sqlite3.Connection, record: MessageRecord) -> None:
        conn.execute(
            """INSERT INTO messages (id, account_id, external_id, workspace_id, thread_id, thread_hint,
                                     rfc_message_id, subject_key, sent_at, business_id, record_json)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(account_id, external_id) DO UPDATE SET
                   workspace_id = excluded.workspace_id,
                   thread_id = excluded.thread_id,
                   thread_hint = excluded.thread_hint,
                   rfc_message_id = excluded.rfc_message_id,
                   subject_key = excluded.subject_key,
                   sent_at = excluded.sent_at,
                   business_id = excluded.business_id,
                   record_json = excluded.record_json""",
            (
                record.id,
                record.account_id,
                record.external_id,
                record.workspace_id,
                record.thread_id,
                record.message.thread_hint,
                record.message.headers.message_id,
                record.subject_key,
                _ts(record.sent_at),
                record.association.business_id,
                _RECORD.dump_json(record).decode(),
            ),
        )

    # CRM fixtures

    def add_contact(self, workspace_id: str, contact: Contact) -> None:
        with self.db.connection() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO contacts (contact_id, workspace_id, business_id, email, name, last_activity_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (contact.contact_id, workspace_id, contact.business_id, contact.email.lower(), contact.name,
                 _ts(contact.last_activity_at)),
            )

    def add_business(self, workspace_id: str, business: Business) -> None:
        with self.db.connection() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO businesses (business_id, workspace_id, name, email, website, domains_json,
                                                      last_activity_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (business.business_id, workspace_id, business.name, business.email, business.website,
                 json.dumps(list(business.domains)), _ts(business.last_activity_at)),
            )

    # Messages

    def upsert_normalized_message(self, account_id: str, external_id: str, record: MessageRecord) -> UpsertOutcome:
        with self.db.connection() as conn:
            exists = conn.execute(
                "SELECT 1 FROM messages WHERE account_id = ? AND external_id = ?", (account_id, external_id)
            ).fetchone()
            self._write(conn, record)
        return "updated" if exists else "created"

    def get_message(self, account_id: str, external_id: str) -> Optional[MessageRecord]:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT record_json FROM messages WHERE account_id = ? AND external_id = ?", (account_id, external_id)
            ).fetchone()
        return self._load(row) if row else None

    def get_message_by_id(self, message_id: str) -> Optional[MessageRecord]:
        with self.db.connection() as conn:
            row = conn.execute("SELECT record_json FROM messages WHERE id = ?", (message_id,)).fetchone()
        return self._load(row) if row else None

    def find_by_provider_thread(self, account_id: str, thread_hint: str) -> Optional[MessageRecord]:
        with self.db.connection() as conn:
            row = conn.execute(
                """SELECT record_json FROM messages WHERE account_id = ? AND thread_hint = ?
                   ORDER BY sent_at, id LIMIT 1""",
                (account_id, thread_hint),
            ).fetchone()
        return self._load(row) if row else None

    def find_by_rfc_message_ids(self, account_id: str, message_ids: Iterable[str]) -> list[MessageRecord]:
        ids = list(dict.fromkeys(message_ids))
        if not ids:
            return []
        marks = ",".join("?" for _ in ids)
        with self.db.connection() as conn:
            rows = conn.execute(
                f"""SELECT record_json FROM messages WHERE account_id = ? AND rfc_message_id IN ({marks})
                    ORDER BY sent_at, id""",
                (account_id, *ids),
            ).fetchall()
        return [self._load(r) for r in rows]

    def find_thread_candidates(
        self, account_id: str, subject_key: str, participants: frozenset[str], since: datetime
    ) -> list[ThreadCandidate]:
        with self.db.connection() as conn:
            rows = conn.execute(
                """SELECT record_json FROM messages
                   WHERE account_id = ? AND subject_key = ? AND sent_at >= ?
                   ORDER BY sent_at, id""",
                (account_id, subject_key, _ts(since)),
            ).fetchall()
        out = []
        for row in rows:
            r = self._load(row)
            people = r.message.participants()
            if people & participants:
                out.append(ThreadCandidate(r.thread_id, r.external_id, r.sent_at, people))
        return out

    def find_contacts_by_address(self, workspace_id: str, addresses: Iterable[str]) -> list[Contact]:
        wanted = list({a.lower() for a in addresses})
        if not wanted:
            return []
        marks = ",".join("?" for _ in wanted)
        with self.db.connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM contacts WHERE workspace_id = ? AND email IN ({marks}) ORDER BY contact_id",
                (workspace_id, *wanted),
            ).fetchall()
        return [self._contact(row) for row in rows]

    def get_contact(self, contact_id: str) -> Optional[Contact]:
        with self.db.connection() as conn:
            row = conn.execute("SELECT * FROM contacts WHERE contact_id = ?", (contact_id,)).fetchone()
        return self._contact(row) if row else None

    @staticmethod
    def _contact(row: sqlite3.Row) -> Contact:
        return Contact(
            contact_id=row["contact_id"],
            business_id=row["business_id"],
            email=row["email"],
            name=row["name"],
            last_activity_at=_parse_ts(row["last_activity_at"]),
        )

    def find_businesses_by_address_or_domain(self, workspace_id: str, candidates: Iterable[str]) -> list[Business]:
        wanted = {c.lower() for c in candidates}
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM businesses WHERE workspace_id = ? ORDER BY business_id", (workspace_id,)
            ).fetchall()
        businesses = [
            Business(
                business_id=row["business_id"],
                name=row["name"],
                email=row["email"],
                website=row["website"],
                domains=tuple(json.loads(row["domains_json"] or "[]")),
                last_activity_at=_parse_ts(row["last_activity_at"]),
            )
            for row in rows
        ]
        # Website and domain matching needs normalization that is simpler in Python than in SQL
        return [b for b in businesses if business_matches(b, wanted)]

    def list_messages_for_business(self, business_id: str) -> list[MessageRecord]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT record_json FROM messages WHERE business_id = ? ORDER BY sent_at DESC, id", (business_id,)
            ).fetchall()
        return [self._load(r) for r in rows]

    def list_thread(self, thread_id: str) -> list[MessageRecord]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT record_json FROM messages WHERE thread_id = ? ORDER BY sent_at, id", (thread_id,)
            ).fetchall()
        return [self._load(r) for r in rows]

    def _update(self, message_id: str, change) -> MessageRecord:
        with self.db.connection() as conn:
            row = conn.execute("SELECT record_json FROM messages WHERE id = ?", (message_id,)).fetchone()
            if row is None:
                raise NotFoundError(f"Message {message_id} not found", resource="message")
            updated = change(self._load(row))
            self._write(conn, updated)
        return updated

    def save_association(self, message_id: str, result: AssociationResult) -> MessageRecord:
        return self._update(message_id, lambda r: replace(r, association=result))

    def set_status(
        self,
        message_id: str,
        *,
        read: Optional[bool] = None,
        starred: Optional[bool] = None,
        deleted: Optional[bool] = None,
    ) -> MessageRecord:
        return self._update(
            message_id,
            lambda r: replace(
                r,
                is_read=r.is_read if read is None else read,
                is_starred=r.is_starred if starred is None else starred,
                is_deleted=r.is_deleted if deleted is None else deleted,
            ),
        )


class SQLiteCheckpointStore:
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def load(self, account_id: str) -> Optional[EmailCursor]:
        with self.db.connection() as conn:
            row = conn.execute("SELECT position FROM checkpoints WHERE account_id = ?", (account_id,)).fetchone()
        return EmailCursor(account_id=account_id, position=row["position"]) if row else None

    def save(self, account_id: str, cursor: EmailCursor) -> None:
        with self.db.connection() as conn:
            conn.execute(
                """INSERT INTO checkpoints (account_id, position, updated_at) VALUES (?, ?, ?)
                   ON CONFLICT(account_id) DO UPDATE SET position = excluded.position, updated_at = excluded.updated_at""",
                (account_id, cursor.position, datetime.now(timezone.utc).isoformat()),
            )
