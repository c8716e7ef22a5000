from __future__ import annotations
import imaplib
import re
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from loguru import logger

from mailtimeline.application.ports.email_source import EmailCursor, FetchPage, RawMessage
from mailtimeline.domain.entities.records import MailAccount
from mailtimeline.domain.errors import ProviderTransientError
from mailtimeline.infrastructure.email.providers.imap.auth import ImapAuthenticator, ImapCredentials

CredentialLookup = Callable[[MailAccount], ImapCredentials]

_GM_THRID_RE = re.compile(rb"X-GM-THRID (\d+)")


def parse_cursor(cursor: Optional[EmailCursor]) -> tuple[Optional[int], int]:
    """(uidvalidity, last seen uid); position format is 'uidvalidity:uid'."""
    if cursor is None or not cursor.position:
        return None, 0
    validity, _, last = cursor.position.partition(":")
    try:
        return int(validity), int(last or 0)
    except ValueError:
        logger.warning(f"Ignoring malformed IMAP cursor {cursor.position!r}")
        return None, 0


def _internal_date(meta: bytes) -> Optional[datetime]:
    tt = imaplib.Internaldate2tuple(meta)
    if tt is None:
        return None
    return datetime.fromtimestamp(time.mktime(tt), tz=timezone.utc)


class ImapEmailSource:
    """UID-cursored IMAP fetch. Messages are read with BODY.PEEK so \\Seen is left alone."""

    def __init__(
        self,
        credentials: CredentialLookup,
        authenticator: ImapAuthenticator,
        folder: str = "INBOX",
        gmail_extensions: bool = False,
    ) -> None:
        self.credentials = credentials
        self.authenticator = authenticator
        self.folder = folder
        self.gmail_extensions = gmail_extensions
        self._conns: dict[str, imaplib.IMAP4_SSL] = {}
        self._lock = threading.Lock()

    def _connect(self, account: MailAccount) -> imaplib.IMAP4_SSL:
        with self._lock:
            conn = self._conns.get(account.account_id)
        if conn is None:
            conn = self.authenticator.login(account.account_id, self.credentials(account))
            with self._lock:
                self._conns[account.account_id] = conn
        return conn

    def disconnect(self, account_id: str) -> None:
        with self._lock:
            conn = self._conns.pop(account_id, None)
        if conn:
            try:
                conn.logout()
            except (imaplib.IMAP4.error, OSError) as e:
                logger.debug(f"Ignoring logout error for {account_id}: {e}")

    def refresh_auth(self, account: MailAccount) -> MailAccount:
        # Credentials are looked up again on the next connect
        self.disconnect(account.account_id)
        return account

    def fetch_messages(self, account: MailAccount, since: Optional[EmailCursor], max_count: int) -> FetchPage:
        try:
            return self._fetch(account, since, max_count)
        except imaplib.IMAP4.abort as e:
            self.disconnect(account.account_id)
            raise ProviderTransientError(f"IMAP connection aborted: {e}") from e
        except OSError as e:
            self.disconnect(account.account_id)
            raise ProviderTransientError(f"IMAP socket error: {e}") from e

    def _fetch(self, account: MailAccount, since: Optional[EmailCursor], max_count: int) -> FetchPage:
        conn = self._connect(account)

        typ, _ = conn.select(self.folder, readonly=True)
        if typ != "OK":
            raise ProviderTransientError(f"Failed to select folder {self.folder}")
        _, data = conn.response("UIDVALIDITY")
        uidvalidity = int(data[0]) if data and data[0] else 0

        known_validity, last_uid = parse_cursor(since)
        if known_validity is not None and known_validity != uidvalidity:
            logger.warning(f"UIDVALIDITY changed for {account.account_id}; resyncing {self.folder} from start")
            last_uid = 0

        typ, uids_data = conn.uid("SEARCH", None, f"UID {last_uid + 1}:*")
        if typ != "OK":
            raise ProviderTransientError("UID SEARCH failed")

        # "n:*" always matches the newest message, even when its UID is below n
        uids = sorted(int(x) for x in (uids_data[0] or b"").split() if int(x) > last_uid)
        batch = uids[:max_count]
        logger.info(f"{account.account_id}: {len(uids)} new message(s) in {self.folder}, fetching {len(batch)}")

        items = "(UID FLAGS INTERNALDATE X-GM-THRID BODY.PEEK[])" if self.gmail_extensions else "(UID FLAGS INTERNALDATE BODY.PEEK[])"
        messages: list[RawMessage] = []
        failed: list[str] = []
        for uid in batch:
            typ, msg_data = conn.uid("FETCH", str(uid), items)
            if typ != "OK":
                raise ProviderTransientError(f"FETCH failed for UID {uid}: {msg_data!r}")
            if not msg_data or not isinstance(msg_data[0], tuple):
                # Expunged between SEARCH and FETCH
                logger.warning(f"{account.account_id}: UID {uid} returned no message data")
                failed.append(f"{uidvalidity}-{uid}")
                continue
            meta, body = msg_data[0][0], msg_data[0][1]
            messages.append(self._to_raw(account, uidvalidity, uid, meta, body))

        next_cursor = since
        if batch:
            next_cursor = EmailCursor(account_id=account.account_id, position=f"{uidvalidity}:{batch[-1]}")
        return FetchPage(
            messages=messages,
            next_cursor=next_cursor,
            has_more=len(uids) > len(batch),
            failed_ids=tuple(failed),
        )

    def _to_raw(self, account: MailAccount, uidvalidity: int, uid: int, meta: bytes, body: bytes) -> RawMessage:
        flags = [f.decode(errors="replace") for f in imaplib.ParseFlags(meta)]
        thrid = _GM_THRID_RE.search(meta)
        return RawMessage(
            account_id=account.account_id,
            external_id=f"{uidvalidity}-{uid}",
            rfc822_bytes=body,
            is_read="\\Seen" in flags,
            labels=tuple(f for f in flags if not f.startswith("\\")),
            provider_thread_id=f"gm:{thrid.group(1).decode()}" if thrid else None,
            received_at=_internal_date(meta),
        )
