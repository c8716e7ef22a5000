"""Synchronize one mail account: fetch, prepare in parallel, commit in order."""

from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Optional, TypeVar

from loguru import logger

from mailtimeline.application.ports.checkpoint_store import CheckpointStore
from mailtimeline.application.ports.email_source import (
    AccountDirectory,
    EmailCursor,
    EmailSource,
    FetchPage,
    RawMessage,
)
from mailtimeline.application.use_cases.ingest_email import IngestMessageUseCase, PreparedMessage
from mailtimeline.domain.entities.records import MailAccount
from mailtimeline.domain.errors import (
    RETRYABLE_ERRORS,
    MailTimelineError,
    NotFoundError,
    ProviderAuthError,
    ProviderTransientError,
)

T = TypeVar("T")


@dataclass(frozen=True)
class SyncOptions:
    resync: bool = False  # refetch from the start and recompute threads and associations
    max_pages: Optional[int] = None


@dataclass(frozen=True)
class SyncError:
    external_id: str
    error_code: str
    message: str


@dataclass
class SyncResult:
    account_id: str
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[SyncError] = field(default_factory=list)
    aborted: bool = False


@dataclass
class _Unit:
    account: MailAccount
    auth_refreshed: bool = False


class SyncAccountUseCase:
    """One (account, provider) sync unit.

    Flow per page:
    1. Fetch with retry and at most one auth refresh for the whole unit
    2. Prepare messages on a pool of ``message_parallelism`` threads
    3. Commit sequentially in (sent_at, external_id) order
    4. Save the cursor

    A message that keeps failing is skipped and recorded; it never aborts
    its siblings. Auth failures after the refresh, and fetch errors that
    outlive their retries, abort the unit only.
    """

    def __init__(
        self,
        accounts: AccountDirectory,
        source: EmailSource,
        checkpoints: CheckpointStore,
        ingest: IngestMessageUseCase,
        page_size: int = 50,
        message_parallelism: int = 4,
        max_retries: int = 3,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.accounts = accounts
        self.source = source
        self.checkpoints = checkpoints
        self.ingest = ingest
        self.page_size = page_size
        self.message_parallelism = max(1, message_parallelism)
        self.max_retries = max_retries
        self.backoff_base = backoff_base_seconds
        self.backoff_max = backoff_max_seconds
        self.sleep = sleep

    def run(self, account_id: str, options: Optional[SyncOptions] = None) -> SyncResult:
        """Sync one account until the provider has nothing more to give.

        Args:
            account_id: Account to sync
            options: Resync and page limit

        Returns:
            SyncResult with counts, per-message errors and the abort flag

        Raises:
            NotFoundError: unknown account
        """
        options = options or SyncOptions()
        account = self.accounts.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found", resource="account")

        unit = _Unit(account)
        result = SyncResult(account_id=account_id)
        cursor = None if options.resync else self.checkpoints.load(account_id)
        pages = 0
        logger.info(f"Sync {account_id}: starting from {cursor.position if cursor else 'the beginning'}")

        with ThreadPoolExecutor(max_workers=self.message_parallelism, thread_name_prefix=f"prepare-{account_id}") as pool:
            while True:
                try:
                    page = self._fetch_page(unit, cursor)
                except ProviderAuthError as e:
                    logger.error(f"Sync {account_id}: authentication failed after refresh, aborting: {e.message}")
                    result.errors.append(SyncError("", e.error_code, e.message))
                    result.aborted = True
                    break
                except RETRYABLE_ERRORS as e:
                    logger.error(f"Sync {account_id}: fetch failed after {self.max_retries} retries, aborting: {e.message}")
                    result.errors.append(SyncError("", e.error_code, e.message))
                    result.aborted = True
                    break

                self._process_page(unit.account, page, options, result, pool)
                pages += 1

                if page.next_cursor is not None:
                    self.checkpoints.save(account_id, page.next_cursor)
                    cursor = page.next_cursor

                if not page.has_more or (options.max_pages and pages >= options.max_pages):
                    break

        logger.info(
            f"Sync {account_id}: processed={result.processed}, created={result.created}, "
            f"updated={result.updated}, skipped={result.skipped}, aborted={result.aborted}"
        )
        return result

    def backoff_delay(self, attempt: int, error: Optional[Exception] = None) -> float:
        delay = min(self.backoff_base * 2 ** attempt, self.backoff_max)
        if isinstance(error, ProviderTransientError) and error.retry_after:
            delay = min(max(delay, error.retry_after), self.backoff_max)
        return delay

    def _retry(self, operation: Callable[[], T], label: str) -> T:
        attempt = 0
        while True:
            try:
                return operation()
            except RETRYABLE_ERRORS as e:
                if attempt >= self.max_retries:
                    raise
                delay = self.backoff_delay(attempt, e)
                attempt += 1
                logger.warning(f"{label} failed ({e.error_code}): {e.message}; retry {attempt}/{self.max_retries} in {delay:.1f}s")
                self.sleep(delay)

    def _fetch_page(self, unit: _Unit, cursor: Optional[EmailCursor]) -> FetchPage:
        label = f"Fetch for {unit.account.account_id}"
        while True:
            try:
                return self._retry(lambda: self.source.fetch_messages(unit.account, cursor, self.page_size), label)
            except ProviderAuthError:
                if unit.auth_refreshed:
                    raise
                unit.auth_refreshed = True
                logger.warning(f"{label} rejected credentials; refreshing auth once")
                unit.account = self.source.refresh_auth(unit.account)

    def _process_page(
        self,
        account: MailAccount,
        page: FetchPage,
        options: SyncOptions,
        result: SyncResult,
        pool: ThreadPoolExecutor,
    ) -> None:
        futures: list[tuple[RawMessage, Future]] = [
            (raw, pool.submit(self._retry, partial(self.ingest.prepare, account, raw), f"Prepare {raw.external_id}"))
            for raw in page.messages
        ]

        for external_id in page.failed_ids:
            result.processed += 1
            self._skip(result, external_id, "FETCH_FAILED", "Provider listed the message but returned no data")

        prepared: list[PreparedMessage] = []
        for raw, future in futures:
            result.processed += 1
            try:
                prepared.append(future.result())
            except MailTimelineError as e:
                self._skip(result, raw.external_id, e.error_code, e.message)
            except Exception as e:
                logger.exception(f"Unexpected error preparing {raw.external_id}")
                self._skip(result, raw.external_id, "INTERNAL_ERROR", str(e))

        prepared.sort(key=lambda p: (p.message.sent_at, p.message.external_id))
        for item in prepared:
            external_id = item.message.external_id
            try:
                outcome = self.ingest.commit(account, item, resync=options.resync)
            except MailTimelineError as e:
                self._skip(result, external_id, e.error_code, e.message)
                continue
            except Exception as e:
                logger.exception(f"Unexpected error committing {external_id}")
                self._skip(result, external_id, "INTERNAL_ERROR", str(e))
                continue
            if outcome == "created":
                result.created += 1
            else:
                result.updated += 1

    @staticmethod
    def _skip(result: SyncResult, external_id: str, error_code: str, message: str) -> None:
        logger.warning(f"Skipping {result.account_id}/{external_id}: [{error_code}] {message}")
        result.skipped += 1
        result.errors.append(SyncError(external_id, error_code, message))
