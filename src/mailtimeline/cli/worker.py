"""Sync worker - polls every configured account on a bounded pool."""

from __future__ import annotations

import signal
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from queue import Empty, Queue

from loguru import logger

from mailtimeline.application.service import MailTimelineService
from mailtimeline.application.use_cases.sync_account import SyncResult
from mailtimeline.infrastructure.container import build_container
from mailtimeline.infrastructure.logging import configure_logging
from mailtimeline.infrastructure.settings import get_settings


@dataclass
class WorkerStats:
    polls_completed: int = 0
    started_at: datetime | None = None
    total_processed: int = 0
    total_created: int = 0
    total_errors: int = 0
    aborted_units: int = 0
    by_account: dict[str, int] = field(default_factory=dict)

    def record(self, result: SyncResult) -> None:
        self.total_processed += result.processed
        self.total_created += result.created
        self.total_errors += len(result.errors)
        self.aborted_units += int(result.aborted)
        self.by_account[result.account_id] = self.by_account.get(result.account_id, 0) + result.processed


class SyncWorker:
    """
    Multi-account sync worker.

    Each poll cycle enqueues every account id; at most ``sync_workers``
    units run at once. Units share no mutable state, so a failing account
    never holds up the others.
    """

    def __init__(
        self,
        service: MailTimelineService,
        account_ids: list[str],
        sync_workers: int = 4,
        poll_interval_minutes: int = 5,
    ) -> None:
        self.service = service
        self.account_ids = account_ids
        self.sync_workers = max(1, sync_workers)
        self.poll_interval = poll_interval_minutes * 60
        self.running = False
        self.stats = WorkerStats()
        self._wake = threading.Event()

    def _drain(self, queue: "Queue[str]") -> SyncResult | None:
        try:
            account_id = queue.get_nowait()
        except Empty:
            return None
        try:
            return self.service.sync_account(account_id)
        finally:
            queue.task_done()

    def poll_once(self) -> list[SyncResult]:
        """Sync every account once and return the unit results."""
        self.stats.started_at = self.stats.started_at or datetime.now()
        logger.info(f"Poll #{self.stats.polls_completed + 1}: {len(self.account_ids)} account(s) queued")
        queue: Queue[str] = Queue()
        for account_id in self.account_ids:
            queue.put(account_id)

        results: list[SyncResult] = []
        with ThreadPoolExecutor(max_workers=self.sync_workers, thread_name_prefix="sync") as pool:
            futures = [pool.submit(self._drain, queue) for _ in self.account_ids]
            for future in as_completed(futures):
                try:
                    result = future.result()
                except Exception as e:
                    self.stats.total_errors += 1
                    logger.error(f"Sync unit failed: {e}")
                    continue
                if result is not None:
                    results.append(result)
                    self.stats.record(result)

        self.stats.polls_completed += 1
        self._log_stats()
        return results

    def _log_stats(self) -> None:
        s = self.stats
        logger.info(
            f"Poll #{s.polls_completed} done: {s.total_processed} message(s) seen, {s.total_created} new, "
            f"{s.total_errors} error(s), {s.aborted_units} aborted unit(s); per account {s.by_account}"
        )

    def _handle_shutdown(self, signum, frame) -> None:
        logger.info(f"Signal {signum} received; finishing the current cycle")
        self.running = False
        self._wake.set()

    def run(self) -> int:
        """Poll until SIGTERM or SIGINT, waiting ``poll_interval`` between cycles."""
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_shutdown)

        logger.info(
            f"Sync worker up: {len(self.account_ids)} account(s), {self.sync_workers} unit(s) at a time, "
            f"every {self.poll_interval}s"
        )
        self.running = True
        while self.running:
            self.poll_once()
            # wait() returns early when a signal sets the event
            self._wake.wait(self.poll_interval)

        logger.info(f"Sync worker stopped after {self.stats.polls_completed} poll(s)")
        return 0


def main() -> int:
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(f"{settings.app_name} sync worker ({settings.environment})")

    try:
        container = build_container(settings)
    except Exception as e:
        logger.error(f"Could not build the pipeline: {e}")
        return 1

    if not container.account_ids:
        logger.error("No mail accounts configured; set MAIL_ACCOUNTS and MAIL_<NAME>_ADDRESS/SECRET")
        return 1

    return SyncWorker(
        container.service,
        container.account_ids,
        sync_workers=settings.sync_workers,
        poll_interval_minutes=settings.poll_interval_minutes,
    ).run()


if __name__ == "__main__":
    raise SystemExit(main())
