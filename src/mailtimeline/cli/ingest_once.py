"""One-shot ingestion: sync a configured account once, or ingest local .eml files."""

from __future__ import annotations

import argparse
import hashlib
from pathlib import Path

from mailtimeline.application.ports.email_source import RawMessage
from mailtimeline.application.use_cases.sync_account import SyncOptions
from mailtimeline.domain.entities.records import MailAccount
from mailtimeline.domain.errors import MailTimelineError
from mailtimeline.infrastructure.container import build_container
from mailtimeline.infrastructure.logging import configure_logging
from mailtimeline.infrastructure.settings import get_settings


def eml_external_id(data: bytes) -> str:
    # Same file, same id: re-running updates instead of duplicating
    return f"eml-{hashlib.sha256(data).hexdigest()[:24]}"


def main() -> int:
    parser = argparse.ArgumentParser(description="Ingest email into the timeline")
    parser.add_argument("account", help="Account id (from MAIL_ACCOUNTS)")
    parser.add_argument("--resync", action="store_true", help="Refetch from the start and recompute threads and associations")
    parser.add_argument("--max-pages", type=int, default=None, help="Stop after this many provider pages")
    parser.add_argument("--eml", nargs="+", type=Path, default=None, help="Ingest local .eml files instead of syncing")
    parser.add_argument("--address", default="", help="Account address when --eml targets an unconfigured account")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level)
    container = build_container(settings)

    if args.eml:
        account = container.accounts.get_account(args.account) or MailAccount(
            account_id=args.account, workspace_id=args.account, address=args.address
        )
        failures = 0
        for path in args.eml:
            data = path.read_bytes()
            raw = RawMessage(account_id=account.account_id, external_id=eml_external_id(data), rfc822_bytes=data)
            try:
                outcome = container.ingest.ingest(account, raw, resync=args.resync)
            except MailTimelineError as e:
                failures += 1
                print(f"{path}: skipped [{e.error_code}] {e.message}")
                continue
            print(f"{path}: {outcome} {account.account_id}:{raw.external_id}")
        return 1 if failures else 0

    result = container.service.sync_account(args.account, SyncOptions(resync=args.resync, max_pages=args.max_pages))
    print(f"Synced {result.account_id}: processed={result.processed} created={result.created} "
          f"updated={result.updated} skipped={result.skipped}")
    for error in result.errors:
        print(f"  {error.external_id or '-'}: [{error.error_code}] {error.message}")
    if result.aborted:
        print("Sync aborted; see errors above")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
