"""Mail accounts configured through the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Mapping

from loguru import logger

from mailtimeline.domain.entities.records import MailAccount
from mailtimeline.domain.errors import ProviderAuthError
from mailtimeline.infrastructure.email.providers.imap.auth import ImapCredentials


@dataclass(frozen=True)
class AccountConfig:
    account: MailAccount
    credentials: ImapCredentials


def accounts_from_env(names: str, environ: Mapping[str, str] = os.environ) -> list[AccountConfig]:
    """
    Load account configurations from environment variables.

    MAIL_ACCOUNTS=sales,support
    MAIL_SALES_ADDRESS=sales@example.com
    MAIL_SALES_SECRET=xxx              # app password or OAuth access token
    MAIL_SALES_XOAUTH2=true            # Optional: treat SECRET as a bearer token
    MAIL_SALES_WORKSPACE=acme          # Optional: defaults to the account name
    MAIL_SALES_ALIASES=info@example.com,hello@example.com  # Optional
    MAIL_SALES_LOGIN=user@example.com  # Optional: login when it differs from ADDRESS
    """
    configs = []
    for name in (n.strip() for n in names.split(",")):
        if not name:
            continue
        key = name.upper()
        address = environ.get(f"MAIL_{key}_ADDRESS")
        secret = environ.get(f"MAIL_{key}_SECRET")
        if not address or not secret:
            logger.warning(f"Account {name} missing address or secret, skipping")
            continue

        aliases = tuple(a.strip() for a in environ.get(f"MAIL_{key}_ALIASES", "").split(",") if a.strip())
        account = MailAccount(
            account_id=name.lower(),
            workspace_id=environ.get(f"MAIL_{key}_WORKSPACE", name.lower()),
            address=address,
            aliases=aliases,
        )
        credentials = ImapCredentials(
            email=environ.get(f"MAIL_{key}_LOGIN", address),
            secret=secret,
            use_xoauth2=environ.get(f"MAIL_{key}_XOAUTH2", "false").lower() == "true",
        )
        configs.append(AccountConfig(account=account, credentials=credentials))
        alias_info = f" (aliases: {', '.join(aliases)})" if aliases else ""
        logger.info(f"Configured account: {account.account_id} ({address}){alias_info}")
    return configs


def credential_lookup(configs: list[AccountConfig]) -> Callable[[MailAccount], ImapCredentials]:
    by_id = {c.account.account_id: c.credentials for c in configs}

    def lookup(account: MailAccount) -> ImapCredentials:
        creds = by_id.get(account.account_id)
        if creds is None:
            raise ProviderAuthError(f"No credentials configured for {account.account_id}", account_id=account.account_id)
        return creds

    return lookup
