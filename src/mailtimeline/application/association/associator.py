"""Map message addresses to CRM businesses and contacts."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional

from loguru import logger

from mailtimeline.application.ports.message_repository import MessageRepository
from mailtimeline.domain.entities.association import AssociationConfidence, AssociationResult
from mailtimeline.domain.entities.email_message import Direction, NormalizedMessage
from mailtimeline.domain.entities.records import Business, Contact, MailAccount

DEFAULT_FREEMAIL_DOMAINS = frozenset({
    "gmail.com", "googlemail.com", "outlook.com", "hotmail.com", "live.com", "msn.com",
    "yahoo.com", "icloud.com", "me.com", "aol.com", "proton.me", "protonmail.com",
    "gmx.com", "online.no", "hotmail.no", "live.no",
})

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


def _domain(address: str) -> str:
    return address.rsplit("@", 1)[-1] if "@" in address else ""


def _most_recent_business(businesses: Iterable[Business]) -> Business:
    ordered = sorted(businesses, key=lambda b: b.business_id)
    return max(ordered, key=lambda b: b.last_activity_at or _NEVER)


def _most_recent_contact(contacts: Iterable[Contact]) -> Contact:
    ordered = sorted(contacts, key=lambda c: c.contact_id)
    return max(ordered, key=lambda c: c.last_activity_at or _NEVER)


class BusinessContactAssociator:
    def __init__(self, repository: MessageRepository, freemail_domains: Iterable[str] = DEFAULT_FREEMAIL_DOMAINS) -> None:
        self.repository = repository
        self.freemail_domains = frozenset(d.lower() for d in freemail_domains)

    def counterpart_addresses(self, message: NormalizedMessage, account: MailAccount) -> list[str]:
        """Addresses on the other side of the conversation, highest priority first."""
        if message.direction == Direction.OUTBOUND:
            addrs = [a.email for a in (*message.to, *message.cc, *message.bcc)]
        else:
            addrs = [message.from_address.email] if message.from_address else []
        own = account.own_addresses()
        return list(dict.fromkeys(a for a in addrs if a and a not in own))

    def associate(self, message: NormalizedMessage, account: MailAccount) -> AssociationResult:
        stored = self.repository.get_message(message.account_id, message.external_id)
        if stored is not None and stored.association.manual:
            return stored.association

        addresses = self.counterpart_addresses(message, account)
        if not addresses:
            return AssociationResult.unmatched()

        return (
            self._by_contact(account.workspace_id, addresses)
            or self._by_business(account.workspace_id, addresses)
            or AssociationResult.unmatched()
        )

    def _by_contact(self, workspace_id: str, addresses: list[str]) -> Optional[AssociationResult]:
        contacts = self.repository.find_contacts_by_address(workspace_id, addresses)
        for address in addresses:
            matched = [c for c in contacts if c.email.lower() == address]
            if not matched:
                continue
            businesses = {c.business_id for c in matched}
            chosen = _most_recent_contact(matched)
            if len(businesses) == 1:
                return AssociationResult(chosen.business_id, chosen.contact_id, AssociationConfidence.EXACT)
            logger.info(f"Contact address {address} belongs to {len(businesses)} businesses; flagged for review")
            return AssociationResult(chosen.business_id, chosen.contact_id, AssociationConfidence.AMBIGUOUS)
        return None

    def _by_business(self, workspace_id: str, addresses: list[str]) -> Optional[AssociationResult]:
        domains = [d for d in dict.fromkeys(_domain(a) for a in addresses) if d and d not in self.freemail_domains]
        found = self.repository.find_businesses_by_address_or_domain(workspace_id, [*addresses, *domains])
        businesses = list({b.business_id: b for b in found}.values())
        for address in addresses:
            domain = _domain(address)
            matched = [
                b for b in businesses
                if (b.email or "").lower() == address
                or (domain not in self.freemail_domains and domain in b.known_domains())
            ]
            if not matched:
                continue
            if len(matched) == 1:
                return AssociationResult(matched[0].business_id, None, AssociationConfidence.DOMAIN)
            chosen = _most_recent_business(matched)
            logger.info(
                f"{len(matched)} businesses match {address}; picked {chosen.business_id} pending manual confirmation"
            )
            return AssociationResult(chosen.business_id, None, AssociationConfidence.AMBIGUOUS)
        return None
