"""Assign messages to conversations."""

from __future__ import annotations

import re
import uuid
from datetime import timedelta
from typing import Optional

from loguru import logger

from mailtimeline.application.ports.message_repository import MessageRepository
from mailtimeline.domain.entities.email_message import NormalizedMessage
from mailtimeline.domain.entities.thread import (
    ThreadAssignment,
    ThreadCandidate,
    ThreadConfidence,
    ThreadMethod,
)

THREAD_NAMESPACE = uuid.UUID("6f0b5c1e-3d1a-5b8e-9c4f-2a7d8e9b1c30")

# Reply/forward prefixes in the languages we see: Re, Fw, Fwd, SV, VS, AW, WG, Antw, TR, RV
_PREFIX_RE = re.compile(
    r"^\s*(?:re|fw|fwd|sv|vs|aw|wg|antw|tr|rv)\s*(?:\[\d+\]|\(\d+\))?\s*:\s*",
    re.IGNORECASE,
)
_WS_RE = re.compile(r"\s+")


def subject_key(subject: Optional[str]) -> str:
    """Lower-cased, whitespace-collapsed subject without reply/forward prefixes."""
    key = _WS_RE.sub(" ", (subject or "").lower()).strip()
    while True:
        stripped = _PREFIX_RE.sub("", key, count=1)
        if stripped == key:
            return key
        key = stripped.strip()


def seed_thread_id(account_id: str, external_id: str) -> str:
    return str(uuid.uuid5(THREAD_NAMESPACE, f"{account_id}:{external_id}"))


class ThreadIdentifier:
    """Header evidence first, then a subject + participant fallback."""

    def __init__(self, repository: MessageRepository, window_days: int = 30) -> None:
        self.repository = repository
        self.window = timedelta(days=window_days)

    def assign(self, message: NormalizedMessage, resync: bool = False) -> ThreadAssignment:
        """Return the thread for ``message``.

        Args:
            message: Normalized message about to be committed
            resync: Recompute even when the message already has an assignment

        Returns:
            ThreadAssignment; existing assignments are returned unchanged
        """
        if not resync:
            existing = self.repository.get_message(message.account_id, message.external_id)
            if existing is not None:
                return existing.thread

        return (
            self._by_provider_thread(message)
            or self._by_references(message)
            or self._by_subject(message)
            or ThreadAssignment(
                thread_id=seed_thread_id(message.account_id, message.external_id),
                confidence=ThreadConfidence.HIGH,
                method=ThreadMethod.HEADER,
            )
        )

    def _by_provider_thread(self, message: NormalizedMessage) -> Optional[ThreadAssignment]:
        if not message.thread_hint:
            return None
        found = self.repository.find_by_provider_thread(message.account_id, message.thread_hint)
        if found is None or found.external_id == message.external_id:
            return None
        return ThreadAssignment(found.thread_id, ThreadConfidence.HIGH, ThreadMethod.HEADER)

    def _by_references(self, message: NormalizedMessage) -> Optional[ThreadAssignment]:
        parents = message.headers.parent_ids()
        if not parents:
            return None
        records = self.repository.find_by_rfc_message_ids(message.account_id, parents)
        by_id = {r.message.headers.message_id: r for r in records if r.external_id != message.external_id}
        for parent in parents:
            record = by_id.get(parent)
            if record is not None:
                return ThreadAssignment(record.thread_id, ThreadConfidence.HIGH, ThreadMethod.HEADER)
        return None

    def _by_subject(self, message: NormalizedMessage) -> Optional[ThreadAssignment]:
        key = subject_key(message.subject)
        if not key:
            return None
        participants = message.participants()
        candidates = [
            c for c in self.repository.find_thread_candidates(
                message.account_id, key, participants, message.sent_at - self.window
            )
            if c.external_id != message.external_id and c.participants & participants
        ]
        if not candidates:
            return None

        latest: dict[str, ThreadCandidate] = {}
        for c in candidates:
            if c.thread_id not in latest or c.sent_at > latest[c.thread_id].sent_at:
                latest[c.thread_id] = c

        if len(latest) == 1:
            return ThreadAssignment(next(iter(latest)), ThreadConfidence.MEDIUM, ThreadMethod.SUBJECT_PARTICIPANT)

        ranked = sorted(latest.values(), key=lambda c: (-c.sent_at.timestamp(), c.thread_id))
        chosen = ranked[0].thread_id
        logger.info(
            f"Ambiguous thread for {message.account_id}/{message.external_id}: "
            f"{len(latest)} candidates for subject {key!r}, picked {chosen}"
        )
        return ThreadAssignment(chosen, ThreadConfidence.LOW, ThreadMethod.SUBJECT_PARTICIPANT)
