"""Write side for user actions on committed messages."""

from __future__ import annotations

from typing import Optional

from loguru import logger

from mailtimeline.application.ports.message_repository import MessageRepository
from mailtimeline.domain.entities.association import AssociationConfidence, AssociationResult
from mailtimeline.domain.entities.records import MessageRecord
from mailtimeline.domain.errors import NotFoundError


class MessageCommands:
    def __init__(self, repository: MessageRepository) -> None:
        self.repository = repository

    def manually_associate(self, message_id: str, business_id: str, contact_id: Optional[str] = None) -> MessageRecord:
        """Pin a message to a business. Manual associations survive every later sync."""
        if self.repository.get_message_by_id(message_id) is None:
            raise NotFoundError(f"Message {message_id} not found", resource="message")
        result = AssociationResult(
            business_id=business_id,
            contact_id=contact_id,
            confidence=AssociationConfidence.EXACT,
            manual=True,
        )
        record = self.repository.save_association(message_id, result)
        logger.info(f"Message {message_id} manually associated with business {business_id}")
        return record

    def set_message_status(
        self,
        message_id: str,
        read: Optional[bool] = None,
        starred: Optional[bool] = None,
        deleted: Optional[bool] = None,
    ) -> MessageRecord:
        if self.repository.get_message_by_id(message_id) is None:
            raise NotFoundError(f"Message {message_id} not found", resource="message")
        return self.repository.set_status(message_id, read=read, starred=starred, deleted=deleted)
