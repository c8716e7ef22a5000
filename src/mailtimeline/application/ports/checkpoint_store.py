from __future__ import annotations
from typing import Optional, Protocol
from mailtimeline.application.ports.email_source import EmailCursor

class CheckpointStore(Protocol):
    def load(self, account_id: str) -> Optional[EmailCursor]: ...
    def save(self, account_id: str, cursor: EmailCursor) -> None: ...
