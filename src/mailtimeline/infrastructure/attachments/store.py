from __future__ import annotations

import hashlib
import threading
from typing import Protocol

from mailtimeline.domain.errors import BlobStoreError


class BlobStore(Protocol):
    def put(self, *, account_id: str, message_id: str, part_id: str, data: bytes, media_type: str) -> str: ...

    def get(self, storage_ref: str) -> bytes: ...

    def url_for(self, storage_ref: str) -> str: ...


def blob_key(prefix: str, account_id: str, message_id: str, part_id: str, data: bytes) -> str:
    # Stable key: prefix/account/message/part-sha256
    h = hashlib.sha256(data).hexdigest()[:16]
    safe_id = message_id.replace("/", "_")
    return f"{prefix}/{account_id}/{safe_id}/{part_id}-{h}"


class InMemoryBlobStore:
    """Process-local blob store for tests and single-node runs."""

    def __init__(self, prefix: str = "email-attachments") -> None:
        self.prefix = prefix
        self._blobs: dict[str, tuple[bytes, str]] = {}
        self._lock = threading.Lock()

    def put(self, *, account_id: str, message_id: str, part_id: str, data: bytes, media_type: str) -> str:
        key = blob_key(self.prefix, account_id, message_id, part_id, data)
        with self._lock:
            self._blobs[key] = (data, media_type)
        return key

    def get(self, storage_ref: str) -> bytes:
        with self._lock:
            entry = self._blobs.get(storage_ref)
        if entry is None:
            raise BlobStoreError(f"No blob stored under {storage_ref}", storage_ref=storage_ref)
        return entry[0]

    def url_for(self, storage_ref: str) -> str:
        return f"blob://{storage_ref}"

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)
