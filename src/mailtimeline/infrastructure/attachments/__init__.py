from mailtimeline.infrastructure.attachments.store import BlobStore, InMemoryBlobStore

__all__ = ["BlobStore", "InMemoryBlobStore"]
