"""Error taxonomy for the ingestion pipeline."""

from typing import Optional


class MailTimelineError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, message: str, error_code: str = None, details: dict = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "MAILTIMELINE_ERROR"
        self.details = details or {}


class ParseFailure(MailTimelineError):
    """Message is structurally unparsable; the caller skips it."""

    def __init__(self, message: str, external_id: str = None):
        super().__init__(message, error_code="PARSE_FAILURE", details={"external_id": external_id})
        self.external_id = external_id


class DegradedDecode(MailTimelineError):
    """A single MIME part could not be decoded."""

    def __init__(self, message: str, part_id: str = None):
        super().__init__(message, error_code="DEGRADED_DECODE", details={"part_id": part_id})
        self.part_id = part_id


class ProviderTransientError(MailTimelineError):
    """Rate limit, timeout or connection drop; safe to retry."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, error_code="PROVIDER_TRANSIENT", details={"retry_after": retry_after})
        self.retry_after = retry_after


class ProviderAuthError(MailTimelineError):
    """Credentials rejected by the provider."""

    def __init__(self, message: str, account_id: str = None):
        super().__init__(message, error_code="PROVIDER_AUTH", details={"account_id": account_id})
        self.account_id = account_id


class BlobStoreError(MailTimelineError):
    """Blob store put/get failed."""

    def __init__(self, message: str, storage_ref: str = None):
        super().__init__(message, error_code="BLOB_STORE_ERROR", details={"storage_ref": storage_ref})
        self.storage_ref = storage_ref


class NotFoundError(MailTimelineError):
    """Requested message, thread or account does not exist."""

    def __init__(self, message: str, resource: str = None):
        super().__init__(message, error_code="NOT_FOUND", details={"resource": resource})
        self.resource = resource


RETRYABLE_ERRORS = (ProviderTransientError, BlobStoreError)
