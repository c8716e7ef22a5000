"""Application settings using Pydantic Settings for configuration management."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from mailtimeline.application.association import DEFAULT_FREEMAIL_DOMAINS


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Application
    app_name: str = "Mail Timeline"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    api_cors_origins: list[str] = ["*"]

    # MIME normalizer
    max_mime_depth: int = 20

    # Attachments
    attachment_max_mb: float = 25.0
    inline_data_max_kb: int = 64

    # Sync pipeline
    sync_workers: int = 4
    message_parallelism: int = 4
    fetch_page_size: int = 50
    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 30.0
    poll_interval_minutes: int = 5

    # Threading
    thread_window_days: int = 30

    # Association
    freemail_domains: list[str] = Field(default_factory=lambda: sorted(DEFAULT_FREEMAIL_DOMAINS))

    # Timeline
    timeline_page_size: int = 25
    timeline_max_page_size: int = 100

    # Persistence
    store_backend: Literal["memory", "sqlite"] = "sqlite"
    sqlite_path: str = "data/mailtimeline.db"

    # Blob store (S3-compatible)
    blob_backend: Literal["memory", "s3"] = "memory"
    s3_endpoint: str | None = None
    s3_region: str = "us-east-1"
    s3_access_key: SecretStr | None = None
    s3_secret_key: SecretStr | None = None
    s3_bucket: str = "mail-attachments"
    s3_prefix: str = "email-attachments"
    s3_use_ssl: bool = False
    s3_force_path_style: bool = True

    # IMAP provider
    imap_host: str = "imap.mail.us-east-1.awsapps.com"
    imap_port: int = 993
    imap_folder: str = "INBOX"
    imap_timeout_seconds: float = 30.0
    imap_gmail_extensions: bool = False

    # Comma-separated account names; each reads MAIL_<NAME>_* variables
    mail_accounts: str = ""

    @computed_field
    @property
    def attachment_max_bytes(self) -> int:
        """Attachments above this size are stored as metadata-only stubs."""
        return int(self.attachment_max_mb * 1024 * 1024)

    @computed_field
    @property
    def inline_data_max_bytes(self) -> int:
        """Inline images up to this size are embedded as data: URIs."""
        return self.inline_data_max_kb * 1024


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
