"""Infrastructure layer - providers, storage, and configuration."""

from mailtimeline.infrastructure.logging import configure_logging
from mailtimeline.infrastructure.settings import Settings, get_settings

__all__ = [
    "Settings",
    "configure_logging",
    "get_settings",
]
