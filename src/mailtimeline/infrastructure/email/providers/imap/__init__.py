from mailtimeline.infrastructure.email.providers.imap.auth import ImapAuthenticator, ImapCredentials
from mailtimeline.infrastructure.email.providers.imap.client import ImapEmailSource

__all__ = ["ImapAuthenticator", "ImapCredentials", "ImapEmailSource"]
