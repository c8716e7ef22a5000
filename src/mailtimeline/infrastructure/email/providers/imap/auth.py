from __future__ import annotations
from dataclasses import dataclass
import imaplib

from loguru import logger

from mailtimeline.domain.errors import ProviderAuthError, ProviderTransientError


@dataclass(frozen=True)
class ImapCredentials:
    """
    Credentials for a single mailbox. Token acquisition happens elsewhere;
    an app password or an already-issued OAuth access token goes in here.
    """
    email: str
    secret: str
    use_xoauth2: bool = False


class ImapAuthenticator:
    """
    Responsible ONLY for establishing an authenticated IMAP connection.
    No folder logic, no fetching, no parsing.
    """

    def __init__(self, host: str, port: int = 993, timeout: float = 30.0) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout

    def login(self, account_id: str, creds: ImapCredentials) -> imaplib.IMAP4_SSL:
        """
        Returns an authenticated IMAP4_SSL connection.

        Raises ProviderTransientError when the server cannot be reached and
        ProviderAuthError when it rejects the credentials.
        """
        try:
            conn = imaplib.IMAP4_SSL(host=self.host, port=self.port, timeout=self.timeout)
        except OSError as e:
            raise ProviderTransientError(f"Cannot reach {self.host}:{self.port}: {e}") from e

        try:
            if creds.use_xoauth2:
                token = f"user={creds.email}\x01auth=Bearer {creds.secret}\x01\x01".encode()
                conn.authenticate("XOAUTH2", lambda _: token)
            else:
                conn.login(creds.email, creds.secret)
        except imaplib.IMAP4.abort as e:
            raise ProviderTransientError(f"Connection dropped during login: {e}") from e
        except imaplib.IMAP4.error as e:
            logger.warning(f"IMAP login rejected for {account_id}")
            raise ProviderAuthError(f"Login rejected for {creds.email}: {e}", account_id=account_id) from e
        except OSError as e:
            raise ProviderTransientError(f"Socket error during login: {e}") from e
        return conn
