"""Mailbox session context.

Objective:
    Hold the Gmail bearer credential for the lifetime of a connection. The
    token is acquired externally (Google's browser token client, or pasted
    by the user) and handed to :meth:`MailboxSession.connect`.

Responsibilities:
    - Keep the access token in memory only. It is never persisted.
    - Provide ready-to-use HTTP headers for Gmail API calls.
    - Fail fast with :class:`gmail_triage.exceptions.AuthError` when the
      session was never connected or has been invalidated.

High-level call tree:
    - :meth:`MailboxSession.connect` (classmethod, at connect time)
    - :meth:`MailboxSession.get_auth_headers`
        - :meth:`MailboxSession.get_access_token`
    - :meth:`MailboxSession.invalidate` (at disconnect time)
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from .exceptions import AuthError

logger = logging.getLogger(__name__)

# Scope requested by the page's token client.
GMAIL_SCOPE = "https://www.googleapis.com/auth/gmail.modify"


class MailboxSession:
    """
    Explicit session context passed to every mailbox call.

    Attributes:
        connected_at: When the token was handed over.
    """

    def __init__(self, access_token: str) -> None:
        """
        Initialize the session.

        Args:
            access_token: OAuth access token with the gmail.modify scope.
        """
        self._access_token: Optional[str] = access_token
        self.connected_at = datetime.now(timezone.utc)

    @classmethod
    def connect(cls, access_token: Optional[str]) -> "MailboxSession":
        """Create a session from a freshly obtained token.

        Args:
            access_token: Bearer token.

        Returns:
            MailboxSession: Active session.

        Raises:
            AuthError: If the token is empty.
        """
        token = (access_token or "").strip()
        if not token:
            raise AuthError("No access token returned. Connect Gmail again.")
        logger.info("Gmail session connected")
        return cls(token)

    @property
    def is_active(self) -> bool:
        """Whether the session still holds a token."""
        return bool(self._access_token)

    def get_access_token(self) -> str:
        """
        Return the bearer token.

        Returns:
            str: Access token.

        Raises:
            AuthError: If the session has been invalidated.
        """
        if not self._access_token:
            raise AuthError("Not connected to Gmail yet. Connect Gmail first.")
        return self._access_token

    def get_auth_headers(self) -> dict[str, str]:
        """
        Get HTTP headers with authorization for Gmail API requests.

        Returns:
            dict[str, str]: Headers dictionary with Bearer token.
        """
        token = self.get_access_token()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def invalidate(self) -> None:
        """Drop the token. Later calls through this session raise AuthError."""
        self._access_token = None
        logger.info("Gmail session disconnected")


def require_session(session: Optional[MailboxSession]) -> MailboxSession:
    """Return ``session`` if it is usable.

    Args:
        session: Session held by the caller, possibly None.

    Returns:
        MailboxSession: The active session.

    Raises:
        AuthError: If there is no active session.
    """
    if session is None or not session.is_active:
        raise AuthError("Not connected to Gmail yet. Connect Gmail first.")
    return session
