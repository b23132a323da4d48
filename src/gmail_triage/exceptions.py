"""Error taxonomy shared by the mailbox and classification clients.

Propagation policy:
    - :class:`AuthError` is a precondition failure (no bearer token, no API
      key). It is raised before any network call and never retried.
    - :class:`RemoteError` wraps a non-2xx HTTP response from Gmail or Groq.
      Its message is shown to the user verbatim.
    - :class:`DecodeError` marks an unusable classification payload. The
      classifier catches it and degrades to default ``review`` decisions.
    - :class:`DocumentConflict` marks a lost read-modify-write race on a
      stored document. Nothing is written; the user reloads and retries.
"""

from typing import Optional


class TriageError(Exception):
    """Base class for errors surfaced as status text by the web UI."""


class AuthError(TriageError):
    """Raised when a credential required for a call is missing."""


class RemoteError(TriageError):
    """Raised when a remote API answers with a non-success status.

    Args:
        status: HTTP status code, or ``None`` when no response was received.
        body: Raw response body (or transport error text).
        service: Human-readable name of the remote API.
    """

    def __init__(self, status: Optional[int], body: str, service: str = "Remote") -> None:
        super().__init__(f"{service} API error {status}: {body}")
        self.status = status
        self.body = body
        self.service = service


class DecodeError(TriageError):
    """Raised when a classification response cannot be decoded."""


class DocumentConflict(TriageError):
    """Raised when a stored document changed between read and write."""
