"""Gmail REST API client for triage operations.

Objective:
    Provide a thin wrapper around the Gmail message endpoints used by this
    project. This module centralizes HTTP request construction,
    authentication headers, and Pydantic validation of responses.

Responsibilities:
    - Issue authenticated HTTP requests to Gmail (via :class:`requests`).
    - List message ids for a search query.
    - Fetch header-only metadata for a message.
    - Move a message to Trash.

High-level call tree:
    - Public API:
        - :meth:`GmailClient.list_message_ids`
        - :meth:`GmailClient.get_message_meta` -> returns :class:`gmail_triage.models.MessageMeta`
        - :meth:`GmailClient.trash_message`
    - Internal helpers:
        - :meth:`GmailClient._make_request` (auth + error handling)
        - :func:`header_value`

Gmail endpoints used:
    - ``GET messages?q=...&maxResults=...`` (followed through ``nextPageToken``)
    - ``GET messages/{id}?format=metadata&metadataHeaders=From,To,Subject,Date``
    - ``POST messages/{id}/trash``

Error handling:
    - A missing or invalidated session raises :class:`AuthError` before any
      request is sent.
    - Non-2xx responses are logged and raised as :class:`RemoteError`.
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import requests

from .auth import MailboxSession, require_session
from .config import AppConfig
from .exceptions import RemoteError
from .models import MessageMeta
from .sanitizer import clean_snippet

logger = logging.getLogger(__name__)

METADATA_HEADERS = ("From", "To", "Subject", "Date")

# Gmail caps messages.list pages at 500 ids.
MAX_PAGE_SIZE = 500


def header_value(message: dict[str, Any], name: str) -> str:
    """Return a header value from a Gmail message resource.

    Lookup is case-insensitive. A missing header yields an empty string.

    Args:
        message: Gmail message resource.
        name: Header name.

    Returns:
        str: Header value or ``""``.
    """
    headers = (message.get("payload") or {}).get("headers") or []
    wanted = name.lower()
    for header in headers:
        if str(header.get("name", "")).lower() == wanted:
            return str(header.get("value") or "")
    return ""


class GmailClient:
    """
    Client for the Gmail API, scoped to one mailbox session.

    This class is state-light: it depends on
    :class:`gmail_triage.auth.MailboxSession` for the bearer token and builds
    URLs relative to :attr:`AppConfig.gmail_api_base_url`.

    Attributes:
        config: Process configuration.
        session: Session context; may be None when not connected.
    """

    def __init__(self, config: AppConfig, session: Optional[MailboxSession]) -> None:
        """
        Initialize Gmail client.

        Args:
            config: Process configuration.
            session: Mailbox session (None when disconnected).
        """
        self.config = config
        self.session = session

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Any] = None,
        json_data: Optional[dict] = None,
    ) -> dict:
        """Make an authenticated request to Gmail.

        This helper:
        - Adds auth headers (Bearer token, JSON content type).
        - Applies the configured timeout.
        - Raises :class:`RemoteError` for non-2xx responses.
        - Returns decoded JSON or ``{}`` for empty bodies.

        Args:
            method: HTTP method (GET, POST).
            endpoint: Path relative to the base URL.
            params: Query parameters (dict or list of pairs).
            json_data: JSON body data.

        Returns:
            dict: Response JSON data.

        Raises:
            AuthError: If no session is active.
            RemoteError: If the request fails.
        """
        headers = require_session(self.session).get_auth_headers()
        url = f"{self.config.gmail_api_base_url.rstrip('/')}/{endpoint.lstrip('/')}"

        try:
            response = requests.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                json=json_data,
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Gmail API request failed: {e}")
            raise RemoteError(None, str(e), service="Gmail") from e

        if not response.ok:
            logger.error(f"Gmail API error: {response.status_code} - {response.text}")
            raise RemoteError(response.status_code, response.text, service="Gmail")

        if response.status_code == 204 or not response.content:
            return {}

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Gmail API returned invalid JSON: {e}")
            raise RemoteError(response.status_code, response.text, service="Gmail") from e

    def list_message_ids(self, query: Optional[str], max_results: int) -> list[str]:
        """List message ids matching a Gmail search query.

        Args:
            query: Gmail search query; blank means all mail.
            max_results: Result cap.

        Returns:
            list[str]: Message ids in the order Gmail returned them.
        """
        logger.debug(f"Listing up to {max_results} messages (query={query!r})")

        ids: list[str] = []
        page_token: Optional[str] = None
        while len(ids) < max_results:
            params: dict[str, Any] = {"maxResults": min(max_results - len(ids), MAX_PAGE_SIZE)}
            if query and query.strip():
                params["q"] = query.strip()
            if page_token:
                params["pageToken"] = page_token

            response = self._make_request("GET", "messages", params=params)
            ids.extend(m["id"] for m in response.get("messages", []) if m.get("id"))

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        logger.debug(f"Listed {len(ids)} message ids")
        return ids[:max_results]

    def get_message_meta(self, message_id: str) -> MessageMeta:
        """Fetch header-only metadata for a message.

        Only ``From``, ``To``, ``Subject``, ``Date`` and the snippet are
        requested; the body never leaves the mailbox.

        Args:
            message_id: Gmail message id.

        Returns:
            MessageMeta: Parsed metadata.
        """
        safe_id = quote(message_id, safe="")
        params = [("format", "metadata")] + [
            ("metadataHeaders", name) for name in METADATA_HEADERS
        ]

        message = self._make_request("GET", f"messages/{safe_id}", params=params)

        return MessageMeta(
            id=message_id,
            from_header=header_value(message, "From"),
            to=header_value(message, "To"),
            subject=header_value(message, "Subject"),
            date=header_value(message, "Date"),
            snippet=clean_snippet(message.get("snippet")),
        )

    def trash_message(self, message_id: str) -> None:
        """Move a message to Trash.

        Trashing an already-trashed message succeeds on Gmail's side; any
        HTTP failure is forwarded to the caller.

        Args:
            message_id: Gmail message id.

        Raises:
            RemoteError: If Gmail rejects the call.
        """
        safe_id = quote(message_id, safe="")
        self._make_request("POST", f"messages/{safe_id}/trash")
        logger.debug(f"Trashed message {message_id}")
