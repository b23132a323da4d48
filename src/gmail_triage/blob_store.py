"""Azure Blob Storage document backend.

Objective:
    Store the settings and last-scan JSON documents in Azure Blob Storage,
    so the web app can run in a container without a persistent disk.

Key points:
    - One blob per document key (``<key>.json``).
    - The blob ETag is the document version. :meth:`BlobDocumentStore.write_versioned`
      uploads only if the blob still carries the ETag that was read, so two
      servers mutating the same snapshot cannot overwrite each other.
    - Uses DefaultAzureCredential for authentication (Managed Identity in Azure).

Operational notes:
    - The settings document contains the Groq API key. Treat blob access
      as sensitive and restrict the app identity to a single container.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from azure.core import MatchConditions
from azure.core.exceptions import (
    ResourceExistsError,
    ResourceModifiedError,
    ResourceNotFoundError,
)
from azure.identity import DefaultAzureCredential
from azure.storage.blob import BlobClient

from .exceptions import DocumentConflict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlobDocumentLocation:
    """Location of the document container.

    Args:
        account_url: Storage account blob endpoint URL.
        container_name: Blob container name.
    """

    account_url: str
    container_name: str


class BlobDocumentStore:
    """Read and write JSON documents in Azure Blob Storage."""

    def __init__(self, location: BlobDocumentLocation) -> None:
        """Initialize the blob document store.

        Args:
            location: Target container location.
        """
        self._location = location
        self._credential = DefaultAzureCredential(exclude_interactive_browser_credential=True)

    def _get_blob_client(self, key: str) -> BlobClient:
        """Create a BlobClient for a document key.

        Args:
            key: Document key.

        Returns:
            BlobClient: Configured blob client.
        """
        return BlobClient(
            account_url=self._location.account_url,
            container_name=self._location.container_name,
            blob_name=f"{key}.json",
            credential=self._credential,
        )

    def read_versioned(self, key: str) -> Tuple[Optional[str], Optional[str]]:
        """Download a document and its ETag.

        Args:
            key: Document key.

        Returns:
            tuple[Optional[str], Optional[str]]: (payload, etag). If the blob
            does not exist, returns (None, None).
        """
        client = self._get_blob_client(key)
        try:
            downloader = client.download_blob()
            data = downloader.readall()
        except ResourceNotFoundError:
            return None, None

        payload = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else str(data)
        return payload, downloader.properties.etag

    def read(self, key: str) -> Optional[str]:
        """Return the document text, or None if it does not exist."""
        payload, _ = self.read_versioned(key)
        return payload

    def write(self, key: str, payload: str) -> None:
        """Overwrite the document unconditionally."""
        self._get_blob_client(key).upload_blob(payload.encode("utf-8"), overwrite=True)

    def write_versioned(self, key: str, payload: str, version: Optional[str]) -> None:
        """Overwrite the document only if it is still at ``version``.

        Args:
            key: Document key.
            payload: JSON text.
            version: ETag returned by :meth:`read_versioned`; None means the
                document must not exist yet.

        Raises:
            DocumentConflict: If another writer changed the blob since it was read.
        """
        client = self._get_blob_client(key)
        try:
            if version is None:
                client.upload_blob(payload.encode("utf-8"), overwrite=False)
            else:
                client.upload_blob(
                    payload.encode("utf-8"),
                    overwrite=True,
                    etag=version,
                    match_condition=MatchConditions.IfNotModified,
                )
        except (ResourceModifiedError, ResourceExistsError) as exc:
            logger.warning("Document blob changed since it was read (key=%s)", key)
            raise DocumentConflict(
                "The last scan was changed by another session. Load last and try again."
            ) from exc
