"""Durable settings and snapshot storage.

Objective:
    Persist the two durable documents of the app, the user settings and the
    last scan snapshot, as whole JSON documents keyed by name.

Responsibilities:
    - Provide a file backend (:class:`FileDocumentStore`) with atomic writes.
    - Select the blob backend (:mod:`gmail_triage.blob_store`) from config.
    - Load settings with defaults merged in (:meth:`TriageStore.load_settings`).
    - Serialize read-modify-write of the snapshot
      (:meth:`TriageStore.snapshot_transaction`).

High-level call tree:
    - :func:`create_store` -> returns :class:`TriageStore`
    - :class:`TriageStore`
        - :meth:`TriageStore.load_settings` / :meth:`TriageStore.save_settings`
        - :meth:`TriageStore.load_snapshot` / :meth:`TriageStore.save_snapshot`
        - :meth:`TriageStore.snapshot_transaction`

Operational notes:
    - Exactly one snapshot is kept; every save overwrites it.
    - The lock only covers one process. Several browser tabs on the same
      server share it. Across server processes, snapshot mutations are
      guarded by a version check and fail with :class:`DocumentConflict`.
"""

import hashlib
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Protocol

from pydantic import ValidationError

from .blob_store import BlobDocumentLocation, BlobDocumentStore
from .config import LAST_SCAN_KEY, SETTINGS_KEY, AppConfig, TriageSettings
from .exceptions import DocumentConflict
from .models import ScanSnapshot

logger = logging.getLogger(__name__)


def _content_version(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class DocumentStore(Protocol):
    """Key -> JSON text persistence."""

    def read(self, key: str) -> Optional[str]: ...

    def write(self, key: str, payload: str) -> None: ...

    def read_versioned(self, key: str) -> tuple[Optional[str], Optional[str]]: ...

    def write_versioned(self, key: str, payload: str, version: Optional[str]) -> None: ...


class FileDocumentStore:
    """Store each document as ``<data_dir>/<key>.json``.

    Writes go to a temporary file in the same directory and are renamed
    over the target, so readers never see a half-written document.
    The version of a document is the SHA-256 of its text.
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)

    def _path(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def read(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def write(self, key: str, payload: str) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.data_dir, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, self._path(key))
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def read_versioned(self, key: str) -> tuple[Optional[str], Optional[str]]:
        payload = self.read(key)
        if payload is None:
            return None, None
        return payload, _content_version(payload)

    def write_versioned(self, key: str, payload: str, version: Optional[str]) -> None:
        _, current = self.read_versioned(key)
        if current != version:
            logger.warning(f"Document {key} changed since it was read")
            raise DocumentConflict(
                "The last scan was changed by another session. Load last and try again."
            )
        self.write(key, payload)


class TriageStore:
    """
    Settings and snapshot persistence on top of a :class:`DocumentStore`.

    Attributes:
        documents: Backend holding the JSON documents.
    """

    def __init__(self, documents: DocumentStore) -> None:
        self.documents = documents
        self._lock = threading.RLock()

    def load_settings(self) -> TriageSettings:
        """
        Load user settings, merging defaults for missing fields.

        Fields that fail validation (e.g. a batch size of 0 written by an
        older version) are dropped and replaced by their defaults.

        Returns:
            TriageSettings: Settings instance.
        """
        raw = self._read_json(SETTINGS_KEY)
        if not isinstance(raw, dict):
            return TriageSettings()

        known = {k: v for k, v in raw.items() if k in TriageSettings.model_fields}
        try:
            return TriageSettings.model_validate(known)
        except ValidationError as e:
            bad = {str(err["loc"][0]) for err in e.errors() if err.get("loc")}
            logger.warning(f"Ignoring invalid stored settings fields: {sorted(bad)}")
            return TriageSettings.model_validate(
                {k: v for k, v in known.items() if k not in bad}
            )

    def save_settings(self, settings: TriageSettings) -> TriageSettings:
        """
        Persist user settings as a whole document.

        Args:
            settings: Settings to save.

        Returns:
            TriageSettings: The saved settings.
        """
        with self._lock:
            self.documents.write(SETTINGS_KEY, settings.model_dump_json(indent=2))
        logger.debug("Saved settings")
        return settings

    def load_snapshot(self) -> Optional[ScanSnapshot]:
        """
        Load the last scan snapshot.

        Returns:
            Optional[ScanSnapshot]: Snapshot, or None if none was saved or
            the stored document is unreadable.
        """
        return self._parse_snapshot(self.documents.read(LAST_SCAN_KEY))

    def save_snapshot(self, snapshot: ScanSnapshot) -> None:
        """
        Overwrite the last scan snapshot.

        Args:
            snapshot: Snapshot to persist.
        """
        with self._lock:
            self.documents.write(LAST_SCAN_KEY, self._dump_snapshot(snapshot))
        logger.debug(f"Saved snapshot ({snapshot.total} emails)")

    @contextmanager
    def snapshot_transaction(self) -> Iterator[Optional[ScanSnapshot]]:
        """
        Read, mutate in memory, and write back the snapshot under the lock.

        The snapshot is written only if the block exits without an
        exception and a snapshot exists. The write is conditional on the
        version that was read, so a concurrent writer in another process
        makes it fail instead of being overwritten.

        Yields:
            Optional[ScanSnapshot]: The current snapshot (None if absent).

        Raises:
            DocumentConflict: If the stored snapshot changed meanwhile.
        """
        with self._lock:
            payload, version = self.documents.read_versioned(LAST_SCAN_KEY)
            snapshot = self._parse_snapshot(payload)
            yield snapshot
            if snapshot is not None:
                self.documents.write_versioned(
                    LAST_SCAN_KEY, self._dump_snapshot(snapshot), version
                )
                logger.debug(f"Saved snapshot ({snapshot.total} emails)")

    def _parse_snapshot(self, payload: Optional[str]) -> Optional[ScanSnapshot]:
        raw = self._decode(LAST_SCAN_KEY, payload)
        if raw is None:
            return None
        try:
            return ScanSnapshot.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Stored snapshot is invalid; ignoring it: {e}")
            return None

    def _dump_snapshot(self, snapshot: ScanSnapshot) -> str:
        return json.dumps(snapshot.model_dump(mode="json", by_alias=True), ensure_ascii=False)

    def _read_json(self, key: str) -> Optional[object]:
        return self._decode(key, self.documents.read(key))

    def _decode(self, key: str, payload: Optional[str]) -> Optional[object]:
        if payload is None:
            return None
        try:
            return json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning(f"Stored document {key} is not valid JSON: {e}")
            return None


def create_store(config: AppConfig) -> TriageStore:
    """
    Build the store for the configured backend.

    Args:
        config: Process configuration.

    Returns:
        TriageStore: Store instance.
    """
    if config.storage_backend == "azure_blob":
        account_url = config.blob_account_url.strip()
        container = config.blob_container.strip()
        if account_url and container:
            logger.info("Using Azure Blob document storage (container=%s)", container)
            return TriageStore(BlobDocumentStore(BlobDocumentLocation(account_url, container)))
        logger.warning(
            "storage_backend=azure_blob but blob settings are incomplete; falling back to file storage"
        )

    logger.info("Using file document storage (data_dir=%s)", config.data_dir)
    return TriageStore(FileDocumentStore(config.data_dir))
