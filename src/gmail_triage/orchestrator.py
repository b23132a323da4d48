"""Scan workflow orchestrator.

Objective:
    Coordinate one scan end to end:
    1) Persist the current settings
    2) List message ids for the query
    3) Fetch header-only metadata for every id
    4) Classify the metadata in consecutive batches
    5) Group labeled emails by sender
    6) Persist the snapshot and return it to the UI

Responsibilities:
    - Compose the core components (store, Gmail client, classifier).
    - Publish progress after each phase and each batch.
    - Abort on the first failure without writing a new snapshot; the
      previous snapshot stays on disk.

High-level call tree:
    - :class:`TriageOrchestrator`
        - :meth:`TriageOrchestrator.scan`
            - :meth:`TriageStore.save_settings`
            - :meth:`GmailClient.list_message_ids`
            - :meth:`TriageOrchestrator.fetch_metadata`
                - :meth:`GmailClient.get_message_meta`
            - :meth:`TriageOrchestrator.classify`
                - :func:`iter_batches`
                - :meth:`EmailClassifier.classify_batch`
            - :func:`group_by_sender`
            - :meth:`TriageStore.save_snapshot`
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional, Sequence, TypeVar

from .classifier import EmailClassifier
from .config import AppConfig, TriageSettings
from .gmail_client import GmailClient
from .models import (
    LabeledEmail,
    MessageMeta,
    ScanProgress,
    ScanSnapshot,
    ScanState,
    SenderGroup,
)
from .sanitizer import UNKNOWN_SENDER
from .storage import TriageStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[ScanProgress], None]


def iter_batches(items: Sequence[T], batch_size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of ``batch_size`` (the last may be shorter)."""
    size = max(1, batch_size)
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def group_by_sender(labeled: list[LabeledEmail]) -> dict[str, SenderGroup]:
    """
    Partition labeled emails by normalized sender.

    Groups appear in order of first occurrence and keep scan order inside.

    Args:
        labeled: Labeled emails.

    Returns:
        dict[str, SenderGroup]: Sender key -> group.
    """
    grouped: dict[str, SenderGroup] = {}
    for email in labeled:
        key = email.sender or UNKNOWN_SENDER
        if key not in grouped:
            grouped[key] = SenderGroup(sender=key, from_header_sample=email.from_header)
        grouped[key].emails.append(email)
    return grouped


class TriageOrchestrator:
    """
    Orchestrates one scan.

    This class is "glue" code: it connects the Gmail client, the
    classifier and the store without embedding classification rules.

    Attributes:
        config: Process configuration.
        store: Settings/snapshot store.
        gmail_client: Gmail client bound to the current session.
        classifier: LLM classifier.
        progress: Latest published progress.
    """

    def __init__(
        self,
        config: AppConfig,
        store: TriageStore,
        gmail_client: GmailClient,
        classifier: EmailClassifier,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        """
        Initialize orchestrator with all components.

        Args:
            config: Process configuration.
            store: Settings/snapshot store.
            gmail_client: Gmail client.
            classifier: LLM classifier.
            on_progress: Called with a :class:`ScanProgress` after each step.
        """
        self.config = config
        self.store = store
        self.gmail_client = gmail_client
        self.classifier = classifier
        self.on_progress = on_progress
        self.progress = ScanProgress()

    def _publish(self, state: ScanState, processed: int = 0, total: int = 0, message: str = "") -> None:
        self.progress = ScanProgress(state=state, processed=processed, total=total, message=message)
        logger.debug(f"Scan progress: {state.value} {processed}/{total} {message}")
        if self.on_progress is not None:
            self.on_progress(self.progress)

    def fetch_metadata(self, ids: list[str]) -> list[MessageMeta]:
        """
        Fetch metadata for ``ids``, preserving their order.

        With ``fetch_concurrency > 1`` requests run in a bounded thread
        pool; results are still returned in id order.

        Args:
            ids: Message ids.

        Returns:
            list[MessageMeta]: Metadata in id order.
        """
        workers = min(self.config.fetch_concurrency, len(ids))
        if workers <= 1:
            return [self.gmail_client.get_message_meta(message_id) for message_id in ids]

        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(self.gmail_client.get_message_meta, ids))

    def classify(self, settings: TriageSettings, metas: list[MessageMeta]) -> list[LabeledEmail]:
        """
        Classify metadata batch by batch.

        Any batch failure propagates and aborts the scan.

        Args:
            settings: User settings.
            metas: Metadata in scan order.

        Returns:
            list[LabeledEmail]: Labeled emails in scan order.
        """
        labeled: list[LabeledEmail] = []
        total = len(metas)
        self._publish(ScanState.CLASSIFYING, 0, total, f"Processed 0 / {total}")

        for batch in iter_batches(metas, settings.batch_size):
            labeled.extend(self.classifier.classify_batch(settings, batch))
            self._publish(
                ScanState.CLASSIFYING,
                len(labeled),
                total,
                f"Processed {len(labeled)} / {total}",
            )
        return labeled

    def scan(self, settings: Optional[TriageSettings] = None) -> ScanSnapshot:
        """Run one scan and persist its snapshot.

        Args:
            settings: Settings edited by the user. They are saved first so the
                scan reflects them; if None, the saved settings are used.

        Returns:
            ScanSnapshot: The persisted snapshot.

        Raises:
            AuthError: If Gmail is not connected or the Groq key is missing.
            RemoteError: If a Gmail or Groq call fails.
        """
        try:
            if settings is not None:
                settings = self.store.save_settings(settings)
            else:
                settings = self.store.load_settings()

            logger.info(
                f"Starting scan (query={settings.query!r}, max_messages={settings.max_messages}, "
                f"batch_size={settings.batch_size})"
            )

            self._publish(ScanState.LISTING, message="Listing messages")
            ids = self.gmail_client.list_message_ids(settings.query, settings.max_messages)

            self._publish(
                ScanState.FETCHING_METADATA, 0, len(ids), "Reading headers/snippets"
            )
            metas = self.fetch_metadata(ids)

            labeled = self.classify(settings, metas)

            self._publish(ScanState.GROUPING, len(labeled), len(labeled), "Grouping by sender")
            grouped = group_by_sender(labeled)

            snapshot = ScanSnapshot(
                generated_at=datetime.now(timezone.utc),
                query=settings.query,
                total=len(labeled),
                grouped=grouped,
            )
            self.store.save_snapshot(snapshot)
        except Exception as e:
            self._publish(ScanState.FAILED, message=str(e))
            logger.error(f"Scan failed: {e}")
            raise

        self._publish(
            ScanState.PERSISTED,
            snapshot.total,
            snapshot.total,
            f"Scanned {snapshot.total} emails from {len(grouped)} senders",
        )
        logger.info(f"Completed scan: {snapshot.total} emails, {len(grouped)} senders")
        return snapshot
