"""Manual review actions on the last snapshot.

Objective:
    Apply user actions to the persisted snapshot: manual keep, single
    trash, and bulk "trash suggested" per sender group.

Policy:
    Both trash paths are best effort and report a :class:`TrashOutcome`:
    - A missing Gmail session fails fast with :class:`AuthError` before any
      call is made.
    - A failed trash call is logged, recorded in ``outcome.failures`` and
      leaves the email's ``trashed`` flag unset. This includes a session
      invalidated mid-run; calls that already succeeded stay marked.
    - Only emails whose call succeeded are marked trashed.
    The web page shows failures as status text.

High-level call tree:
    - :class:`ReviewService`
        - :meth:`ReviewService.load_last`
        - :meth:`ReviewService.keep`
        - :meth:`ReviewService.trash`
            - :meth:`ReviewService._trash_ids`
        - :meth:`ReviewService.trash_suggested`
            - :meth:`ReviewService._trash_ids`
"""

import logging
from typing import Optional

from .auth import require_session
from .config import DecisionAction
from .exceptions import TriageError
from .gmail_client import GmailClient
from .models import MANUAL_KEEP_REASON, ScanSnapshot, TrashOutcome
from .storage import TriageStore

logger = logging.getLogger(__name__)


class SnapshotMissing(TriageError):
    """Raised when an action needs a snapshot and none was saved."""


class EmailNotFound(TriageError):
    """Raised when an email or sender is not part of the snapshot."""


class ReviewService:
    """
    Mutations on the stored snapshot.

    Every mutation runs inside :meth:`TriageStore.snapshot_transaction`, so
    the persisted document always matches what the page renders next.

    Attributes:
        store: Settings/snapshot store.
        gmail_client: Gmail client bound to the current session.
    """

    def __init__(self, store: TriageStore, gmail_client: GmailClient) -> None:
        self.store = store
        self.gmail_client = gmail_client

    def load_last(self) -> Optional[ScanSnapshot]:
        """Return the persisted snapshot without rescanning."""
        return self.store.load_snapshot()

    def keep(self, email_id: str) -> ScanSnapshot:
        """
        Mark an email as manually kept. No remote call is made.

        Args:
            email_id: Email id.

        Returns:
            ScanSnapshot: Updated snapshot.
        """
        with self.store.snapshot_transaction() as snapshot:
            snapshot = self._require(snapshot)
            email = snapshot.find_email(email_id)
            if email is None:
                raise EmailNotFound(f"Email {email_id} is not in the last scan.")

            email.decision = email.decision.model_copy(
                update={"action": DecisionAction.KEEP, "reason": MANUAL_KEEP_REASON}
            )
            logger.info(f"Manually kept email {email_id}")
        return snapshot

    def trash(self, email_id: str) -> TrashOutcome:
        """
        Trash one email.

        Args:
            email_id: Email id.

        Returns:
            TrashOutcome: ``attempted`` is 1; check ``failures`` for the error.
        """
        with self.store.snapshot_transaction() as snapshot:
            snapshot = self._require(snapshot)
            email = snapshot.find_email(email_id)
            if email is None:
                raise EmailNotFound(f"Email {email_id} is not in the last scan.")

            outcome = self._trash_ids(snapshot, [email_id])
            outcome.sender = email.sender
        return outcome

    def trash_suggested(self, sender: str) -> TrashOutcome:
        """
        Trash every email of a sender group the model marked ``trash``.

        Emails already trashed are skipped.

        Args:
            sender: Sender group key.

        Returns:
            TrashOutcome: Counts and per-id failures.
        """
        with self.store.snapshot_transaction() as snapshot:
            snapshot = self._require(snapshot)
            group = snapshot.grouped.get(sender)
            if group is None:
                raise EmailNotFound(f"Sender {sender} is not in the last scan.")

            outcome = self._trash_ids(snapshot, self.suggested_ids(snapshot, sender))
            outcome.sender = sender

        logger.info(f"Trashed {outcome.ratio} suggested emails from {sender}")
        return outcome

    def suggested_ids(self, snapshot: ScanSnapshot, sender: str) -> list[str]:
        """Ids a bulk trash on ``sender`` would target."""
        group = snapshot.grouped.get(sender)
        if group is None:
            return []
        return [
            e.id
            for e in group.emails
            if e.decision.action == DecisionAction.TRASH and not e.trashed
        ]

    def _trash_ids(self, snapshot: ScanSnapshot, ids: list[str]) -> TrashOutcome:
        outcome = TrashOutcome(attempted=len(ids))
        if not ids:
            return outcome

        require_session(self.gmail_client.session)

        for email_id in ids:
            try:
                self.gmail_client.trash_message(email_id)
            except TriageError as e:
                logger.error(f"Failed to trash email {email_id}: {e}")
                outcome.failures[email_id] = str(e)
                continue
            except Exception as e:
                logger.exception(f"Unexpected error trashing email {email_id}")
                outcome.failures[email_id] = f"Unexpected error: {e}"
                continue

            email = snapshot.find_email(email_id)
            if email is not None:
                email.trashed = True
            outcome.succeeded += 1

        return outcome

    def _require(self, snapshot: Optional[ScanSnapshot]) -> ScanSnapshot:
        if snapshot is None:
            raise SnapshotMissing("No last scan saved yet.")
        return snapshot
