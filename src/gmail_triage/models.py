"""Pydantic data models used across the application.

Objective:
    Centralize all strongly-typed data structures representing:
    - Message metadata returned by the Gmail API
    - Per-message decisions returned by the LLM
    - Sender groups and the persisted scan snapshot
    - Derived view models and action outcomes used by the web UI

Design notes:
    - Field aliases match the persisted snapshot document and the payload
      sent to the model (``from``, ``generatedAt``, ``fromHeaderSample``).
    - ``model_config = ConfigDict(populate_by_name=True)`` allows
      constructing models with either alias names or pythonic field names.
    - Persist with ``model_dump(mode="json", by_alias=True)``.

High-level structure:
    - Gmail primitives:
        - :class:`MessageMeta`
    - Classification primitives:
        - :class:`Decision`
        - :class:`LabeledEmail`
    - Snapshot primitives:
        - :class:`SenderGroup`
        - :class:`ScanSnapshot`
    - Derived / runtime:
        - :class:`ActionCounts`, :class:`GroupView`, :class:`SnapshotView`
        - :class:`ScanState`, :class:`ScanProgress`
        - :class:`TrashOutcome`
"""

from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .config import DecisionAction
from .sanitizer import normalize_sender

NO_DECISION_REASON = "no decision"
MANUAL_KEEP_REASON = "manually kept"


class MessageMeta(BaseModel):
    """
    Header-only view of a Gmail message.

    Attributes:
        id: Gmail message id.
        from_header: Raw ``From`` header.
        to: Raw ``To`` header.
        subject: Raw ``Subject`` header.
        date: Raw ``Date`` header.
        snippet: Plain-text excerpt provided by Gmail.
        sender: Normalized sender key derived from ``from_header``.
    """

    id: str
    from_header: str = Field(default="", alias="from")
    to: str = ""
    subject: str = ""
    date: str = ""
    snippet: str = ""
    sender: str = ""

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _derive_sender(self) -> "MessageMeta":
        if not self.sender:
            self.sender = normalize_sender(self.from_header)
        return self

    def prompt_payload(self) -> dict[str, str]:
        """Fields sent to the classification model, and nothing else.

        Returns:
            dict[str, str]: ``id``, ``from``, ``to``, ``subject``, ``date``,
            ``snippet``.
        """
        return {
            "id": self.id,
            "from": self.from_header,
            "to": self.to,
            "subject": self.subject,
            "date": self.date,
            "snippet": self.snippet,
        }


class Decision(BaseModel):
    """
    Suggested action for one email.

    Attributes:
        id: Id of the email this decision belongs to.
        action: keep, trash or review.
        category: Free-text topical tag.
        summary: Short summary written by the model.
        reason: Short justification.
    """

    id: str = ""
    action: DecisionAction = DecisionAction.REVIEW
    category: str = "other"
    summary: str = ""
    reason: str = ""

    @field_validator("action", mode="before")
    @classmethod
    def _coerce_action(cls, value):
        # Models sometimes answer "KEEP" or invent actions; unknowns become review.
        if isinstance(value, DecisionAction):
            return value
        text = str(value or "").strip().lower()
        try:
            return DecisionAction(text)
        except ValueError:
            return DecisionAction.REVIEW

    @field_validator("category", "summary", "reason", mode="before")
    @classmethod
    def _coerce_text(cls, value):
        return "" if value is None else str(value)

    @classmethod
    def default_for(cls, email_id: str) -> "Decision":
        """Decision used when the model returned nothing for an email."""
        return cls(
            id=email_id,
            action=DecisionAction.REVIEW,
            category="other",
            summary="",
            reason=NO_DECISION_REASON,
        )


class LabeledEmail(MessageMeta):
    """
    Message metadata with its decision attached.

    Attributes:
        decision: Current decision (model output or manual override).
        trashed: Whether a trash call succeeded for this email in this
            snapshot. Local state only.
    """

    decision: Decision
    trashed: bool = False


class SenderGroup(BaseModel):
    """
    Emails sharing one normalized sender.

    Attributes:
        sender: Normalized sender key.
        from_header_sample: Raw ``From`` header of the first email.
        emails: Emails in scan order.
    """

    sender: str
    from_header_sample: str = Field(default="", alias="fromHeaderSample")
    emails: list[LabeledEmail] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class ScanSnapshot(BaseModel):
    """
    Result of the latest scan, including later manual mutations.

    Attributes:
        generated_at: When the scan finished.
        query: Gmail query used for the scan.
        total: Number of labeled emails.
        grouped: Sender key -> group.
    """

    generated_at: datetime = Field(alias="generatedAt")
    query: str = ""
    total: int = 0
    grouped: dict[str, SenderGroup] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)

    def iter_emails(self) -> Iterable[LabeledEmail]:
        """Iterate over every email in every group."""
        for group in self.grouped.values():
            yield from group.emails

    def find_email(self, email_id: str) -> Optional[LabeledEmail]:
        """Return the email with ``email_id``, or None."""
        for email in self.iter_emails():
            if email.id == email_id:
                return email
        return None


class ActionCounts(BaseModel):
    """Keep / trash / review counts for a set of emails."""

    total: int = 0
    keep: int = 0
    trash: int = 0
    review: int = 0

    @classmethod
    def from_emails(cls, emails: list[LabeledEmail]) -> "ActionCounts":
        """Count decisions; anything that is not keep or trash counts as review."""
        keep = sum(1 for e in emails if e.decision.action == DecisionAction.KEEP)
        trash = sum(1 for e in emails if e.decision.action == DecisionAction.TRASH)
        return cls(total=len(emails), keep=keep, trash=trash, review=len(emails) - keep - trash)


class GroupView(BaseModel):
    """Render model for one sender group."""

    sender: str
    from_header_sample: str = ""
    domain: Optional[str] = None
    emails: list[LabeledEmail] = Field(default_factory=list)
    counts: ActionCounts = Field(default_factory=ActionCounts)
    pending_trash: int = 0
    collapsed: bool = False


class SnapshotView(BaseModel):
    """Render model for a whole snapshot."""

    generated_at: datetime
    query: str = ""
    total: int = 0
    groups: list[GroupView] = Field(default_factory=list)
    counts: ActionCounts = Field(default_factory=ActionCounts)


class ScanState(str, Enum):
    """Phases of one scan invocation."""

    IDLE = "idle"
    LISTING = "listing"
    FETCHING_METADATA = "fetching_metadata"
    CLASSIFYING = "classifying"
    GROUPING = "grouping"
    PERSISTED = "persisted"
    FAILED = "failed"


class ScanProgress(BaseModel):
    """Observable progress of the running scan."""

    state: ScanState = ScanState.IDLE
    processed: int = 0
    total: int = 0
    message: str = ""


class TrashOutcome(BaseModel):
    """
    Result of a single or bulk trash action.

    Attributes:
        sender: Group the action targeted, if any.
        attempted: Number of trash calls issued.
        succeeded: Number of calls that succeeded.
        failures: Email id -> error text for failed calls.
    """

    sender: Optional[str] = None
    attempted: int = 0
    succeeded: int = 0
    failures: dict[str, str] = Field(default_factory=dict)

    @property
    def ratio(self) -> str:
        """``succeeded/attempted`` as shown to the user."""
        return f"{self.succeeded}/{self.attempted}"
