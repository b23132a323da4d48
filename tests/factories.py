"""Builders for test data shared by several test modules."""

from datetime import datetime, timezone

from gmail_triage.config import DecisionAction
from gmail_triage.models import Decision, LabeledEmail, MessageMeta, ScanSnapshot
from gmail_triage.orchestrator import group_by_sender


def make_meta(email_id: str, from_header: str = "Shop <deals@shop.com>", subject: str = "") -> MessageMeta:
    """Create a minimal MessageMeta for tests."""
    return MessageMeta(
        id=email_id,
        from_header=from_header,
        to="me@example.com",
        subject=subject or f"Subject {email_id}",
        date="Mon, 1 Jan 2024 10:00:00 +0000",
        snippet=f"Snippet {email_id}",
    )


def make_labeled(
    email_id: str,
    action: DecisionAction,
    from_header: str = "Shop <deals@shop.com>",
    trashed: bool = False,
) -> LabeledEmail:
    """Create a LabeledEmail with a given action."""
    meta = make_meta(email_id, from_header)
    return LabeledEmail(
        **meta.model_dump(),
        decision=Decision(id=email_id, action=action, category="promo", reason="test"),
        trashed=trashed,
    )


def make_snapshot(emails: list[LabeledEmail], query: str = "category:promotions") -> ScanSnapshot:
    """Build a snapshot the way the orchestrator does."""
    return ScanSnapshot(
        generated_at=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
        query=query,
        total=len(emails),
        grouped=group_by_sender(emails),
    )
