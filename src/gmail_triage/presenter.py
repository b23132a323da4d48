"""Render models for a scan snapshot.

The web templates render :class:`gmail_triage.models.SnapshotView`; counts
are recomputed from the current decisions on every call and never stored.
"""

from .config import COLLAPSE_THRESHOLD, DecisionAction
from .models import ActionCounts, GroupView, ScanSnapshot, SnapshotView
from .sanitizer import extract_sender_domain


def build_snapshot_view(snapshot: ScanSnapshot) -> SnapshotView:
    """
    Build the view for ``snapshot``.

    Groups are sorted by email count, largest first. Ties keep snapshot
    order, so a reloaded snapshot renders exactly like a fresh one.

    Args:
        snapshot: Scan snapshot.

    Returns:
        SnapshotView: Render model.
    """
    groups = sorted(snapshot.grouped.values(), key=lambda g: len(g.emails), reverse=True)

    views = []
    for group in groups:
        views.append(
            GroupView(
                sender=group.sender,
                from_header_sample=group.from_header_sample,
                domain=extract_sender_domain(group.sender),
                emails=group.emails,
                counts=ActionCounts.from_emails(group.emails),
                pending_trash=sum(
                    1
                    for e in group.emails
                    if e.decision.action == DecisionAction.TRASH and not e.trashed
                ),
                collapsed=len(group.emails) > COLLAPSE_THRESHOLD,
            )
        )

    return SnapshotView(
        generated_at=snapshot.generated_at,
        query=snapshot.query,
        total=snapshot.total,
        groups=views,
        counts=ActionCounts.from_emails(list(snapshot.iter_emails())),
    )


def summary_line(view: SnapshotView) -> str:
    """One-line summary shown above the groups."""
    return (
        f"Scanned {view.total}. Keep: {view.counts.keep} • "
        f"Trash: {view.counts.trash} • Review: {view.counts.review}"
    )
