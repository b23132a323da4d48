from gmail_triage.config import DecisionAction
from gmail_triage.presenter import build_snapshot_view, summary_line

from factories import make_labeled, make_snapshot


def test_groups_sorted_by_size_with_stable_ties() -> None:
    """Largest group first; equal sizes keep snapshot order."""

    snapshot = make_snapshot(
        [
            make_labeled("a1", DecisionAction.KEEP, "a@x.com"),
            make_labeled("b1", DecisionAction.KEEP, "b@x.com"),
            make_labeled("c1", DecisionAction.KEEP, "c@x.com"),
            make_labeled("c2", DecisionAction.KEEP, "c@x.com"),
        ]
    )

    view = build_snapshot_view(snapshot)

    assert [g.sender for g in view.groups] == ["c@x.com", "a@x.com", "b@x.com"]
    assert view.groups[0].domain == "x.com"


def test_counts_and_pending_trash() -> None:
    """Pending trash excludes emails already trashed."""

    snapshot = make_snapshot(
        [
            make_labeled("e1", DecisionAction.TRASH),
            make_labeled("e2", DecisionAction.TRASH, trashed=True),
            make_labeled("e3", DecisionAction.REVIEW),
        ]
    )

    group = build_snapshot_view(snapshot).groups[0]

    assert (group.counts.trash, group.counts.review) == (2, 1)
    assert group.pending_trash == 1


def test_large_groups_render_collapsed() -> None:
    """Groups above twelve emails start collapsed."""

    big = [make_labeled(f"b{i}", DecisionAction.TRASH, "big@x.com") for i in range(13)]
    small = [make_labeled(f"s{i}", DecisionAction.KEEP, "small@x.com") for i in range(12)]

    view = build_snapshot_view(make_snapshot(big + small))

    assert [(g.sender, g.collapsed) for g in view.groups] == [
        ("big@x.com", True),
        ("small@x.com", False),
    ]


def test_summary_line() -> None:
    """Summary shows totals per action."""

    view = build_snapshot_view(
        make_snapshot(
            [
                make_labeled("e1", DecisionAction.KEEP),
                make_labeled("e2", DecisionAction.TRASH),
            ]
        )
    )

    assert summary_line(view) == "Scanned 2. Keep: 1 • Trash: 1 • Review: 0"
