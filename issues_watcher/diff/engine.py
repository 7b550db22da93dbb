"""Compare two snapshots of the same target.

The engine is a pure function: the same pair of snapshots always produces
the same ordered change list. With no previous snapshot there is nothing to
compare against, so the first observation of a target yields no changes and
simply becomes the baseline.
"""

from __future__ import annotations

import typing as typ

from .models import Change, ChangeKind

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from issues_watcher.snapshot import IssueRecord, Snapshot

    type FieldComparator = cabc.Callable[[IssueRecord, IssueRecord], bool]


def _state_differs(before: IssueRecord, after: IssueRecord) -> bool:
    return before.state != after.state


def _labels_differ(before: IssueRecord, after: IssueRecord) -> bool:
    return before.labels != after.labels


def _assignees_differ(before: IssueRecord, after: IssueRecord) -> bool:
    return before.assignees != after.assignees


def _column_differs(before: IssueRecord, after: IssueRecord) -> bool:
    return before.project_column != after.project_column


_FIELD_COMPARATORS: tuple[tuple[ChangeKind, FieldComparator], ...] = (
    (ChangeKind.STATE_CHANGED, _state_differs),
    (ChangeKind.LABELS_CHANGED, _labels_differ),
    (ChangeKind.ASSIGNEES_CHANGED, _assignees_differ),
    (ChangeKind.COLUMN_CHANGED, _column_differs),
)


def diff_records(before: IssueRecord, after: IssueRecord) -> list[Change]:
    """Return one change per differing field category of a single record.

    Title and ``updated_at`` are not tracked; a record whose only difference
    is its title yields no change.
    """
    return [
        Change(kind=kind, before=before, after=after)
        for kind, differs in _FIELD_COMPARATORS
        if differs(before, after)
    ]


def diff_snapshots(previous: Snapshot | None, current: Snapshot) -> list[Change]:
    """Compute the ordered change list between two snapshots.

    Parameters
    ----------
    previous
        Baseline snapshot, or ``None`` before the first successful fetch.
    current
        Freshly fetched snapshot of the same target.

    Returns
    -------
    list[Change]
        Changes sorted by record id, then by :class:`ChangeKind` order.

    Raises
    ------
    ValueError
        If the snapshots belong to different targets.

    """
    if previous is None:
        return []
    if previous.target_key != current.target_key:
        msg = (
            f"cannot diff snapshots of different targets: "
            f"{previous.target_key!r} vs {current.target_key!r}"
        )
        raise ValueError(msg)

    changes: list[Change] = []
    for record_id in sorted(previous.ids() | current.ids()):
        before = previous.get(record_id)
        after = current.get(record_id)
        if before is None and after is not None:
            changes.append(Change(kind=ChangeKind.ADDED, after=after))
        elif after is None and before is not None:
            changes.append(Change(kind=ChangeKind.REMOVED, before=before))
        elif before is not None and after is not None:
            changes.extend(diff_records(before, after))
    return changes
