"""Change events produced by comparing two snapshots."""

from __future__ import annotations

import dataclasses
import enum
import typing as typ

if typ.TYPE_CHECKING:
    from issues_watcher.snapshot import IssueRecord


class ChangeKind(enum.StrEnum):
    """Kinds of change, in the order they are emitted for a single record."""

    ADDED = "added"
    REMOVED = "removed"
    STATE_CHANGED = "state_changed"
    LABELS_CHANGED = "labels_changed"
    ASSIGNEES_CHANGED = "assignees_changed"
    COLUMN_CHANGED = "column_changed"

    @property
    def rank(self) -> int:
        """Position of this kind in declaration order."""
        return _KIND_RANK[self]


_KIND_RANK: dict[ChangeKind, int] = {
    kind: index for index, kind in enumerate(ChangeKind)
}


@dataclasses.dataclass(frozen=True, slots=True)
class Change:
    """One detected difference for a single record id.

    ``before`` is absent for :attr:`ChangeKind.ADDED` and ``after`` is absent
    for :attr:`ChangeKind.REMOVED`; every other kind carries both.
    """

    kind: ChangeKind
    before: IssueRecord | None = None
    after: IssueRecord | None = None

    def __post_init__(self) -> None:
        """Check that the populated records match the change kind."""
        if self.before is None and self.after is None:
            msg = "a change needs at least one of before/after"
            raise ValueError(msg)
        if self.kind is ChangeKind.ADDED and self.before is not None:
            msg = "an added change cannot carry a before record"
            raise ValueError(msg)
        if self.kind is ChangeKind.REMOVED and self.after is not None:
            msg = "a removed change cannot carry an after record"
            raise ValueError(msg)
        if self.kind not in {ChangeKind.ADDED, ChangeKind.REMOVED}:
            if self.before is None or self.after is None:
                msg = f"a {self.kind} change needs both before and after"
                raise ValueError(msg)
            if self.before.id != self.after.id:
                msg = (
                    f"before/after ids differ: {self.before.id!r} "
                    f"vs {self.after.id!r}"
                )
                raise ValueError(msg)

    @property
    def record_id(self) -> str:
        """Identifier of the record this change is about."""
        record = self.after if self.after is not None else self.before
        if record is None:  # pragma: no cover - guarded by __post_init__
            raise AssertionError
        return record.id

    @property
    def record(self) -> IssueRecord:
        """The most recent view of the record (``after`` unless removed)."""
        record = self.after if self.after is not None else self.before
        if record is None:  # pragma: no cover - guarded by __post_init__
            raise AssertionError
        return record

    @property
    def labels_added(self) -> frozenset[str]:
        """Labels present after but not before."""
        if self.before is None or self.after is None:
            return frozenset()
        return self.after.labels - self.before.labels

    @property
    def labels_removed(self) -> frozenset[str]:
        """Labels present before but not after."""
        if self.before is None or self.after is None:
            return frozenset()
        return self.before.labels - self.after.labels

    @property
    def assignees_added(self) -> frozenset[str]:
        """Assignees present after but not before."""
        if self.before is None or self.after is None:
            return frozenset()
        return self.after.assignees - self.before.assignees

    @property
    def assignees_removed(self) -> frozenset[str]:
        """Assignees present before but not after."""
        if self.before is None or self.after is None:
            return frozenset()
        return self.before.assignees - self.after.assignees

    def sort_key(self) -> tuple[str, int]:
        """Key ordering changes by record id, then kind declaration order."""
        return (self.record_id, self.kind.rank)
