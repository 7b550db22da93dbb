"""Point-in-time models for observed issues.

An :class:`IssueRecord` captures one issue or project item as seen during a
fetch. A :class:`Snapshot` groups every record observed for a single watched
target at one instant. Both are immutable; each fetch builds new objects.
"""

from __future__ import annotations

import collections
import dataclasses
import enum
import types
import typing as typ

from issues_watcher.common.time import ensure_tzaware

from .errors import SnapshotValidationError

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt


class IssueState(enum.StrEnum):
    """Open/closed state of an issue."""

    OPEN = "open"
    CLOSED = "closed"


@dataclasses.dataclass(frozen=True, slots=True)
class IssueRecord:
    """One issue or project item at a point in time.

    Attributes
    ----------
    id
        Stable identifier used to join records across snapshots, e.g.
        ``octo/reef#12`` or a project item node id.
    title
        Issue title.
    state
        Open or closed.
    labels
        Label names; order and duplicates are irrelevant.
    assignees
        Assignee logins; order and duplicates are irrelevant.
    updated_at
        Last update time reported by the source.
    project_column
        Board column the item sits in, for project targets.
    url
        Link to the issue, used when rendering notifications.

    """

    id: str
    title: str
    state: IssueState
    updated_at: dt.datetime
    labels: frozenset[str] = frozenset()
    assignees: frozenset[str] = frozenset()
    project_column: str | None = None
    url: str | None = None

    def __post_init__(self) -> None:
        """Normalise set-valued fields and the state enum."""
        if not self.id:
            msg = "issue record id must be non-empty"
            raise SnapshotValidationError(msg)
        object.__setattr__(self, "state", IssueState(self.state))
        object.__setattr__(self, "labels", frozenset(self.labels))
        object.__setattr__(self, "assignees", frozenset(self.assignees))
        object.__setattr__(
            self, "updated_at", ensure_tzaware(self.updated_at, field="updated_at")
        )


@dataclasses.dataclass(frozen=True, slots=True)
class Snapshot:
    """Full observed state of one watched target at one instant.

    Use :meth:`from_records` to build a snapshot from fetched records; it
    rejects duplicate ids. The ``records`` mapping is exposed read-only.
    """

    target_key: str
    captured_at: dt.datetime
    records: cabc.Mapping[str, IssueRecord] = dataclasses.field(
        default_factory=dict
    )

    def __post_init__(self) -> None:
        """Validate keys and freeze the record mapping."""
        if not self.target_key:
            raise SnapshotValidationError.empty_target_key()
        object.__setattr__(
            self,
            "captured_at",
            ensure_tzaware(self.captured_at, field="captured_at"),
        )
        frozen: dict[str, IssueRecord] = {}
        for key, record in self.records.items():
            if key != record.id:
                raise SnapshotValidationError.key_mismatch(key, record.id)
            frozen[key] = record
        object.__setattr__(self, "records", types.MappingProxyType(frozen))

    @classmethod
    def from_records(
        cls,
        target_key: str,
        captured_at: dt.datetime,
        records: cabc.Iterable[IssueRecord],
    ) -> Snapshot:
        """Build a snapshot from an iterable of records.

        Raises
        ------
        SnapshotValidationError
            If two records share the same id.

        """
        materialised = list(records)
        counts = collections.Counter(record.id for record in materialised)
        duplicates = [record_id for record_id, count in counts.items() if count > 1]
        if duplicates:
            raise SnapshotValidationError.duplicate_ids(target_key, duplicates)
        return cls(
            target_key=target_key,
            captured_at=captured_at,
            records={record.id: record for record in materialised},
        )

    def get(self, record_id: str) -> IssueRecord | None:
        """Return the record with ``record_id``, or ``None`` when absent."""
        return self.records.get(record_id)

    def __contains__(self, record_id: object) -> bool:
        """Return whether a record with ``record_id`` was observed."""
        return record_id in self.records

    def ids(self) -> frozenset[str]:
        """Return the set of record ids in this snapshot."""
        return frozenset(self.records)
