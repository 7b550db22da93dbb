"""Snapshot construction errors."""

from __future__ import annotations

import typing as typ

from issues_watcher.errors import IssuesWatcherError

if typ.TYPE_CHECKING:
    import collections.abc as cabc


class SnapshotValidationError(IssuesWatcherError, ValueError):
    """Raised when a snapshot is built from malformed records."""

    def __init__(self, message: str, *, record_ids: tuple[str, ...] = ()) -> None:
        """Initialise with a message and the offending record identifiers."""
        self.record_ids = record_ids
        super().__init__(message)

    @classmethod
    def duplicate_ids(
        cls, target_key: str, record_ids: cabc.Iterable[str]
    ) -> SnapshotValidationError:
        """Return an error listing ids that appear more than once."""
        ids = tuple(sorted(record_ids))
        joined = ", ".join(ids)
        return cls(
            f"snapshot for {target_key} contains duplicate record ids: {joined}",
            record_ids=ids,
        )

    @classmethod
    def key_mismatch(cls, key: str, record_id: str) -> SnapshotValidationError:
        """Return an error for a mapping key that disagrees with its record."""
        return cls(
            f"snapshot key {key!r} does not match record id {record_id!r}",
            record_ids=(record_id,),
        )

    @classmethod
    def empty_target_key(cls) -> SnapshotValidationError:
        """Return an error for a snapshot without a target key."""
        return cls("snapshot target key must be non-empty")

    @classmethod
    def target_mismatch(cls, expected: str, actual: str) -> SnapshotValidationError:
        """Return an error for a snapshot fetched for the wrong target."""
        return cls(f"snapshot for {actual!r} returned when fetching {expected!r}")
