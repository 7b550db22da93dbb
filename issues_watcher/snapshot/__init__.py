"""Immutable issue snapshots and their optional on-disk store."""

from __future__ import annotations

from .errors import SnapshotValidationError
from .models import IssueRecord, IssueState, Snapshot
from .store import FilesystemSnapshotStore, SnapshotStore

__all__ = [
    "FilesystemSnapshotStore",
    "IssueRecord",
    "IssueState",
    "Snapshot",
    "SnapshotStore",
    "SnapshotValidationError",
]
