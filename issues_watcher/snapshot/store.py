r"""Optional on-disk persistence for baseline snapshots.

Without a store the watcher re-baselines after every restart. When a data
directory is configured, each committed baseline is written as JSON so the
next process picks up where the previous one stopped::

    {base_path}/{sanitised target key}-{key digest}.json

Usage
-----
>>> import asyncio
>>> from pathlib import Path
>>> store = FilesystemSnapshotStore(Path("~/.issues-watcher").expanduser())
>>> asyncio.run(store.load("octo/reef")) is None
True

"""

from __future__ import annotations

import asyncio
import datetime as dt
import hashlib
import re
import typing as typ

import msgspec

from issues_watcher.logging import get_logger, log_warning

from .models import IssueRecord, IssueState, Snapshot

if typ.TYPE_CHECKING:
    from pathlib import Path

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")
_STORE_FORMAT_VERSION = 1
_KEY_DIGEST_LENGTH = 10


class _StoredRecord(msgspec.Struct, kw_only=True):
    id: str
    title: str
    state: str
    updated_at: dt.datetime
    labels: list[str] = msgspec.field(default_factory=list)
    assignees: list[str] = msgspec.field(default_factory=list)
    project_column: str | None = None
    url: str | None = None


class _StoredSnapshot(msgspec.Struct, kw_only=True):
    version: int
    target_key: str
    captured_at: dt.datetime
    records: list[_StoredRecord]


@typ.runtime_checkable
class SnapshotStore(typ.Protocol):
    """Protocol for persisting the latest baseline snapshot per target."""

    async def load(self, target_key: str) -> Snapshot | None:
        """Return the stored baseline for ``target_key``, if any."""
        ...

    async def save(self, snapshot: Snapshot) -> None:
        """Persist ``snapshot`` as the baseline for its target."""
        ...


def snapshot_to_json(snapshot: Snapshot) -> bytes:
    """Encode a snapshot as JSON bytes with records sorted by id."""
    stored = _StoredSnapshot(
        version=_STORE_FORMAT_VERSION,
        target_key=snapshot.target_key,
        captured_at=snapshot.captured_at,
        records=[
            _StoredRecord(
                id=record.id,
                title=record.title,
                state=str(record.state),
                updated_at=record.updated_at,
                labels=sorted(record.labels),
                assignees=sorted(record.assignees),
                project_column=record.project_column,
                url=record.url,
            )
            for _, record in sorted(snapshot.records.items())
        ],
    )
    return msgspec.json.encode(stored)


def snapshot_from_json(payload: bytes) -> Snapshot:
    """Decode JSON bytes produced by :func:`snapshot_to_json`.

    Raises
    ------
    msgspec.ValidationError
        If the payload does not match the stored snapshot shape.
    SnapshotValidationError
        If the decoded records violate snapshot invariants.

    """
    stored = msgspec.json.decode(payload, type=_StoredSnapshot)
    if stored.version != _STORE_FORMAT_VERSION:
        msg = f"unsupported snapshot format version {stored.version}"
        raise msgspec.ValidationError(msg)
    return Snapshot.from_records(
        stored.target_key,
        stored.captured_at,
        (
            IssueRecord(
                id=record.id,
                title=record.title,
                state=IssueState(record.state),
                updated_at=record.updated_at,
                labels=frozenset(record.labels),
                assignees=frozenset(record.assignees),
                project_column=record.project_column,
                url=record.url,
            )
            for record in stored.records
        ),
    )


def snapshot_filename(target_key: str) -> str:
    """Return a filesystem-safe file name for ``target_key``.

    The sanitised stem keeps files recognisable; the digest keeps keys that
    sanitise to the same stem apart.
    """
    stem = _UNSAFE_CHARS.sub("_", target_key).strip("_") or "target"
    digest = hashlib.sha256(target_key.encode("utf-8")).hexdigest()
    return f"{stem}-{digest[:_KEY_DIGEST_LENGTH]}.json"


class FilesystemSnapshotStore:
    """Store baseline snapshots as JSON files under a base directory.

    Parameters
    ----------
    base_path
        Directory holding one JSON file per watched target. Created on the
        first save.

    """

    def __init__(self, base_path: Path) -> None:
        """Initialise the store with a base directory path."""
        self._base_path = base_path

    def path_for(self, target_key: str) -> Path:
        """Return the file path used for ``target_key``."""
        return self._base_path / snapshot_filename(target_key)

    async def load(self, target_key: str) -> Snapshot | None:
        """Load the stored baseline, ignoring missing or unreadable files."""
        path = self.path_for(target_key)
        if not await asyncio.to_thread(path.exists):
            return None
        try:
            payload = await asyncio.to_thread(path.read_bytes)
            snapshot = snapshot_from_json(payload)
        except (OSError, msgspec.DecodeError, ValueError) as exc:
            log_warning(
                logger,
                "Ignoring unreadable snapshot %s for %s: %s",
                path,
                target_key,
                exc,
            )
            return None
        if snapshot.target_key != target_key:
            log_warning(
                logger,
                "Ignoring snapshot %s: stored for %s, expected %s",
                path,
                snapshot.target_key,
                target_key,
            )
            return None
        return snapshot

    async def save(self, snapshot: Snapshot) -> None:
        """Write ``snapshot`` atomically via a temporary sibling file."""
        await asyncio.to_thread(self._base_path.mkdir, parents=True, exist_ok=True)
        path = self.path_for(snapshot.target_key)
        tmp_path = path.with_suffix(".json.tmp")
        payload = snapshot_to_json(snapshot)
        await asyncio.to_thread(tmp_path.write_bytes, payload)
        await asyncio.to_thread(tmp_path.replace, path)
