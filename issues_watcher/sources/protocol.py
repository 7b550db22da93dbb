"""Port for fetching fresh snapshots of a watched target."""

from __future__ import annotations

import enum
import typing as typ

from .errors import FatalFetchError

if typ.TYPE_CHECKING:
    from issues_watcher.snapshot import Snapshot


class FetchErrorClass(enum.StrEnum):
    """How the scheduler reacts to a fetch failure."""

    RETRYABLE = "retryable"
    FATAL = "fatal"


@typ.runtime_checkable
class SourceAdapter(typ.Protocol):
    """Fetch the current state of a watched target.

    Implementations must tolerate concurrent calls for different target keys
    and raise :class:`RetryableFetchError` or :class:`FatalFetchError` on
    failure.
    """

    async def fetch(self, target_key: str) -> Snapshot:
        """Return a new snapshot of ``target_key``."""
        ...


def classify_fetch_error(exc: Exception) -> FetchErrorClass:
    """Classify a fetch failure for the scheduler.

    Only :class:`FatalFetchError` stops a target. Malformed snapshots and
    failures an adapter did not classify are retried with backoff.
    """
    if isinstance(exc, FatalFetchError):
        return FetchErrorClass.FATAL
    return FetchErrorClass.RETRYABLE
