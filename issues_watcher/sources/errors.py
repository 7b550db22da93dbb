"""Fetch failures raised by source adapters.

Adapters classify every failure as retryable or fatal so the scheduler can
decide between backing off and stopping the target.
"""

from __future__ import annotations

from issues_watcher.errors import IssuesWatcherError


class FetchError(IssuesWatcherError):
    """Base class for source adapter failures."""

    def __init__(self, message: str, *, target_key: str | None = None) -> None:
        """Initialise with a message and the target being fetched."""
        self.target_key = target_key
        super().__init__(message)


class RetryableFetchError(FetchError):
    """Transient failure: network, timeout, rate limit or server error.

    Attributes
    ----------
    retry_after
        Seconds the source asked callers to wait, when it said so.

    """

    def __init__(
        self,
        message: str,
        *,
        target_key: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        """Initialise with an optional server-provided retry delay."""
        self.retry_after = retry_after
        super().__init__(message, target_key=target_key)


class FatalFetchError(FetchError):
    """Permanent failure: bad credentials, missing target, unsupported target."""

    @classmethod
    def unsupported_target(cls, target_key: str) -> FatalFetchError:
        """Return an error for a target no adapter knows how to fetch."""
        msg = f"no source adapter handles target {target_key!r}"
        return cls(msg, target_key=target_key)
