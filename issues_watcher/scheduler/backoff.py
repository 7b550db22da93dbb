"""Retry policy for failed fetches.

Delays grow exponentially with the number of consecutive failures and are
capped at ``max_delay``. After ``max_retries`` consecutive failures the
scheduler reports a persistent failure and falls back to the regular poll
interval.

Usage
-----
>>> policy = RetryPolicy(base_delay=5.0, factor=2.0, max_delay=60.0)
>>> [policy.delay_for(n) for n in (1, 2, 3, 4, 5)]
[5.0, 10.0, 20.0, 40.0, 60.0]

"""

from __future__ import annotations

import dataclasses as dc


@dc.dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Exponential backoff settings.

    Attributes
    ----------
    max_retries
        Consecutive retryable failures tolerated before a persistent-failure
        report is raised. Must be at least 1.
    base_delay
        Delay in seconds after the first failure.
    max_delay
        Upper bound for any single delay, in seconds.
    factor
        Multiplier applied per additional consecutive failure.

    """

    max_retries: int = 3
    base_delay: float = 5.0
    max_delay: float = 300.0
    factor: float = 2.0

    def __post_init__(self) -> None:
        """Reject settings that would never retry or never wait."""
        if self.max_retries < 1:
            msg = f"max_retries must be at least 1, got {self.max_retries}"
            raise ValueError(msg)
        if self.base_delay < 0 or self.max_delay < 0:
            msg = "retry delays must be non-negative"
            raise ValueError(msg)
        if self.factor < 1:
            msg = f"factor must be at least 1, got {self.factor}"
            raise ValueError(msg)

    def delay_for(self, failures: int, *, retry_after: float | None = None) -> float:
        """Return the delay before the retry following ``failures`` failures.

        Parameters
        ----------
        failures
            Consecutive failures so far, starting at 1.
        retry_after
            Delay requested by the source (e.g. a ``Retry-After`` header);
            honoured when longer than the computed backoff, still capped at
            ``max_delay``.

        """
        exponent = max(failures, 1) - 1
        delay = min(self.base_delay * self.factor**exponent, self.max_delay)
        if retry_after is not None and retry_after > delay:
            delay = min(retry_after, self.max_delay)
        return delay

    def exhausted(self, failures: int) -> bool:
        """Return whether ``failures`` has reached the retry cap."""
        return failures >= self.max_retries
