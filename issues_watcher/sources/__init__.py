"""Source adapter port and the fetch error taxonomy."""

from __future__ import annotations

from .errors import FatalFetchError, FetchError, RetryableFetchError
from .protocol import FetchErrorClass, SourceAdapter, classify_fetch_error

__all__ = [
    "FatalFetchError",
    "FetchError",
    "FetchErrorClass",
    "RetryableFetchError",
    "SourceAdapter",
    "classify_fetch_error",
]
