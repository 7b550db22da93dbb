"""Base exception shared by every issues-watcher error."""

from __future__ import annotations


class IssuesWatcherError(Exception):
    """Base class for errors raised by the watcher.

    This provides a single catch point for callers that embed the engine.
    """
