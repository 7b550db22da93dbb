"""Configuration errors raised at start-up."""

from __future__ import annotations

from issues_watcher.errors import IssuesWatcherError


class ConfigError(IssuesWatcherError, ValueError):
    """Raised when configuration is missing or invalid.

    Every problem found is collected in ``issues`` so operators can fix a
    configuration file in one pass.
    """

    def __init__(self, issues: list[str]) -> None:
        """Capture validation issues whilst preserving the aggregated message."""
        message = "\n".join(issues)
        super().__init__(message)
        self.issues = issues

    @classmethod
    def empty(cls, name: str) -> ConfigError:
        """Return an error for a setting that must be non-empty."""
        return cls([f"{name} must be non-empty"])

    @classmethod
    def invalid(cls, name: str, detail: str) -> ConfigError:
        """Return an error for a setting with an unusable value."""
        return cls([f"{name}: {detail}"])
