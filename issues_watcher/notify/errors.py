"""Delivery failures raised by notifier dispatchers."""

from __future__ import annotations

from issues_watcher.errors import IssuesWatcherError


class DeliveryError(IssuesWatcherError):
    """Raised when a dispatcher fails to deliver a change batch.

    Attributes
    ----------
    status_code
        HTTP status code from the messaging API, if available.

    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialise the error with message and optional status code."""
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def http_error(cls, status_code: int) -> DeliveryError:
        """Return an error for non-2xx HTTP responses."""
        return cls(f"Slack API HTTP error {status_code}", status_code=status_code)

    @classmethod
    def rate_limited(cls, retry_after: int | None = None) -> DeliveryError:
        """Return an error for rate limited (429) responses."""
        msg = "Slack API rate limited"
        if retry_after is not None:
            msg = f"{msg}, retry after {retry_after}s"
        return cls(msg, status_code=429)

    @classmethod
    def api_error(cls, error: str) -> DeliveryError:
        """Return an error for ``{"ok": false}`` Slack payloads."""
        return cls(f"Slack API error: {error}")

    @classmethod
    def timeout(cls) -> DeliveryError:
        """Return an error for request timeouts."""
        return cls("Slack API request timed out")

    @classmethod
    def network_error(cls, detail: str) -> DeliveryError:
        """Return an error for network failures (DNS, connection, TLS, etc.)."""
        return cls(f"Slack API network error: {detail}")

    @classmethod
    def invalid_response(cls, detail: str) -> DeliveryError:
        """Return an error for responses that are not Slack JSON payloads."""
        return cls(f"Slack API returned an invalid response: {detail}")
