"""GitHub API errors."""

from __future__ import annotations

_HTTP_SERVER_ERROR_THRESHOLD = 500
_FATAL_GRAPHQL_ERROR_TYPES = frozenset({"NOT_FOUND", "FORBIDDEN", "UNAUTHORIZED"})


class GitHubAPIError(RuntimeError):
    """Raised when GitHub returns an error response.

    Attributes
    ----------
    status_code
        HTTP status code, if the failure came with one.
    retry_after
        Seconds GitHub asked clients to wait before retrying.
    transient
        Whether retrying later may succeed.

    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
        transient: bool = False,
    ) -> None:
        """Initialise with a message and retry hints."""
        self.status_code = status_code
        self.retry_after = retry_after
        self.transient = transient
        super().__init__(message)

    @classmethod
    def http_error(cls, status_code: int) -> GitHubAPIError:
        """Return an error for non-2xx HTTP responses."""
        return cls(
            f"GitHub GraphQL HTTP {status_code}",
            status_code=status_code,
            transient=status_code >= _HTTP_SERVER_ERROR_THRESHOLD,
        )

    @classmethod
    def rate_limited(
        cls, status_code: int, retry_after: float | None = None
    ) -> GitHubAPIError:
        """Return an error for primary or secondary rate limiting."""
        msg = "GitHub API rate limited"
        if retry_after is not None:
            msg = f"{msg}, retry after {retry_after:.0f}s"
        return cls(
            msg, status_code=status_code, retry_after=retry_after, transient=True
        )

    @classmethod
    def timeout(cls) -> GitHubAPIError:
        """Return an error for request timeouts."""
        return cls("GitHub API request timed out", transient=True)

    @classmethod
    def network_error(cls, detail: str) -> GitHubAPIError:
        """Return an error for network failures (DNS, connection, TLS, etc.)."""
        return cls(f"GitHub API network error: {detail}", transient=True)

    @classmethod
    def graphql_errors(cls, errors: object) -> GitHubAPIError:
        """Return an error for GraphQL ``errors`` payloads.

        Errors typed ``NOT_FOUND``, ``FORBIDDEN`` or ``UNAUTHORIZED`` are
        permanent; anything else (including ``RATE_LIMITED``) is transient.
        """
        types: set[str] = set()
        if isinstance(errors, list):
            for error in errors:
                if isinstance(error, dict):
                    error_type = error.get("type")
                    if isinstance(error_type, str):
                        types.add(error_type)
        fatal = bool(types & _FATAL_GRAPHQL_ERROR_TYPES)
        return cls(f"GitHub GraphQL errors: {errors}", transient=not fatal)

    @classmethod
    def not_found(cls, what: str) -> GitHubAPIError:
        """Return an error for a repository or project that does not resolve."""
        return cls(f"GitHub {what} not found", status_code=404)


class GitHubResponseShapeError(RuntimeError):
    """Raised when GitHub GraphQL responses are missing expected fields."""

    @classmethod
    def missing(cls, field: str) -> GitHubResponseShapeError:
        """Return an error for a missing GraphQL response field."""
        return cls(f"GitHub GraphQL response missing expected field: {field}")


class GitHubConfigError(RuntimeError):
    """Raised when GitHub client configuration is invalid."""

    @classmethod
    def empty_token(cls) -> GitHubConfigError:
        """Return an error when the provided token is empty."""
        return cls("GitHub token must be non-empty")
