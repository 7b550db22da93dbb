"""GitHub source adapter, GraphQL client and target parsing."""

from __future__ import annotations

from .adapter import (
    DEFAULT_CLOSED_LOOKBACK,
    DEFAULT_COLUMN_FIELD,
    GitHubSourceAdapter,
    drop_lookback_churn,
)
from .client import GitHubGraphQLClient, GitHubGraphQLConfig
from .errors import GitHubAPIError, GitHubConfigError, GitHubResponseShapeError
from .targets import (
    GitHubTarget,
    ProjectOwnerKind,
    ProjectTarget,
    RepositoryTarget,
    parse_target,
)

__all__ = [
    "DEFAULT_CLOSED_LOOKBACK",
    "DEFAULT_COLUMN_FIELD",
    "GitHubAPIError",
    "GitHubConfigError",
    "GitHubGraphQLClient",
    "GitHubGraphQLConfig",
    "GitHubResponseShapeError",
    "GitHubSourceAdapter",
    "GitHubTarget",
    "ProjectOwnerKind",
    "ProjectTarget",
    "RepositoryTarget",
    "drop_lookback_churn",
    "parse_target",
]
