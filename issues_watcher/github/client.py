"""GitHub GraphQL client for repository issues and project board items."""

from __future__ import annotations

import dataclasses
import datetime as dt
import json
import typing as typ

import httpx

from issues_watcher.common.time import ensure_tzaware, parse_github_datetime
from issues_watcher.logging import get_logger, log_warning
from issues_watcher.snapshot import IssueRecord, IssueState

from .errors import GitHubAPIError, GitHubConfigError, GitHubResponseShapeError
from .targets import ProjectOwnerKind

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .targets import ProjectTarget, RepositoryTarget

_HTTP_ERROR_STATUS_THRESHOLD = 400
_HTTP_FORBIDDEN = 403
_HTTP_RATE_LIMITED = 429
# Errors deeper than owner.connection belong to single items, not the target.
_TARGET_ERROR_PATH_DEPTH = 2

logger = get_logger(__name__)


@dataclasses.dataclass(frozen=True, slots=True)
class GitHubGraphQLConfig:
    """Configuration for the GitHub GraphQL API client."""

    token: str
    endpoint: str = "https://api.github.com/graphql"
    timeout_s: float = 20.0
    user_agent: str = "issues-watcher/0.1"


_VIEWER_QUERY = """
query {
  viewer { login }
}
"""

_ISSUE_FIELDS = """
number
title
state
updatedAt
url
repository { nameWithOwner }
labels(first: 100) { nodes { name } }
assignees(first: 100) { nodes { login } }
"""

_REPOSITORY_ISSUES_QUERY = f"""
query(
  $owner: String!
  $name: String!
  $states: [IssueState!]
  $since: DateTime
  $after: String
) {{
  repository(owner: $owner, name: $name) {{
    issues(
      first: 100
      after: $after
      states: $states
      filterBy: {{since: $since}}
      orderBy: {{field: UPDATED_AT, direction: DESC}}
    ) {{
      pageInfo {{
        hasNextPage
        endCursor
      }}
      nodes {{
        {_ISSUE_FIELDS}
      }}
    }}
  }}
}}
"""

_PROJECT_ITEMS_SELECTION = f"""
projectV2(number: $number) {{
  items(first: 100, after: $after) {{
    pageInfo {{
      hasNextPage
      endCursor
    }}
    nodes {{
      id
      updatedAt
      fieldValueByName(name: $columnField) {{
        ... on ProjectV2ItemFieldSingleSelectValue {{ name }}
      }}
      content {{
        ... on Issue {{
          {_ISSUE_FIELDS}
        }}
        ... on PullRequest {{
          {_ISSUE_FIELDS}
        }}
        ... on DraftIssue {{
          title
          updatedAt
          assignees(first: 100) {{ nodes {{ login }} }}
        }}
      }}
    }}
  }}
}}
"""

_PROJECT_ITEMS_QUERIES: dict[ProjectOwnerKind, tuple[str, list[str]]] = {
    ProjectOwnerKind.ORGANIZATION: (
        f"""
query($owner: String!, $number: Int!, $columnField: String!, $after: String) {{
  organization(login: $owner) {{
    {_PROJECT_ITEMS_SELECTION}
  }}
}}
""",
        ["organization", "projectV2"],
    ),
    ProjectOwnerKind.USER: (
        f"""
query($owner: String!, $number: Int!, $columnField: String!, $after: String) {{
  user(login: $owner) {{
    {_PROJECT_ITEMS_SELECTION}
  }}
}}
""",
        ["user", "projectV2"],
    ),
    ProjectOwnerKind.REPOSITORY: (
        f"""
query(
  $owner: String!
  $name: String!
  $number: Int!
  $columnField: String!
  $after: String
) {{
  repository(owner: $owner, name: $name) {{
    {_PROJECT_ITEMS_SELECTION}
  }}
}}
""",
        ["repository", "projectV2"],
    ),
}


def _get_retry_after(response: httpx.Response) -> float | None:
    """Return the server-requested wait from rate-limit headers, if any."""
    retry_after = response.headers.get("Retry-After")
    if retry_after and retry_after.isdigit():
        return float(retry_after)
    reset = response.headers.get("X-RateLimit-Reset")
    if reset and reset.isdigit():
        now = dt.datetime.now(dt.UTC).timestamp()
        return max(float(reset) - now, 0.0)
    return None


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == _HTTP_RATE_LIMITED:
        return True
    if response.status_code != _HTTP_FORBIDDEN:
        return False
    return (
        response.headers.get("X-RateLimit-Remaining") == "0"
        or "Retry-After" in response.headers
    )


def _raise_for_status(response: httpx.Response) -> None:
    """Map HTTP error responses onto :class:`GitHubAPIError`."""
    if _is_rate_limited(response):
        raise GitHubAPIError.rate_limited(
            response.status_code, _get_retry_after(response)
        )
    if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
        raise GitHubAPIError.http_error(response.status_code)


def _validate_string_keyed_dict(
    raw_dict: dict[typ.Any, typ.Any],
    *,
    field_name: str,
) -> dict[str, typ.Any]:
    result: dict[str, typ.Any] = {}
    for key, value in raw_dict.items():
        if not isinstance(key, str):
            raise GitHubResponseShapeError.missing(field_name)
        result[key] = value
    return result


def _is_item_error(error: object) -> bool:
    if not isinstance(error, dict):
        return False
    path = error.get("path")
    return isinstance(path, list) and len(path) > _TARGET_ERROR_PATH_DEPTH


def _only_item_errors(errors: object) -> bool:
    """Return whether every error concerns one item below the target."""
    return isinstance(errors, list) and all(_is_item_error(e) for e in errors)


def _error_messages(errors: list[typ.Any]) -> list[str]:
    return [str(error.get("message", error.get("type", "?"))) for error in errors]


def _parse_graphql_payload(payload_raw: object) -> dict[str, typ.Any]:
    """Parse and validate a GraphQL response payload, extracting data field."""
    if not isinstance(payload_raw, dict):
        raise GitHubResponseShapeError.missing("response")

    payload = _validate_string_keyed_dict(payload_raw, field_name="response")

    data = payload.get("data")
    errors = payload.get("errors")
    if errors:
        if not isinstance(data, dict) or not _only_item_errors(errors):
            raise GitHubAPIError.graphql_errors(errors)
        log_warning(
            logger,
            "Skipping %d inaccessible item(s) in GitHub response: %s",
            len(errors),
            "; ".join(_error_messages(errors)),
        )

    if not isinstance(data, dict):
        raise GitHubResponseShapeError.missing("data")

    return _validate_string_keyed_dict(data, field_name="data")


def _traverse_path(data: dict[str, typ.Any], path: list[str]) -> object:
    """Traverse a nested dictionary path, validating each step."""
    node: object = data
    for key in path:
        if not isinstance(node, dict):
            raise GitHubResponseShapeError.missing(".".join(path))
        node = node.get(key)
    return node


def _extract_connection(
    data: dict[str, typ.Any], path: list[str], *, entity: str
) -> dict[str, typ.Any]:
    """Extract a connection, reporting a null owner as not found."""
    for depth in range(1, len(path) + 1):
        if _traverse_path(data, path[:depth]) is None:
            raise GitHubAPIError.not_found(f"{entity} ({'.'.join(path[:depth])})")
    node = _traverse_path(data, path)
    if not isinstance(node, dict):
        raise GitHubResponseShapeError.missing(".".join(path))
    return node


def _connection_nodes(
    connection: dict[str, typ.Any],
    *,
    field: str,
) -> list[dict[str, typ.Any]]:
    nodes = connection.get("nodes")
    if not isinstance(nodes, list):
        raise GitHubResponseShapeError.missing(f"{field}.nodes")
    return [node for node in nodes if isinstance(node, dict)]


def _next_cursor(connection: dict[str, typ.Any]) -> str | None:
    """Return the next pagination cursor, or None when pagination is complete."""
    page_info = connection.get("pageInfo")
    if not isinstance(page_info, dict) or not page_info.get("hasNextPage"):
        return None
    after_cursor = page_info.get("endCursor")
    return after_cursor if isinstance(after_cursor, str) else None


def _names(connection: object, key: str) -> frozenset[str]:
    if not isinstance(connection, dict):
        return frozenset()
    nodes = connection.get("nodes") or []
    if not isinstance(nodes, list):
        return frozenset()
    return frozenset(
        node[key]
        for node in nodes
        if isinstance(node, dict) and isinstance(node.get(key), str)
    )


def _coerce_state(raw_state: object) -> IssueState:
    # Pull requests report MERGED; a merged item is no longer open.
    if isinstance(raw_state, str) and raw_state.upper() == "OPEN":
        return IssueState.OPEN
    return IssueState.CLOSED


def _require_str(node: dict[str, typ.Any], field: str) -> str:
    value = node.get(field)
    if not isinstance(value, str):
        raise GitHubResponseShapeError.missing(field)
    return value


def _record_from_issue(
    node: dict[str, typ.Any], *, project_column: str | None = None
) -> IssueRecord:
    """Build a record from an ``Issue`` or ``PullRequest`` node."""
    number = node.get("number")
    if not isinstance(number, int):
        raise GitHubResponseShapeError.missing("number")
    repository = node.get("repository")
    if not isinstance(repository, dict):
        raise GitHubResponseShapeError.missing("repository")
    slug = _require_str(repository, "nameWithOwner")
    return IssueRecord(
        id=f"{slug}#{number}",
        title=_require_str(node, "title"),
        state=_coerce_state(node.get("state")),
        updated_at=parse_github_datetime(_require_str(node, "updatedAt")),
        labels=_names(node.get("labels"), "name"),
        assignees=_names(node.get("assignees"), "login"),
        project_column=project_column,
        url=node.get("url") if isinstance(node.get("url"), str) else None,
    )


def _column_name(item: dict[str, typ.Any]) -> str | None:
    value = item.get("fieldValueByName")
    if not isinstance(value, dict):
        return None
    name = value.get("name")
    return name if isinstance(name, str) else None


def _record_from_project_item(item: dict[str, typ.Any]) -> IssueRecord | None:
    """Build a record from a project item, or ``None`` for redacted content."""
    column = _column_name(item)
    content = item.get("content")
    if not isinstance(content, dict) or not content:
        return None
    if "number" in content:
        return _record_from_issue(content, project_column=column)
    # Draft issues have no number or repository; the item id identifies them.
    return IssueRecord(
        id=_require_str(item, "id"),
        title=_require_str(content, "title"),
        state=IssueState.OPEN,
        updated_at=parse_github_datetime(
            content.get("updatedAt") or _require_str(item, "updatedAt")
        ),
        assignees=_names(content.get("assignees"), "login"),
        project_column=column,
    )


class GitHubGraphQLClient:
    """Read issue and project board state through the GitHub GraphQL API."""

    def __init__(
        self,
        config: GitHubGraphQLConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client with the provided API configuration."""
        if not config.token.strip():
            raise GitHubConfigError.empty_token()

        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=config.timeout_s,
            headers={
                "Authorization": f"Bearer {config.token}",
                "User-Agent": config.user_agent,
                "Accept": "application/json",
            },
        )

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def viewer_login(self) -> str:
        """Return the login of the account the token belongs to."""
        data = await self._graphql(_VIEWER_QUERY, {})
        viewer = data.get("viewer")
        if not isinstance(viewer, dict):
            raise GitHubResponseShapeError.missing("viewer")
        return _require_str(viewer, "login")

    async def iter_repository_issues(
        self,
        target: RepositoryTarget,
        *,
        states: cabc.Sequence[IssueState],
        since: dt.datetime | None = None,
    ) -> typ.AsyncIterator[IssueRecord]:
        """Yield issues in ``states``, optionally only those updated since."""
        since_value = (
            ensure_tzaware(since, field="since").isoformat()
            if since is not None
            else None
        )
        after_cursor: str | None = None
        while True:
            data = await self._graphql(
                _REPOSITORY_ISSUES_QUERY,
                {
                    "owner": target.owner,
                    "name": target.name,
                    "states": [state.upper() for state in states],
                    "since": since_value,
                    "after": after_cursor,
                },
            )
            connection = _extract_connection(
                data, ["repository", "issues"], entity=f"repository {target.key}"
            )
            for node in _connection_nodes(connection, field="issues"):
                yield _record_from_issue(node)

            after_cursor = _next_cursor(connection)
            if after_cursor is None:
                return

    async def iter_project_items(
        self,
        target: ProjectTarget,
        *,
        column_field: str,
    ) -> typ.AsyncIterator[IssueRecord]:
        """Yield every item on a project board with its column."""
        query, path = _PROJECT_ITEMS_QUERIES[target.owner_kind]
        variables: dict[str, typ.Any] = {
            "owner": target.owner,
            "number": target.number,
            "columnField": column_field,
        }
        if target.repository is not None:
            variables["name"] = target.repository

        after_cursor: str | None = None
        while True:
            data = await self._graphql(query, {**variables, "after": after_cursor})
            project = _extract_connection(data, path, entity=f"project {target.key}")
            items = project.get("items")
            if not isinstance(items, dict):
                raise GitHubResponseShapeError.missing(".".join([*path, "items"]))
            for item in _connection_nodes(items, field="items"):
                record = _record_from_project_item(item)
                if record is not None:
                    yield record

            after_cursor = _next_cursor(items)
            if after_cursor is None:
                return

    async def _graphql(
        self, query: str, variables: dict[str, typ.Any]
    ) -> dict[str, typ.Any]:
        """Execute a GraphQL query and return the validated data field."""
        try:
            response = await self._client.post(
                self._config.endpoint,
                json={"query": query, "variables": variables},
            )
        except httpx.TimeoutException as exc:
            raise GitHubAPIError.timeout() from exc
        except httpx.RequestError as exc:
            raise GitHubAPIError.network_error(str(exc)) from exc

        _raise_for_status(response)
        try:
            payload_raw = response.json()
        except json.JSONDecodeError as exc:
            raise GitHubResponseShapeError.missing("response") from exc
        return _parse_graphql_payload(payload_raw)
