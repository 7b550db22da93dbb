"""Source adapter that turns GitHub state into snapshots.

Repository targets snapshot every open issue plus issues closed within the
lookback window, so a close shows up as a state change rather than the issue
disappearing. Closed issues still drift in and out of that window without
anything happening on GitHub; :func:`drop_lookback_churn` removes those
artefacts from a diff before delivery. Project targets snapshot every item
on the board with its column taken from a single-select field.
"""

from __future__ import annotations

import datetime as dt
import typing as typ

from issues_watcher.common.time import utcnow
from issues_watcher.diff import ChangeKind
from issues_watcher.logging import get_logger, log_debug
from issues_watcher.snapshot import IssueState, Snapshot
from issues_watcher.sources import FatalFetchError, RetryableFetchError

from .errors import GitHubAPIError, GitHubResponseShapeError
from .targets import ProjectTarget, RepositoryTarget, parse_target

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from issues_watcher.diff import Change
    from issues_watcher.snapshot import IssueRecord

    from .client import GitHubGraphQLClient

    type Clock = cabc.Callable[[], dt.datetime]

logger = get_logger(__name__)

DEFAULT_CLOSED_LOOKBACK = dt.timedelta(days=7)
DEFAULT_COLUMN_FIELD = "Status"


class GitHubSourceAdapter:
    """Fetch snapshots of repositories and project boards.

    Parameters
    ----------
    client
        GraphQL client used for all requests.
    closed_lookback
        How far back closed issues are still included in repository
        snapshots.
    column_field
        Name of the project single-select field that holds the column.
    clock
        Source of capture timestamps.

    """

    def __init__(
        self,
        client: GitHubGraphQLClient,
        *,
        closed_lookback: dt.timedelta = DEFAULT_CLOSED_LOOKBACK,
        column_field: str = DEFAULT_COLUMN_FIELD,
        clock: Clock | None = None,
    ) -> None:
        """Bind the adapter to a client and its fetch settings."""
        self._client = client
        self._closed_lookback = closed_lookback
        self._column_field = column_field
        self._clock = clock or utcnow

    async def fetch(self, target_key: str) -> Snapshot:
        """Fetch the current snapshot for ``target_key``.

        Raises
        ------
        RetryableFetchError
            On timeouts, network failures, rate limits, server errors and
            unexpected response shapes.
        FatalFetchError
            On authentication failures, missing targets and target keys that
            are neither repositories nor project URLs.

        """
        try:
            target = parse_target(target_key)
        except ValueError as exc:
            raise FatalFetchError.unsupported_target(target_key) from exc

        captured_at = self._clock()
        try:
            records = await self._collect(target, captured_at)
        except GitHubAPIError as exc:
            if exc.transient:
                raise RetryableFetchError(
                    str(exc), target_key=target_key, retry_after=exc.retry_after
                ) from exc
            raise FatalFetchError(str(exc), target_key=target_key) from exc
        except GitHubResponseShapeError as exc:
            raise RetryableFetchError(str(exc), target_key=target_key) from exc

        log_debug(logger, "Fetched %d record(s) for %s", len(records), target_key)
        return Snapshot.from_records(target_key, captured_at, records)

    async def _collect(
        self,
        target: RepositoryTarget | ProjectTarget,
        captured_at: dt.datetime,
    ) -> list[IssueRecord]:
        if isinstance(target, RepositoryTarget):
            return await self._collect_repository(target, captured_at)
        return [
            record
            async for record in self._client.iter_project_items(
                target, column_field=self._column_field
            )
        ]

    async def _collect_repository(
        self, target: RepositoryTarget, captured_at: dt.datetime
    ) -> list[IssueRecord]:
        records = [
            record
            async for record in self._client.iter_repository_issues(
                target, states=(IssueState.OPEN,)
            )
        ]
        records.extend(
            [
                record
                async for record in self._client.iter_repository_issues(
                    target,
                    states=(IssueState.CLOSED,),
                    since=captured_at - self._closed_lookback,
                )
            ]
        )
        return records


def _is_lookback_churn(change: Change) -> bool:
    if change.kind not in {ChangeKind.ADDED, ChangeKind.REMOVED}:
        return False
    return change.record.state is IssueState.CLOSED


def drop_lookback_churn(
    target_key: str, changes: cabc.Sequence[Change]
) -> list[Change]:
    """Drop changes caused only by the closed-issue lookback window.

    A closed issue that ages out of the window looks removed, and an old
    closed issue that sees new activity looks added. Neither is a change on
    GitHub, so both are dropped for repository targets. Project boards list
    every item and their changes are kept as they are.

    Examples
    --------
    >>> drop_lookback_churn("https://github.com/orgs/octo/projects/4", [])
    []

    """
    try:
        target = parse_target(target_key)
    except ValueError:
        return list(changes)
    if not isinstance(target, RepositoryTarget):
        return list(changes)
    return [change for change in changes if not _is_lookback_churn(change)]
