"""Wire configuration into a running watcher.

:func:`build_runtime` assembles the GitHub adapter, dispatcher, snapshot
store and scheduler from a :class:`~issues_watcher.config.WatcherConfig`.
:func:`run_watcher` drives it until SIGINT or SIGTERM, or for a single
cycle per target with ``once=True``.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import signal
import typing as typ

from issues_watcher.github import (
    GitHubAPIError,
    GitHubGraphQLClient,
    GitHubGraphQLConfig,
    GitHubResponseShapeError,
    GitHubSourceAdapter,
    drop_lookback_churn,
)
from issues_watcher.logging import get_logger, log_info, log_warning
from issues_watcher.notify import LogDispatcher, SlackConfig, SlackDispatcher
from issues_watcher.scheduler import (
    CycleStatus,
    LoggingFailureReporter,
    RetryPolicy,
    SchedulerOptions,
    WatchEventLogger,
    WatchRegistry,
    WatchScheduler,
    WatchTarget,
)
from issues_watcher.snapshot import FilesystemSnapshotStore

if typ.TYPE_CHECKING:
    import httpx

    from issues_watcher.config import WatcherConfig
    from issues_watcher.scheduler import CycleResult

    type AnyDispatcher = SlackDispatcher | LogDispatcher

logger = get_logger(__name__)

_STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclasses.dataclass(slots=True)
class WatcherRuntime:
    """The assembled watcher and the resources it owns."""

    client: GitHubGraphQLClient
    dispatcher: AnyDispatcher
    scheduler: WatchScheduler

    async def aclose(self) -> None:
        """Close HTTP clients owned by the runtime."""
        await self.client.aclose()
        if isinstance(self.dispatcher, SlackDispatcher):
            await self.dispatcher.aclose()


def build_dispatcher(
    config: WatcherConfig, *, http_client: httpx.AsyncClient | None = None
) -> AnyDispatcher:
    """Return a Slack dispatcher, or a log dispatcher when Slack is unset."""
    if config.slack is None:
        return LogDispatcher(max_lines=config.max_digest_lines)
    return SlackDispatcher(
        SlackConfig(
            token=config.slack.token,
            channel=config.slack.channel,
            max_lines=config.max_digest_lines,
        ),
        http_client=http_client,
    )


def build_runtime(
    config: WatcherConfig,
    *,
    github_http_client: httpx.AsyncClient | None = None,
    slack_http_client: httpx.AsyncClient | None = None,
) -> WatcherRuntime:
    """Assemble the watcher described by ``config``."""
    client = GitHubGraphQLClient(
        GitHubGraphQLConfig(token=config.github_token),
        http_client=github_http_client,
    )
    adapter = GitHubSourceAdapter(
        client,
        closed_lookback=config.closed_lookback,
        column_field=config.column_field,
    )
    dispatcher = build_dispatcher(config, http_client=slack_http_client)
    registry = WatchRegistry(
        WatchTarget(key=target.key, interval=target.poll_interval)
        for target in config.targets
    )
    retry = config.retry
    event_logger = WatchEventLogger()
    scheduler = WatchScheduler(
        registry,
        adapter,
        dispatcher,
        options=SchedulerOptions(
            retry_policy=RetryPolicy(
                max_retries=retry.max_retries,
                base_delay=retry.base_delay,
                max_delay=retry.max_delay,
                factor=retry.factor,
            ),
            shutdown_grace=config.shutdown_grace,
            change_filter=drop_lookback_churn,
        ),
        reporter=LoggingFailureReporter(dispatcher, event_logger=event_logger),
        store=(
            FilesystemSnapshotStore(config.data_dir)
            if config.data_dir is not None
            else None
        ),
        event_logger=event_logger,
    )
    return WatcherRuntime(client=client, dispatcher=dispatcher, scheduler=scheduler)


def install_signal_handlers(
    loop: asyncio.AbstractEventLoop, scheduler: WatchScheduler
) -> list[signal.Signals]:
    """Stop ``scheduler`` on SIGINT/SIGTERM, returning the signals installed."""
    installed: list[signal.Signals] = []
    for sig in _STOP_SIGNALS:
        try:
            loop.add_signal_handler(sig, scheduler.request_stop)
        except (NotImplementedError, RuntimeError):
            continue
        installed.append(sig)
    return installed


async def log_viewer(client: GitHubGraphQLClient) -> None:
    """Log which GitHub account the watcher runs as."""
    try:
        login = await client.viewer_login()
    except (GitHubAPIError, GitHubResponseShapeError) as exc:
        log_warning(logger, "Could not identify the GitHub account: %s", exc)
        return
    log_info(logger, "Watching GitHub as %s", login)


def _summarise(results: list[CycleResult]) -> None:
    for result in results:
        log_info(
            logger,
            "%s: %s (%d change(s))",
            result.target_key,
            result.status,
            len(result.changes),
        )


async def run_watcher(runtime: WatcherRuntime, *, once: bool = False) -> int:
    """Run the watcher until stopped; return the process exit code.

    With ``once=True`` every target runs one cycle and the exit code is 1 if
    any target failed or stopped.
    """
    scheduler = runtime.scheduler
    await log_viewer(runtime.client)
    loaded = await scheduler.load_baselines()
    if loaded:
        log_info(logger, "Loaded %d stored baseline(s)", loaded)

    if once:
        results = await scheduler.run_once()
        _summarise(results)
        failed = {CycleStatus.FAILED, CycleStatus.STOPPED}
        return 1 if any(result.status in failed for result in results) else 0

    loop = asyncio.get_running_loop()
    installed = install_signal_handlers(loop, scheduler)
    log_info(logger, "Watching %d target(s)", len(scheduler.registry))
    try:
        await scheduler.run()
    finally:
        for sig in installed:
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(sig)
    log_info(logger, "Watcher stopped")
    return 0
