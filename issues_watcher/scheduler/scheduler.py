"""Drive the fetch, diff and notify cycle for every watched target.

Each target runs its own loop: fetch a snapshot, diff it against the stored
baseline, hand the ordered change batch to the dispatcher, then commit the
new snapshot as baseline and wait for the target's poll interval.

Failure handling per target:

- Retryable fetch failures back off exponentially and retry, up to the
  policy's ``max_retries`` attempts per cycle. A cycle that exhausts its
  attempts raises one persistent-failure report per outage and the target
  stays scheduled.
- Fatal fetch failures raise a report and stop that target only.
- Delivery failures are logged and the baseline is committed anyway, so the
  same changes are never delivered twice.

The sleeper and clock are injected so the policy can be exercised without
real timers.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import typing as typ

from issues_watcher.common.time import utcnow
from issues_watcher.diff import diff_snapshots
from issues_watcher.logging import get_logger, log_error, log_info, log_warning
from issues_watcher.snapshot import SnapshotValidationError
from issues_watcher.sources import FetchErrorClass, classify_fetch_error

from .backoff import RetryPolicy
from .observability import WatchEventLogger
from .reports import FailureKind, FailureReport, LoggingFailureReporter
from .state import WatchPhase

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from issues_watcher.diff import Change
    from issues_watcher.notify import Dispatcher
    from issues_watcher.snapshot import Snapshot, SnapshotStore
    from issues_watcher.sources import SourceAdapter

    from .reports import FailureReporter
    from .state import WatchRegistry, WatchState

    type Sleeper = cabc.Callable[[float], cabc.Awaitable[None]]
    type ChangeFilter = cabc.Callable[
        [str, cabc.Sequence[Change]], cabc.Iterable[Change]
    ]
    type Clock = cabc.Callable[[], dt.datetime]

logger = get_logger(__name__)

_DEFAULT_SHUTDOWN_GRACE_S = 10.0


class CycleStatus(enum.StrEnum):
    """Outcome of a single watch cycle."""

    BASELINE = "baseline"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"
    SKIPPED = "skipped"
    INTERRUPTED = "interrupted"


@dataclasses.dataclass(frozen=True, slots=True)
class CycleResult:
    """Summary of one cycle for one target."""

    target_key: str
    status: CycleStatus
    changes: tuple[Change, ...] = ()
    delivered: bool = False


@dataclasses.dataclass(frozen=True, slots=True)
class SchedulerOptions:
    """Tunables for :class:`WatchScheduler`.

    Attributes
    ----------
    retry_policy
        Backoff settings for retryable fetch failures.
    shutdown_grace
        Seconds in-flight cycles may run after a stop request before they
        are cancelled.
    change_filter
        Optional hook applied to each diff before delivery; it receives the
        target key and the ordered changes and returns those to keep.

    """

    retry_policy: RetryPolicy = dataclasses.field(default_factory=RetryPolicy)
    shutdown_grace: float = _DEFAULT_SHUTDOWN_GRACE_S
    change_filter: ChangeFilter | None = None


class WatchScheduler:
    """Run watch cycles for every target in a :class:`WatchRegistry`."""

    def __init__(  # noqa: PLR0913
        self,
        registry: WatchRegistry,
        source: SourceAdapter,
        dispatcher: Dispatcher,
        *,
        options: SchedulerOptions | None = None,
        reporter: FailureReporter | None = None,
        store: SnapshotStore | None = None,
        sleeper: Sleeper | None = None,
        clock: Clock | None = None,
        event_logger: WatchEventLogger | None = None,
    ) -> None:
        """Bind the scheduler to its collaborators."""
        resolved = options or SchedulerOptions()
        self._registry = registry
        self._source = source
        self._dispatcher = dispatcher
        self._retry = resolved.retry_policy
        self._shutdown_grace = resolved.shutdown_grace
        self._change_filter = resolved.change_filter
        self._event_logger = event_logger or WatchEventLogger()
        self._reporter = reporter or LoggingFailureReporter(
            event_logger=self._event_logger
        )
        self._store = store
        self._sleep = sleeper or asyncio.sleep
        self._clock = clock or utcnow
        self._stop = asyncio.Event()

    @property
    def registry(self) -> WatchRegistry:
        """The per-target state this scheduler owns."""
        return self._registry

    @property
    def stopping(self) -> bool:
        """Whether a stop has been requested."""
        return self._stop.is_set()

    def request_stop(self) -> None:
        """Ask every target loop to finish its current cycle and exit."""
        self._stop.set()

    async def load_baselines(self) -> int:
        """Seed baselines from the snapshot store, returning how many loaded."""
        if self._store is None:
            return 0
        loaded = 0
        for state in self._registry:
            snapshot = await self._store.load(state.target.key)
            if snapshot is not None:
                state.last_snapshot = snapshot
                loaded += 1
        return loaded

    async def run_once(self) -> list[CycleResult]:
        """Run one cycle for every target concurrently."""
        return list(
            await asyncio.gather(
                *(self.run_cycle(key) for key in self._registry.keys())
            )
        )

    async def run(self) -> None:
        """Run every target loop until stopped or all targets have stopped."""
        tasks = [
            asyncio.create_task(
                self._run_target(state), name=f"watch:{state.target.key}"
            )
            for state in self._registry
        ]
        if not tasks:
            return
        gathered = asyncio.gather(*tasks, return_exceptions=True)
        stop_waiter = asyncio.create_task(self._stop.wait())
        try:
            await asyncio.wait(
                {gathered, stop_waiter}, return_when=asyncio.FIRST_COMPLETED
            )
            if not gathered.done():
                await self._drain(tasks)
            results = await gathered
        finally:
            stop_waiter.cancel()

        for task, result in zip(tasks, results, strict=True):
            if isinstance(result, Exception):
                log_warning(
                    logger,
                    "Watch loop %s ended with an unexpected error: %s",
                    task.get_name(),
                    result,
                    exc_info=result,
                )

    async def _drain(self, tasks: list[asyncio.Task[None]]) -> None:
        """Give in-flight cycles the grace period, then cancel the rest."""
        _, pending = await asyncio.wait(tasks, timeout=self._shutdown_grace)
        for task in pending:
            log_warning(
                logger,
                "Cancelling %s after %.1fs shutdown grace period",
                task.get_name(),
                self._shutdown_grace,
            )
            task.cancel()

    async def _run_target(self, state: WatchState) -> None:
        """Loop one target until it stops or a stop is requested.

        An unexpected error ends only the current cycle; the target is polled
        again after its interval.
        """
        while not self.stopping:
            try:
                await self.run_cycle(state.target.key)
            except Exception as exc:  # noqa: BLE001 - keep the target scheduled
                if state.phase is not WatchPhase.STOPPED:
                    state.phase = WatchPhase.IDLE
                log_error(
                    logger,
                    "Watch cycle for %s failed unexpectedly: %s",
                    state.target.key,
                    exc,
                    exc_info=exc,
                )
            if state.phase is WatchPhase.STOPPED:
                return
            if await self._wait(state.target.interval):
                return

    async def _wait(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds; return ``True`` if stopped meanwhile."""
        if self.stopping:
            return True
        sleeper = asyncio.ensure_future(self._sleep(delay))
        stop_waiter = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait(
                {sleeper, stop_waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            sleeper.cancel()
            stop_waiter.cancel()
        return self.stopping

    async def run_cycle(self, target_key: str) -> CycleResult:
        """Run one fetch, diff and notify cycle for ``target_key``.

        Returns
        -------
        CycleResult
            What happened; the target's :class:`WatchState` is updated only
            when a snapshot was fetched and delivery has finished.

        """
        state = self._registry[target_key]
        if state.phase is WatchPhase.STOPPED:
            return CycleResult(target_key, CycleStatus.STOPPED)
        if state.in_flight:
            return CycleResult(target_key, CycleStatus.SKIPPED)

        started_at = self._clock()
        try:
            fetched = await self._fetch_with_retry(state)
        except asyncio.CancelledError:
            state.phase = WatchPhase.IDLE
            raise
        if isinstance(fetched, CycleStatus):
            return CycleResult(target_key, fetched)

        try:
            return await self._diff_and_notify(state, fetched, started_at)
        except asyncio.CancelledError:
            state.phase = WatchPhase.IDLE
            raise

    async def _fetch_with_retry(self, state: WatchState) -> Snapshot | CycleStatus:
        """Fetch a snapshot, backing off on retryable failures."""
        target_key = state.target.key
        attempt = 0
        while True:
            attempt += 1
            state.phase = WatchPhase.FETCHING
            try:
                snapshot = await self._source.fetch(target_key)
                if snapshot.target_key != target_key:
                    raise SnapshotValidationError.target_mismatch(  # noqa: TRY301
                        target_key, snapshot.target_key
                    )
            except Exception as exc:  # noqa: BLE001 - adapters classify failures
                state.failures += 1
                state.last_error = str(exc)
                if classify_fetch_error(exc) is FetchErrorClass.FATAL:
                    state.phase = WatchPhase.STOPPED
                    await self._report(state, FailureKind.FATAL, exc)
                    return CycleStatus.STOPPED
                if self._retry.exhausted(attempt):
                    state.phase = WatchPhase.IDLE
                    if not state.persistent_failure_reported:
                        state.persistent_failure_reported = True
                        await self._report(state, FailureKind.PERSISTENT, exc)
                    return CycleStatus.FAILED
                delay = self._retry.delay_for(
                    attempt, retry_after=getattr(exc, "retry_after", None)
                )
                state.phase = WatchPhase.BACKOFF
                self._event_logger.log_fetch_retrying(
                    target_key, exc, failures=state.failures, delay=delay
                )
                if await self._wait(delay):
                    state.phase = WatchPhase.IDLE
                    return CycleStatus.INTERRUPTED
                continue
            return snapshot

    async def _diff_and_notify(
        self,
        state: WatchState,
        snapshot: Snapshot,
        started_at: dt.datetime,
    ) -> CycleResult:
        """Diff against the baseline, deliver, then commit the new baseline."""
        target_key = state.target.key
        state.phase = WatchPhase.DIFFING
        first_observation = state.last_snapshot is None
        diffed = diff_snapshots(state.last_snapshot, snapshot)
        if self._change_filter is not None:
            diffed = list(self._change_filter(target_key, diffed))
        changes = tuple(diffed)

        delivered = False
        if changes:
            state.phase = WatchPhase.NOTIFYING
            try:
                await self._dispatcher.deliver(target_key, changes)
                delivered = True
            except Exception as exc:  # noqa: BLE001 - at-most-once delivery
                self._event_logger.log_delivery_failed(
                    target_key, exc, changes=len(changes)
                )

        state.commit(snapshot, at=self._clock())
        await self._persist(snapshot)

        if first_observation:
            self._event_logger.log_baseline_captured(
                target_key, len(snapshot.records)
            )
            return CycleResult(target_key, CycleStatus.BASELINE)

        self._event_logger.log_cycle_completed(
            target_key,
            changes=len(changes),
            records=len(snapshot.records),
            duration=self._clock() - started_at,
        )
        return CycleResult(
            target_key, CycleStatus.COMPLETED, changes=changes, delivered=delivered
        )

    async def _persist(self, snapshot: Snapshot) -> None:
        """Write the committed baseline to the store, if one is configured."""
        if self._store is None:
            return
        try:
            await self._store.save(snapshot)
        except OSError as exc:
            log_warning(
                logger,
                "Could not persist baseline for %s: %s",
                snapshot.target_key,
                exc,
            )

    async def _report(
        self, state: WatchState, kind: FailureKind, error: Exception
    ) -> None:
        report = FailureReport(
            target_key=state.target.key,
            kind=kind,
            error=error,
            failures=state.failures,
            reported_at=self._clock(),
        )
        if kind is FailureKind.FATAL:
            log_info(logger, "No longer scheduling %s", state.target.key)
        await self._reporter.report(report)
