"""Unit tests for the watch scheduler."""

from __future__ import annotations

import asyncio
import typing as typ

import pytest

from issues_watcher.diff import ChangeKind
from issues_watcher.notify import DeliveryError
from issues_watcher.scheduler import (
    CycleStatus,
    FailureKind,
    RetryPolicy,
    SchedulerOptions,
    WatchPhase,
    WatchRegistry,
    WatchScheduler,
    WatchTarget,
)
from issues_watcher.snapshot import FilesystemSnapshotStore, IssueState
from issues_watcher.sources import FatalFetchError, RetryableFetchError
from tests.helpers.femtologging_capture import capture_femto_logs
from tests.helpers.watch_builders import (
    FakeClock,
    FakeSleeper,
    FakeSource,
    RecordingDispatcher,
    RecordingReporter,
    make_record,
    make_snapshot,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

    from issues_watcher.diff import Change
    from issues_watcher.snapshot import Snapshot, SnapshotStore

    type ChangeFilter = cabc.Callable[
        [str, cabc.Sequence[Change]], cabc.Iterable[Change]
    ]

_REEF = "octo/reef"
_TOOLS = "octo/tools"


class _Harness(typ.NamedTuple):
    scheduler: WatchScheduler
    source: FakeSource
    dispatcher: RecordingDispatcher
    reporter: RecordingReporter
    sleeper: FakeSleeper
    clock: FakeClock


def _harness(  # noqa: PLR0913
    outcomes: dict[str, list[Snapshot | Exception]],
    *,
    policy: RetryPolicy | None = None,
    dispatcher: RecordingDispatcher | None = None,
    store: SnapshotStore | None = None,
    interval: float = 300.0,
    shutdown_grace: float = 10.0,
    change_filter: ChangeFilter | None = None,
) -> _Harness:
    clock = FakeClock()
    sleeper = FakeSleeper(clock=clock)
    source = FakeSource(outcomes)
    recording = dispatcher or RecordingDispatcher()
    reporter = RecordingReporter()
    registry = WatchRegistry(
        WatchTarget(key=key, interval=interval) for key in outcomes
    )
    scheduler = WatchScheduler(
        registry,
        source,
        recording,
        options=SchedulerOptions(
            retry_policy=policy
            or RetryPolicy(max_retries=3, base_delay=5.0, max_delay=60.0),
            shutdown_grace=shutdown_grace,
            change_filter=change_filter,
        ),
        reporter=reporter,
        store=store,
        sleeper=sleeper,
        clock=clock,
    )
    return _Harness(scheduler, source, recording, reporter, sleeper, clock)


class TestRunCycle:
    """Tests for a single fetch, diff and notify cycle."""

    @pytest.mark.asyncio
    async def test_first_cycle_captures_baseline(self) -> None:
        """The first snapshot becomes the baseline and nothing is sent."""
        baseline = make_snapshot(_REEF, make_record("octo/reef#1"))
        harness = _harness({_REEF: [baseline]})

        result = await harness.scheduler.run_cycle(_REEF)

        state = harness.scheduler.registry[_REEF]
        assert result.status is CycleStatus.BASELINE
        assert harness.dispatcher.deliveries == []
        assert state.last_snapshot is baseline
        assert state.phase is WatchPhase.IDLE
        assert state.cycles_completed == 1

    @pytest.mark.asyncio
    async def test_new_issue_is_delivered(self) -> None:
        """A new issue produces exactly one added change in one batch."""
        added = make_record("octo/reef#2", title="Crash on start")
        harness = _harness(
            {
                _REEF: [
                    make_snapshot(_REEF, make_record("octo/reef#1")),
                    make_snapshot(_REEF, make_record("octo/reef#1"), added),
                ]
            }
        )

        await harness.scheduler.run_cycle(_REEF)
        result = await harness.scheduler.run_cycle(_REEF)

        assert result.status is CycleStatus.COMPLETED
        assert result.delivered is True
        ((target_key, changes),) = harness.dispatcher.deliveries
        assert target_key == _REEF
        assert [(c.kind, c.after) for c in changes] == [(ChangeKind.ADDED, added)]

    @pytest.mark.asyncio
    async def test_close_and_relabel_are_delivered_in_order(self) -> None:
        """State and label changes on one issue arrive in kind order."""
        harness = _harness(
            {
                _REEF: [
                    make_snapshot(_REEF, make_record("octo/reef#7", labels=["bug"])),
                    make_snapshot(
                        _REEF,
                        make_record(
                            "octo/reef#7",
                            state=IssueState.CLOSED,
                            labels=["bug", "wontfix"],
                        ),
                    ),
                ]
            }
        )

        await harness.scheduler.run_cycle(_REEF)
        await harness.scheduler.run_cycle(_REEF)

        ((_, changes),) = harness.dispatcher.deliveries
        assert [change.kind for change in changes] == [
            ChangeKind.STATE_CHANGED,
            ChangeKind.LABELS_CHANGED,
        ]

    @pytest.mark.asyncio
    async def test_unchanged_target_sends_nothing(self) -> None:
        """Cycles without changes do not call the dispatcher."""
        snapshot = make_snapshot(_REEF, make_record("octo/reef#1"))
        harness = _harness({_REEF: [snapshot]})

        await harness.scheduler.run_cycle(_REEF)
        result = await harness.scheduler.run_cycle(_REEF)

        assert result.status is CycleStatus.COMPLETED
        assert result.changes == ()
        assert result.delivered is False
        assert harness.dispatcher.deliveries == []

    @pytest.mark.asyncio
    async def test_in_flight_target_is_skipped(self) -> None:
        """A target already mid-cycle is not started again."""
        harness = _harness({_REEF: [make_snapshot(_REEF)]})
        harness.scheduler.registry[_REEF].phase = WatchPhase.FETCHING

        result = await harness.scheduler.run_cycle(_REEF)

        assert result.status is CycleStatus.SKIPPED
        assert harness.source.calls[_REEF] == 0


class TestRetries:
    """Tests for retryable fetch failures."""

    @pytest.mark.asyncio
    async def test_transient_failures_back_off_then_recover(self) -> None:
        """Two failures back off exponentially; the third attempt succeeds."""
        baseline = make_snapshot(_REEF, make_record("octo/reef#1"))
        updated = make_snapshot(
            _REEF, make_record("octo/reef#1"), make_record("octo/reef#2")
        )
        harness = _harness(
            {
                _REEF: [
                    baseline,
                    RetryableFetchError("timeout"),
                    RetryableFetchError("timeout"),
                    updated,
                ]
            }
        )

        await harness.scheduler.run_cycle(_REEF)
        result = await harness.scheduler.run_cycle(_REEF)

        state = harness.scheduler.registry[_REEF]
        assert result.status is CycleStatus.COMPLETED
        assert harness.sleeper.delays == [5.0, 10.0]
        assert len(harness.dispatcher.deliveries) == 1
        assert harness.reporter.reports == []
        assert state.failures == 0
        assert state.last_error is None
        assert state.last_snapshot is updated

    @pytest.mark.asyncio
    async def test_retry_after_is_honoured(self) -> None:
        """A server-requested wait replaces a shorter computed delay."""
        harness = _harness(
            {
                _REEF: [
                    RetryableFetchError("limited", retry_after=42.0),
                    make_snapshot(_REEF),
                ]
            }
        )

        await harness.scheduler.run_cycle(_REEF)

        assert harness.sleeper.delays == [42.0]

    @pytest.mark.asyncio
    async def test_persistent_failure_is_reported_once(self) -> None:
        """Exhausted retries raise one report and keep the old baseline."""
        baseline = make_snapshot(_REEF, make_record("octo/reef#1"))
        harness = _harness({_REEF: [baseline, RetryableFetchError("down")]})

        await harness.scheduler.run_cycle(_REEF)
        first = await harness.scheduler.run_cycle(_REEF)
        second = await harness.scheduler.run_cycle(_REEF)

        state = harness.scheduler.registry[_REEF]
        assert first.status is CycleStatus.FAILED
        assert second.status is CycleStatus.FAILED
        assert harness.source.calls[_REEF] == 7
        assert harness.sleeper.delays == [5.0, 10.0, 5.0, 10.0]
        assert harness.dispatcher.deliveries == []
        assert state.last_snapshot is baseline
        assert state.phase is WatchPhase.IDLE
        assert state.last_error == "down"
        (report,) = harness.reporter.reports
        assert report.kind is FailureKind.PERSISTENT
        assert report.target_key == _REEF
        assert report.failures == 3
        assert not report.stops_target

    @pytest.mark.asyncio
    async def test_recovery_rearms_persistent_report(self) -> None:
        """After a success, a later outage is reported again."""
        snapshot = make_snapshot(_REEF)
        down = RetryableFetchError("down")
        policy = RetryPolicy(max_retries=1)
        harness = _harness({_REEF: [down, snapshot, down]}, policy=policy)

        await harness.scheduler.run_cycle(_REEF)
        await harness.scheduler.run_cycle(_REEF)
        await harness.scheduler.run_cycle(_REEF)

        assert [r.kind for r in harness.reporter.reports] == [
            FailureKind.PERSISTENT,
            FailureKind.PERSISTENT,
        ]

    @pytest.mark.asyncio
    async def test_unclassified_errors_are_retried(self) -> None:
        """Errors an adapter did not classify are treated as retryable."""
        harness = _harness({_REEF: [RuntimeError("surprise"), make_snapshot(_REEF)]})

        result = await harness.scheduler.run_cycle(_REEF)

        assert result.status is CycleStatus.BASELINE
        assert harness.sleeper.delays == [5.0]

    @pytest.mark.asyncio
    async def test_snapshot_for_wrong_target_is_retried(self) -> None:
        """A snapshot keyed to another target is rejected and retried."""
        harness = _harness(
            {_REEF: [make_snapshot(_TOOLS), make_snapshot(_REEF)]},
        )

        result = await harness.scheduler.run_cycle(_REEF)

        assert result.status is CycleStatus.BASELINE
        assert harness.source.calls[_REEF] == 2
        state = harness.scheduler.registry[_REEF]
        assert state.last_snapshot is not None
        assert state.last_snapshot.target_key == _REEF


class TestFatalFailures:
    """Tests for fatal fetch failures."""

    @pytest.mark.asyncio
    async def test_fatal_failure_stops_only_that_target(self) -> None:
        """A fatal error stops its target while others keep running."""
        harness = _harness(
            {
                _REEF: [FatalFetchError("repository not found")],
                _TOOLS: [make_snapshot(_TOOLS)],
            }
        )

        results = await harness.scheduler.run_once()
        again = await harness.scheduler.run_once()

        statuses = {result.target_key: result.status for result in results}
        assert statuses == {
            _REEF: CycleStatus.STOPPED,
            _TOOLS: CycleStatus.BASELINE,
        }
        assert {r.target_key: r.status for r in again} == {
            _REEF: CycleStatus.STOPPED,
            _TOOLS: CycleStatus.COMPLETED,
        }
        assert harness.source.calls[_REEF] == 1
        assert harness.sleeper.delays == []
        (report,) = harness.reporter.reports
        assert report.kind is FailureKind.FATAL
        assert report.stops_target
        assert harness.scheduler.registry[_REEF].phase is WatchPhase.STOPPED


class TestDelivery:
    """Tests for delivery failures."""

    @pytest.mark.asyncio
    async def test_delivery_failure_still_commits_baseline(self) -> None:
        """Failed deliveries are not retried on the next cycle."""
        updated = make_snapshot(_REEF, make_record("octo/reef#1"))
        dispatcher = RecordingDispatcher(error=DeliveryError("slack down"))
        harness = _harness(
            {_REEF: [make_snapshot(_REEF), updated]}, dispatcher=dispatcher
        )

        await harness.scheduler.run_cycle(_REEF)
        failed = await harness.scheduler.run_cycle(_REEF)
        after = await harness.scheduler.run_cycle(_REEF)

        assert failed.status is CycleStatus.COMPLETED
        assert failed.delivered is False
        assert harness.scheduler.registry[_REEF].last_snapshot is updated
        assert after.changes == ()
        assert len(dispatcher.deliveries) == 1

    @pytest.mark.asyncio
    async def test_change_filter_trims_the_batch(self) -> None:
        """Only changes kept by the filter are delivered."""

        def _without_removals(
            target_key: str, changes: cabc.Sequence[Change]
        ) -> list[Change]:
            del target_key
            return [c for c in changes if c.kind is not ChangeKind.REMOVED]

        current = make_snapshot(_REEF, make_record("octo/reef#2"))
        harness = _harness(
            {_REEF: [make_snapshot(_REEF, make_record("octo/reef#1")), current]},
            change_filter=_without_removals,
        )

        await harness.scheduler.run_cycle(_REEF)
        result = await harness.scheduler.run_cycle(_REEF)

        ((_, delivered),) = harness.dispatcher.deliveries
        assert [(c.kind, c.record_id) for c in delivered] == [
            (ChangeKind.ADDED, "octo/reef#2")
        ]
        assert result.changes == delivered
        assert harness.scheduler.registry[_REEF].last_snapshot is current

    @pytest.mark.asyncio
    async def test_fully_filtered_batch_is_not_delivered(self) -> None:
        """A diff the filter empties sends nothing but still commits."""
        current = make_snapshot(_REEF)
        harness = _harness(
            {_REEF: [make_snapshot(_REEF, make_record("octo/reef#1")), current]},
            change_filter=lambda target_key, changes: [],
        )

        await harness.scheduler.run_cycle(_REEF)
        result = await harness.scheduler.run_cycle(_REEF)

        assert result.status is CycleStatus.COMPLETED
        assert harness.dispatcher.deliveries == []
        assert harness.scheduler.registry[_REEF].last_snapshot is current


class TestPersistence:
    """Tests for the optional snapshot store."""

    @pytest.mark.asyncio
    async def test_baselines_survive_restart(self, tmp_path: Path) -> None:
        """A new scheduler picks up the stored baseline and reports changes."""
        store = FilesystemSnapshotStore(tmp_path)
        first = _harness(
            {_REEF: [make_snapshot(_REEF, make_record("octo/reef#1"))]}, store=store
        )
        await first.scheduler.run_cycle(_REEF)

        second = _harness(
            {
                _REEF: [
                    make_snapshot(
                        _REEF, make_record("octo/reef#1"), make_record("octo/reef#2")
                    )
                ]
            },
            store=store,
        )
        loaded = await second.scheduler.load_baselines()
        result = await second.scheduler.run_cycle(_REEF)

        assert loaded == 1
        assert result.status is CycleStatus.COMPLETED
        assert [c.record_id for c in result.changes] == ["octo/reef#2"]


class TestRunLoop:
    """Tests for the long-running loop and shutdown."""

    @pytest.mark.asyncio
    async def test_stop_request_ends_loop_after_cycle(self) -> None:
        """A stop during the poll wait ends every target loop."""
        harness = _harness(
            {_REEF: [make_snapshot(_REEF)], _TOOLS: [make_snapshot(_TOOLS)]}
        )
        scheduler = harness.scheduler

        async def _stop_on_sleep(delay: float) -> None:
            del delay
            scheduler.request_stop()
            await asyncio.sleep(0)

        scheduler._sleep = _stop_on_sleep  # noqa: SLF001

        await asyncio.wait_for(scheduler.run(), timeout=1.0)

        assert scheduler.stopping
        assert [state.cycles_completed for state in scheduler.registry] == [1, 1]

    @pytest.mark.asyncio
    async def test_loop_polls_until_stopped(self) -> None:
        """Targets are polled repeatedly at their interval."""
        harness = _harness({_REEF: [make_snapshot(_REEF)]}, interval=60.0)
        scheduler = harness.scheduler
        sleeper = harness.sleeper

        async def _stop_after_three(delay: float) -> None:
            await sleeper(delay)
            if len(sleeper.delays) == 3:
                scheduler.request_stop()

        scheduler._sleep = _stop_after_three  # noqa: SLF001

        await asyncio.wait_for(scheduler.run(), timeout=1.0)

        assert sleeper.delays == [60.0, 60.0, 60.0]
        assert harness.source.calls[_REEF] == 3

    @pytest.mark.asyncio
    async def test_loop_exits_when_every_target_stops(self) -> None:
        """Fatal failures on all targets end the loop without a stop request."""
        harness = _harness({_REEF: [FatalFetchError("gone")]})

        await asyncio.wait_for(harness.scheduler.run(), timeout=1.0)

        assert harness.scheduler.registry[_REEF].phase is WatchPhase.STOPPED

    @pytest.mark.asyncio
    async def test_stuck_cycle_is_cancelled_after_grace(self) -> None:
        """In-flight cycles past the grace period are cancelled cleanly."""
        started = asyncio.Event()

        class _HangingSource:
            async def fetch(self, target_key: str) -> Snapshot:
                del target_key
                started.set()
                await asyncio.Event().wait()
                raise AssertionError  # pragma: no cover

        harness = _harness({_REEF: [make_snapshot(_REEF)]}, shutdown_grace=0.01)
        scheduler = harness.scheduler
        scheduler._source = _HangingSource()  # noqa: SLF001

        task = asyncio.create_task(scheduler.run())
        await started.wait()
        scheduler.request_stop()
        await asyncio.wait_for(task, timeout=1.0)

        state = scheduler.registry[_REEF]
        assert state.phase is WatchPhase.IDLE
        assert state.last_snapshot is None

    @pytest.mark.asyncio
    async def test_cancelled_delivery_keeps_previous_baseline(self) -> None:
        """A delivery cut off by shutdown never commits the new snapshot."""
        baseline = make_snapshot(_REEF, make_record("octo/reef#1"))
        updated = make_snapshot(
            _REEF, make_record("octo/reef#1"), make_record("octo/reef#2")
        )
        harness = _harness({_REEF: [baseline, updated]}, shutdown_grace=0.01)
        scheduler = harness.scheduler
        await scheduler.run_cycle(_REEF)
        started = asyncio.Event()

        class _HangingDispatcher:
            async def deliver(
                self, target_key: str, changes: cabc.Sequence[Change]
            ) -> None:
                del target_key, changes
                started.set()
                await asyncio.Event().wait()

        scheduler._dispatcher = _HangingDispatcher()  # noqa: SLF001

        task = asyncio.create_task(scheduler.run())
        await started.wait()
        scheduler.request_stop()
        await asyncio.wait_for(task, timeout=1.0)

        state = scheduler.registry[_REEF]
        assert state.phase is WatchPhase.IDLE
        assert state.last_snapshot is baseline
        assert state.cycles_completed == 1

    @pytest.mark.asyncio
    async def test_unexpected_cycle_error_keeps_target_scheduled(self) -> None:
        """An error escaping a cycle is logged and the target polls again."""
        recovered = make_snapshot(_REEF, make_record("octo/reef#1"))
        harness = _harness(
            {_REEF: [RetryableFetchError("down"), recovered]},
            policy=RetryPolicy(max_retries=1, base_delay=5.0),
            interval=60.0,
        )
        scheduler = harness.scheduler
        sleeper = harness.sleeper

        class _BrokenReporter:
            async def report(self, report: object) -> None:
                del report
                msg = "reporter bug"
                raise RuntimeError(msg)

        async def _stop_after_two(delay: float) -> None:
            await sleeper(delay)
            if len(sleeper.delays) == 2:
                scheduler.request_stop()

        scheduler._reporter = _BrokenReporter()  # noqa: SLF001
        scheduler._sleep = _stop_after_two  # noqa: SLF001

        with capture_femto_logs("issues_watcher.scheduler.scheduler") as capture:
            await asyncio.wait_for(scheduler.run(), timeout=1.0)

        state = scheduler.registry[_REEF]
        assert harness.source.calls[_REEF] == 2
        assert state.last_snapshot is recovered
        assert state.phase is WatchPhase.IDLE
        capture.wait_for_count(1)
        assert any(
            "failed unexpectedly" in record.message and "reporter bug" in record.message
            for record in capture.records
        )


class TestWatchRegistry:
    """Tests for the per-target state registry."""

    def test_rejects_duplicate_targets(self) -> None:
        """Each target key owns exactly one state."""
        with pytest.raises(ValueError, match="duplicate"):
            WatchRegistry(
                [WatchTarget(key=_REEF, interval=1), WatchTarget(key=_REEF, interval=2)]
            )

    @pytest.mark.parametrize(("key", "interval"), [("", 1.0), (_REEF, 0.0)])
    def test_rejects_invalid_targets(self, key: str, interval: float) -> None:
        """Target keys must be non-empty and intervals positive."""
        with pytest.raises(ValueError):  # noqa: PT011
            WatchTarget(key=key, interval=interval)

    @pytest.mark.asyncio
    async def test_status_reflects_cycles(self) -> None:
        """Status views report baseline and failure information."""
        harness = _harness(
            {
                _REEF: [make_snapshot(_REEF)],
                _TOOLS: [RetryableFetchError("down")],
            },
            policy=RetryPolicy(max_retries=1),
        )

        await harness.scheduler.run_once()
        status = {s.target_key: s for s in harness.scheduler.registry.status()}

        assert status[_REEF].has_baseline
        assert status[_REEF].failures == 0
        assert status[_REEF].last_success_at == harness.clock.now
        assert not status[_TOOLS].has_baseline
        assert status[_TOOLS].failures == 1
        assert status[_TOOLS].last_error == "down"
        assert harness.scheduler.registry.keys() == (_REEF, _TOOLS)
