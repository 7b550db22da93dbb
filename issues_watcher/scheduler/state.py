"""Per-target watch state and the registry that holds it.

Each watched target owns exactly one :class:`WatchState`. Only that target's
cycle writes to it, and cycles of one target never overlap, so no locking is
needed. Readers such as a status reporter use :meth:`WatchRegistry.status`,
which returns immutable copies.
"""

from __future__ import annotations

import dataclasses
import enum
import types
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from issues_watcher.snapshot import Snapshot


class WatchPhase(enum.StrEnum):
    """Cycle phase of one watched target."""

    IDLE = "idle"
    FETCHING = "fetching"
    DIFFING = "diffing"
    NOTIFYING = "notifying"
    BACKOFF = "backoff"
    STOPPED = "stopped"


@dataclasses.dataclass(frozen=True, slots=True)
class WatchTarget:
    """A validated target key and its poll interval in seconds."""

    key: str
    interval: float

    def __post_init__(self) -> None:
        """Reject empty keys and non-positive intervals."""
        if not self.key.strip():
            msg = "target key must be non-empty"
            raise ValueError(msg)
        if self.interval <= 0:
            msg = (
                f"poll interval for {self.key} must be positive, "
                f"got {self.interval}"
            )
            raise ValueError(msg)


@dataclasses.dataclass(slots=True)
class WatchState:
    """Mutable state owned by one target's cycle."""

    target: WatchTarget
    last_snapshot: Snapshot | None = None
    failures: int = 0
    phase: WatchPhase = WatchPhase.IDLE
    last_error: str | None = None
    last_success_at: dt.datetime | None = None
    cycles_completed: int = 0
    persistent_failure_reported: bool = False

    @property
    def in_flight(self) -> bool:
        """Whether a cycle is currently running for this target."""
        return self.phase not in {WatchPhase.IDLE, WatchPhase.STOPPED}

    def commit(self, snapshot: Snapshot, *, at: dt.datetime) -> None:
        """Record ``snapshot`` as the new baseline after a completed cycle."""
        self.last_snapshot = snapshot
        self.failures = 0
        self.last_error = None
        self.last_success_at = at
        self.cycles_completed += 1
        self.persistent_failure_reported = False
        self.phase = WatchPhase.IDLE


@dataclasses.dataclass(frozen=True, slots=True)
class WatchStatus:
    """Read-only view of a target's state for status reporting."""

    target_key: str
    phase: WatchPhase
    failures: int
    has_baseline: bool
    baseline_captured_at: dt.datetime | None
    last_success_at: dt.datetime | None
    last_error: str | None
    cycles_completed: int


class WatchRegistry:
    """Map of target key to :class:`WatchState`."""

    def __init__(self, targets: cabc.Iterable[WatchTarget]) -> None:
        """Create one idle state per target, rejecting duplicate keys."""
        states: dict[str, WatchState] = {}
        for target in targets:
            if target.key in states:
                msg = f"duplicate watch target: {target.key}"
                raise ValueError(msg)
            states[target.key] = WatchState(target=target)
        self._states = types.MappingProxyType(states)

    def __getitem__(self, target_key: str) -> WatchState:
        """Return the state owned by ``target_key``."""
        return self._states[target_key]

    def __iter__(self) -> cabc.Iterator[WatchState]:
        """Iterate over states in configuration order."""
        return iter(self._states.values())

    def __len__(self) -> int:
        """Return the number of watched targets."""
        return len(self._states)

    def keys(self) -> tuple[str, ...]:
        """Return target keys in configuration order."""
        return tuple(self._states)

    def status(self) -> list[WatchStatus]:
        """Return an immutable status view of every target."""
        return [
            WatchStatus(
                target_key=state.target.key,
                phase=state.phase,
                failures=state.failures,
                has_baseline=state.last_snapshot is not None,
                baseline_captured_at=(
                    state.last_snapshot.captured_at
                    if state.last_snapshot is not None
                    else None
                ),
                last_success_at=state.last_success_at,
                last_error=state.last_error,
                cycles_completed=state.cycles_completed,
            )
            for state in self._states.values()
        ]
