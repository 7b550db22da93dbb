"""Typed configuration file structures.

Keys use kebab case in files (``poll-interval``) and snake case in Python.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import typing as typ

import msgspec

if typ.TYPE_CHECKING:
    from pathlib import Path

DEFAULT_GITHUB_DATA = "~/.issues-watcher"


class RetrySettings(
    msgspec.Struct, kw_only=True, rename="kebab", forbid_unknown_fields=True
):
    """Backoff settings for retryable fetch failures.

    Attributes
    ----------
    max_retries : int
        Attempts per cycle before a persistent failure is reported.
    base_delay : float
        Seconds to wait after the first failure.
    max_delay : float
        Upper bound for any single wait.
    factor : float
        Multiplier applied per additional failure.

    """

    max_retries: int = 3
    base_delay: float = 5.0
    max_delay: float = 300.0
    factor: float = 2.0


class TargetSettings(
    msgspec.Struct, kw_only=True, rename="kebab", forbid_unknown_fields=True
):
    """Per-target override of the global poll interval."""

    key: str
    poll_interval: float | None = None


class WatcherSettings(
    msgspec.Struct, kw_only=True, rename="kebab", forbid_unknown_fields=True
):
    """Top-level configuration file contents.

    Attributes
    ----------
    slack_token : str, optional
        Bot token for ``chat.postMessage``; without it digests are logged.
    slack_channel : str, optional
        Channel digests are posted to.
    github_token : str, optional
        Token for the GitHub GraphQL API.
    github_data : str
        Directory where baselines are persisted between runs; an empty
        string keeps baselines in memory only.
    repos : list[str]
        Repository slugs (``owner/name``) to watch.
    projects : list[str]
        Project board URLs to watch.
    targets : list[TargetSettings]
        Extra targets or per-target interval overrides.
    poll_interval : float
        Default seconds between cycles of one target.
    log_level : str, optional
        femtologging level name.
    retry : RetrySettings
        Backoff settings.
    closed_lookback_days : float
        How long closed issues stay in repository snapshots.
    column_field : str
        Project single-select field used as the column.
    max_digest_lines : int
        Change lines per digest before the remainder is summarised.
    shutdown_grace : float
        Seconds in-flight cycles may finish after a stop request.

    """

    slack_token: str | None = None
    slack_channel: str | None = None
    github_token: str | None = None
    github_data: str = DEFAULT_GITHUB_DATA
    repos: list[str] = msgspec.field(default_factory=list)
    projects: list[str] = msgspec.field(default_factory=list)
    targets: list[TargetSettings] = msgspec.field(default_factory=list)
    poll_interval: float = 300.0
    log_level: str | None = None
    retry: RetrySettings = msgspec.field(default_factory=RetrySettings)
    closed_lookback_days: float = 7.0
    column_field: str = "Status"
    max_digest_lines: int = 50
    shutdown_grace: float = 10.0


@dataclasses.dataclass(frozen=True, slots=True)
class TargetConfig:
    """A canonical target key with its effective poll interval."""

    key: str
    poll_interval: float


@dataclasses.dataclass(frozen=True, slots=True)
class SlackSettings:
    """Resolved Slack credentials."""

    token: str
    channel: str


@dataclasses.dataclass(frozen=True, slots=True)
class WatcherConfig:
    """Validated configuration ready for wiring the runtime."""

    github_token: str
    targets: tuple[TargetConfig, ...]
    retry: RetrySettings
    slack: SlackSettings | None = None
    data_dir: Path | None = None
    log_level: str | None = None
    closed_lookback: dt.timedelta = dt.timedelta(days=7)
    column_field: str = "Status"
    max_digest_lines: int = 50
    shutdown_grace: float = 10.0
