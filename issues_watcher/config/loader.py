"""Load and validate watcher configuration files.

TOML files are decoded with msgspec directly; YAML files go through a YAML
1.2 safe loader first. Semantic checks collect every problem before raising
a single :class:`ConfigError`.
"""

from __future__ import annotations

import datetime as dt
import os
import typing as typ
from pathlib import Path

import msgspec
import msgspec.structs
import msgspec.toml
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from issues_watcher.github.targets import parse_target

from .errors import ConfigError
from .models import SlackSettings, TargetConfig, WatcherConfig, WatcherSettings

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .models import RetrySettings

YAML_VERSION = (1, 2)
GITHUB_TOKEN_ENV = "ISSUES_WATCHER_GITHUB_TOKEN"
SLACK_TOKEN_ENV = "ISSUES_WATCHER_SLACK_TOKEN"
LOG_LEVEL_ENV = "ISSUES_WATCHER_LOG_LEVEL"

_YAML_SUFFIXES = frozenset({".yaml", ".yml"})


def load_config(
    path: Path | str, *, env: cabc.Mapping[str, str] | None = None
) -> WatcherConfig:
    """Load, apply environment overrides to, and validate a configuration file.

    Parameters
    ----------
    path
        TOML or YAML file, chosen by extension.
    env
        Environment mapping; defaults to ``os.environ``.

    Raises
    ------
    ConfigError
        If the file cannot be read or parsed, or any setting is invalid.

    """
    settings = load_settings(path)
    settings = apply_env_overrides(settings, os.environ if env is None else env)
    return resolve_config(settings)


def load_settings(path: Path | str) -> WatcherSettings:
    """Parse a configuration file into :class:`WatcherSettings`."""
    path_obj = Path(path)
    if path_obj.suffix.lower() in _YAML_SUFFIXES:
        return _load_yaml(path_obj)
    return _load_toml(path_obj)


def _load_toml(path: Path) -> WatcherSettings:
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise ConfigError.invalid(str(path), f"failed to read: {exc}") from exc
    try:
        return msgspec.toml.decode(raw, type=WatcherSettings)
    except msgspec.ValidationError as exc:
        raise ConfigError.invalid(
            str(path), f"schema validation failed: {exc}"
        ) from exc
    except msgspec.DecodeError as exc:
        raise ConfigError.invalid(str(path), f"failed to parse TOML: {exc}") from exc


def _load_yaml(path: Path) -> WatcherSettings:
    try:
        loaded = _yaml().load(path.read_text(encoding="utf-8"))
    except (OSError, YAMLError) as exc:
        raise ConfigError.invalid(str(path), f"failed to parse YAML: {exc}") from exc

    if loaded is None:
        raise ConfigError.empty(f"configuration file {path}")

    try:
        return msgspec.convert(loaded, type=WatcherSettings)
    except msgspec.ValidationError as exc:
        raise ConfigError.invalid(
            str(path), f"schema validation failed: {exc}"
        ) from exc


def _yaml() -> YAML:
    yaml = YAML(typ="safe")
    yaml.version = YAML_VERSION
    yaml.allow_duplicate_keys = False
    return yaml


def apply_env_overrides(
    settings: WatcherSettings, env: cabc.Mapping[str, str]
) -> WatcherSettings:
    """Return ``settings`` with tokens and log level taken from ``env``."""
    overrides: dict[str, str] = {}
    for field, name in (
        ("github_token", GITHUB_TOKEN_ENV),
        ("slack_token", SLACK_TOKEN_ENV),
        ("log_level", LOG_LEVEL_ENV),
    ):
        value = env.get(name, "").strip()
        if value:
            overrides[field] = value
    if not overrides:
        return settings
    return msgspec.structs.replace(settings, **overrides)


def resolve_config(settings: WatcherSettings) -> WatcherConfig:
    """Validate ``settings`` and resolve them into a :class:`WatcherConfig`."""
    issues: list[str] = []

    github_token = (settings.github_token or "").strip()
    if not github_token:
        issues.append(f"github-token (or {GITHUB_TOKEN_ENV}) is required")

    slack = _resolve_slack(settings, issues)
    _validate_numbers(settings, issues)
    targets = _resolve_targets(settings, issues)

    if issues:
        raise ConfigError(issues)

    return WatcherConfig(
        github_token=github_token,
        targets=targets,
        retry=settings.retry,
        slack=slack,
        data_dir=(
            Path(settings.github_data.strip()).expanduser()
            if settings.github_data.strip()
            else None
        ),
        log_level=settings.log_level,
        closed_lookback=dt.timedelta(days=settings.closed_lookback_days),
        column_field=settings.column_field.strip(),
        max_digest_lines=settings.max_digest_lines,
        shutdown_grace=settings.shutdown_grace,
    )


def _resolve_slack(
    settings: WatcherSettings, issues: list[str]
) -> SlackSettings | None:
    token = (settings.slack_token or "").strip()
    if not token:
        return None
    channel = (settings.slack_channel or "").strip()
    if not channel:
        issues.append("slack-channel is required when slack-token is set")
        return None
    return SlackSettings(token=token, channel=channel)


def _validate_retry(retry: RetrySettings, issues: list[str]) -> None:
    if retry.max_retries < 1:
        issues.append(f"retry.max-retries must be >= 1, got {retry.max_retries}")
    if retry.base_delay < 0:
        issues.append(f"retry.base-delay must be >= 0, got {retry.base_delay}")
    if retry.max_delay < 0:
        issues.append(f"retry.max-delay must be >= 0, got {retry.max_delay}")
    if retry.factor < 1:
        issues.append(f"retry.factor must be >= 1, got {retry.factor}")


def _validate_numbers(settings: WatcherSettings, issues: list[str]) -> None:
    if settings.poll_interval <= 0:
        issues.append(f"poll-interval must be positive, got {settings.poll_interval}")
    _validate_retry(settings.retry, issues)
    if settings.closed_lookback_days < 0:
        issues.append(
            "closed-lookback-days must be >= 0, "
            f"got {settings.closed_lookback_days}"
        )
    if settings.max_digest_lines < 1:
        issues.append(
            f"max-digest-lines must be >= 1, got {settings.max_digest_lines}"
        )
    if settings.shutdown_grace < 0:
        issues.append(f"shutdown-grace must be >= 0, got {settings.shutdown_grace}")
    if not settings.column_field.strip():
        issues.append("column-field must be non-empty")


def _canonical_key(raw: str, field: str, issues: list[str]) -> str | None:
    if not raw.strip():
        issues.append(f"{field}: target key must be non-empty")
        return None
    try:
        return parse_target(raw).key
    except ValueError as exc:
        issues.append(f"{field}: {exc}")
        return None


def _resolve_targets(
    settings: WatcherSettings, issues: list[str]
) -> tuple[TargetConfig, ...]:
    """Merge ``repos``, ``projects`` and ``targets`` into canonical targets.

    A ``[[targets]]`` entry naming a target already listed in ``repos`` or
    ``projects`` overrides its poll interval; otherwise it adds the target.
    """
    intervals: dict[str, float] = {}

    for field, raw_keys in (("repos", settings.repos), ("projects", settings.projects)):
        for raw in raw_keys:
            key = _canonical_key(raw, field, issues)
            if key is None:
                continue
            if key in intervals:
                issues.append(f"{field}: duplicate target {key}")
                continue
            intervals[key] = settings.poll_interval

    overridden: set[str] = set()
    for entry in settings.targets:
        key = _canonical_key(entry.key, "targets", issues)
        if key is None:
            continue
        if key in overridden:
            issues.append(f"targets: duplicate target {key}")
            continue
        overridden.add(key)
        interval = (
            settings.poll_interval
            if entry.poll_interval is None
            else entry.poll_interval
        )
        if interval <= 0:
            issues.append(
                f"targets: poll-interval for {key} must be positive, got {interval}"
            )
            continue
        intervals[key] = interval

    if not intervals and not issues:
        issues.append("at least one target (repos, projects or targets) is required")

    return tuple(
        TargetConfig(key=key, poll_interval=interval)
        for key, interval in intervals.items()
    )
