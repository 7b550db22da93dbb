"""Configuration file loading and validation."""

from __future__ import annotations

from .errors import ConfigError
from .loader import (
    GITHUB_TOKEN_ENV,
    LOG_LEVEL_ENV,
    SLACK_TOKEN_ENV,
    apply_env_overrides,
    load_config,
    load_settings,
    resolve_config,
)
from .models import (
    DEFAULT_GITHUB_DATA,
    RetrySettings,
    SlackSettings,
    TargetConfig,
    TargetSettings,
    WatcherConfig,
    WatcherSettings,
)

__all__ = [
    "DEFAULT_GITHUB_DATA",
    "GITHUB_TOKEN_ENV",
    "LOG_LEVEL_ENV",
    "SLACK_TOKEN_ENV",
    "ConfigError",
    "RetrySettings",
    "SlackSettings",
    "TargetConfig",
    "TargetSettings",
    "WatcherConfig",
    "WatcherSettings",
    "apply_env_overrides",
    "load_config",
    "load_settings",
    "resolve_config",
]
