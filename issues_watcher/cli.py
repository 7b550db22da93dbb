"""Command-line entry point for the issues watcher."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from issues_watcher.config import ConfigError, WatcherConfig, load_config
from issues_watcher.logging import (
    configure_logging,
    get_logger,
    log_error,
    log_info,
    log_warning,
)
from issues_watcher.notify import DeliveryError

from .runtime import build_dispatcher, build_runtime, run_watcher

logger = get_logger(__name__)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="issues-watcher",
        description="Watch GitHub issues and project boards and report changes.",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.toml"),
        help="TOML or YAML configuration file (default: config.toml)",
    )
    parser.add_argument(
        "-p",
        "--ping",
        metavar="MESSAGE",
        default=None,
        help="Send MESSAGE to the configured channel and exit",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one cycle per target and exit",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level; overrides the configuration file",
    )
    return parser


async def _ping(config: WatcherConfig, message: str) -> None:
    dispatcher = build_dispatcher(config)
    try:
        await dispatcher.send_message(message)
    finally:
        aclose = getattr(dispatcher, "aclose", None)
        if aclose is not None:
            await aclose()


async def _watch(config: WatcherConfig, *, once: bool) -> int:
    runtime = build_runtime(config)
    try:
        return await run_watcher(runtime, once=once)
    finally:
        await runtime.aclose()


def main(argv: list[str] | None = None) -> int:
    """Run the watcher, or send a single ping message.

    Parameters
    ----------
    argv : list[str] | None, optional
        Command-line arguments. ``None`` defaults to ``sys.argv``.

    Returns
    -------
    int
        Exit code: 0 on success, 1 on configuration errors, ping delivery
        failures, or (with ``--once``) failed targets.

    """
    args = _parser().parse_args(argv)

    config_path: Path = args.config
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        print(f"Invalid configuration in {config_path}:", file=sys.stderr)
        for issue in exc.issues:
            print(f"  - {issue}", file=sys.stderr)
        return 1

    requested_level = args.log_level or config.log_level
    normalized_level, invalid_level = configure_logging(requested_level)
    if invalid_level and requested_level:
        log_warning(
            logger,
            "Invalid log level %r, falling back to %s",
            requested_level,
            normalized_level,
        )

    if args.ping is not None:
        try:
            asyncio.run(_ping(config, args.ping))
        except DeliveryError as exc:
            log_error(logger, "Ping failed: %s", exc)
            return 1
        log_info(logger, "Ping sent")
        return 0

    return asyncio.run(_watch(config, once=args.once))


if __name__ == "__main__":
    raise SystemExit(main())
