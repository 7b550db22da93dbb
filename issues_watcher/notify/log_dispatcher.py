"""Dispatcher that writes digests to the log instead of a chat channel.

Used when no Slack credentials are configured, so the watcher still reports
what changed.
"""

from __future__ import annotations

import typing as typ

from issues_watcher.logging import get_logger, log_info

from .render import DEFAULT_MAX_LINES, render_digest

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from issues_watcher.diff import Change

logger = get_logger(__name__)


class LogDispatcher:
    """Render change digests and emit them at INFO level."""

    def __init__(self, *, max_lines: int = DEFAULT_MAX_LINES) -> None:
        """Initialise with the maximum number of change lines per digest."""
        self._max_lines = max_lines

    async def deliver(
        self,
        target_key: str,
        changes: cabc.Sequence[Change],
    ) -> None:
        """Log the rendered digest for ``changes``."""
        await self.send_message(
            render_digest(target_key, changes, max_lines=self._max_lines)
        )

    async def send_message(self, text: str) -> None:
        """Log ``text`` verbatim."""
        log_info(logger, "%s", text)
