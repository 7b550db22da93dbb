"""Dispatcher port for delivering change batches.

This module defines the port (in hexagonal architecture terms) for change
notifications. Adapters implement :class:`Dispatcher` to post digests to a
chat channel, write them to the log, and so on.

The scheduler always hands a dispatcher the complete ordered change list of
one cycle in a single call, so adapters can merge it into one message.
"""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from issues_watcher.diff import Change


@typ.runtime_checkable
class Dispatcher(typ.Protocol):
    """Protocol for delivering one cycle's changes for a target."""

    async def deliver(
        self,
        target_key: str,
        changes: cabc.Sequence[Change],
    ) -> None:
        """Deliver ``changes`` as one batch.

        Raises
        ------
        DeliveryError
            If the batch could not be delivered.

        """
        ...


@typ.runtime_checkable
class MessageSender(typ.Protocol):
    """Protocol for dispatchers that can also post free-form text."""

    async def send_message(self, text: str) -> None:
        """Post ``text`` to the configured channel."""
        ...
