"""Change notification: dispatcher port, renderer, and adapters."""

from __future__ import annotations

from .dispatcher import Dispatcher, MessageSender
from .errors import DeliveryError
from .log_dispatcher import LogDispatcher
from .render import render_change, render_digest
from .slack import SlackConfig, SlackDispatcher

__all__ = [
    "DeliveryError",
    "Dispatcher",
    "LogDispatcher",
    "MessageSender",
    "SlackConfig",
    "SlackDispatcher",
    "render_change",
    "render_digest",
]
