"""Slack implementation of the dispatcher port.

Posts one digest message per change batch via ``chat.postMessage``.
"""

from __future__ import annotations

import dataclasses
import json
import typing as typ

import httpx

from issues_watcher.config.errors import ConfigError

from .errors import DeliveryError
from .render import DEFAULT_MAX_LINES, render_digest

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from issues_watcher.diff import Change

_HTTP_ERROR_STATUS_THRESHOLD = 400
_HTTP_RATE_LIMITED = 429


def _get_retry_after(response: httpx.Response) -> int | None:
    """Extract Retry-After header value if present and numeric."""
    retry_after = response.headers.get("Retry-After")
    if retry_after and retry_after.isdigit():
        return int(retry_after)
    return None


@dataclasses.dataclass(frozen=True, slots=True)
class SlackConfig:
    """Configuration for the Slack Web API client."""

    token: str
    channel: str
    endpoint: str = "https://slack.com/api/chat.postMessage"
    timeout_s: float = 20.0
    user_agent: str = "issues-watcher/0.1"
    max_lines: int = DEFAULT_MAX_LINES


class SlackDispatcher:
    """Deliver change digests to a Slack channel.

    Parameters
    ----------
    config
        Slack token, channel, and endpoint settings.
    http_client
        Optional ``httpx.AsyncClient`` for testing. If not provided, the
        instance creates and owns its own client.

    """

    def __init__(
        self,
        config: SlackConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the dispatcher with configuration."""
        if not config.token.strip():
            raise ConfigError.empty("slack-token")
        if not config.channel.strip():
            raise ConfigError.empty("slack-channel")

        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=config.timeout_s,
            headers={
                "Authorization": f"Bearer {config.token}",
                "User-Agent": config.user_agent,
                "Content-Type": "application/json; charset=utf-8",
            },
        )

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def deliver(
        self,
        target_key: str,
        changes: cabc.Sequence[Change],
    ) -> None:
        """Post the rendered digest for ``changes`` as one message."""
        text = render_digest(target_key, changes, max_lines=self._config.max_lines)
        await self.send_message(text)

    async def send_message(self, text: str) -> None:
        """Post ``text`` to the configured channel.

        Raises
        ------
        DeliveryError
            If the request fails or Slack reports an error.

        """
        payload = {"channel": self._config.channel, "text": text, "mrkdwn": True}
        try:
            response = await self._client.post(self._config.endpoint, json=payload)
        except httpx.TimeoutException as exc:
            raise DeliveryError.timeout() from exc
        except httpx.RequestError as exc:
            raise DeliveryError.network_error(str(exc)) from exc

        if response.status_code == _HTTP_RATE_LIMITED:
            raise DeliveryError.rate_limited(_get_retry_after(response))
        if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
            raise DeliveryError.http_error(response.status_code)

        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise DeliveryError.invalid_response(response.text[:100]) from exc
        if not isinstance(data, dict):
            raise DeliveryError.invalid_response("expected a JSON object")
        if not data.get("ok"):
            raise DeliveryError.api_error(str(data.get("error", "unknown_error")))
