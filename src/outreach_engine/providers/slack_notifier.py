# slack_notifier.py
"""Slack SDK wrapper for operator notifications, plus a log-only fallback."""

import asyncio
import logging
from typing import Any, Dict, Optional

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from ..exceptions import NotificationError
from ..logging_utils import get_logger

PROVIDER_NAME = "slack"


class SlackNotifier:
    """Posts operator alerts to Slack channels.

    Retries rate-limited and transient Slack errors with exponential backoff
    and raises NotificationError once retries are exhausted.
    """

    # Maximum number of retries for Slack API calls
    MAX_RETRIES = 3

    # Base delay for exponential backoff (in seconds)
    BASE_RETRY_DELAY = 1.0

    RETRYABLE_ERRORS = (
        "rate_limited",
        "service_unavailable",
        "internal_error",
        "request_timeout",
    )

    def __init__(
        self,
        token: Optional[str] = None,
        default_channel: str = "#outreach-alerts",
        client: Optional[WebClient] = None,
        sleep=asyncio.sleep,
    ):
        """Initialize the Slack notifier.

        Args:
            token: Slack bot token (xoxb-...).
            default_channel: Channel used when notify() gets an empty channel.
            client: Pre-built WebClient, mainly for tests.
            sleep: Awaitable sleep used between retries.
        """
        self.logger = get_logger(__name__)
        if client is None:
            if not token:
                raise ValueError("Slack bot token required. Set SLACK_BOT_TOKEN.")
            client = WebClient(token=token)
        self._client = client
        self.default_channel = default_channel
        self._sleep = sleep

    async def _post(self, channel: str, text: str) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None, lambda: self._client.chat_postMessage(channel=channel, text=text)
        )
        return response.data

    async def notify(self, channel: str, message: str) -> None:
        """Post a message, retrying transient Slack failures.

        Raises:
            NotificationError: If the message could not be posted.
        """
        channel = channel or self.default_channel
        for retry_count in range(self.MAX_RETRIES + 1):
            try:
                await self._post(channel, message)
                self.logger.debug("Slack message posted", extra={"channel": channel})
                return
            except SlackApiError as e:
                error_code = e.response.get("error", "unknown_error")
                self.logger.warning(
                    f"Slack API error: {error_code}",
                    extra={"error": error_code, "retry_count": retry_count},
                )
                if error_code not in self.RETRYABLE_ERRORS or retry_count >= self.MAX_RETRIES:
                    raise NotificationError(
                        f"Slack post to {channel} failed: {error_code}",
                        provider=PROVIDER_NAME,
                    ) from e

                retry_after = int(e.response.headers.get("Retry-After", 2 ** retry_count))
                delay = max(retry_after, self.BASE_RETRY_DELAY * (2 ** retry_count))
                self.logger.info(
                    f"Retrying Slack API request after {delay}s",
                    extra={"retry_count": retry_count + 1},
                )
                await self._sleep(delay)


class LoggingNotifier:
    """Notifier used when Slack is not configured; writes alerts to the log."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or get_logger(__name__)

    async def notify(self, channel: str, message: str) -> None:
        self.logger.warning("[%s] %s", channel or "alerts", message)
