"""
Slack notifications for saved search subscriptions, sent through incoming webhooks.
"""

import asyncio
import logging
from typing import Dict, Optional

import aiohttp

from .config import Settings
from .errors import DeliveryError
from .models import SavedQuerySpecAndConfig
from .recipients import Recipient
from .utils import UTM_SOURCE_SLACK, search_url

logger = logging.getLogger(__name__)


class SlackNotifier:
    """Handles Slack webhook notifications."""

    def __init__(self, settings: Settings, timeout: float = 10.0):
        self.settings = settings
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: Optional[aiohttp.ClientSession] = None

    async def initialize(self):
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    def _link(self, query: SavedQuerySpecAndConfig) -> str:
        url = search_url(self.settings.external_url, query.query, UTM_SOURCE_SLACK)
        return f'<{url}|"{query.description}">'

    def _prepare_message(self, text: str) -> Dict:
        """Prepare Slack message payload."""
        return {
            "text": text,
            "username": "saved-search-bot",
            "icon_emoji": ":mag:",
        }

    async def notify(self, recipient: Recipient, text: str) -> None:
        """
        Post ``text`` to the recipient's Slack webhook.

        Raises:
            DeliveryError: if the webhook is missing or the post fails
        """
        if not recipient.slack_webhook_url:
            raise DeliveryError(f"no Slack webhook URL configured for {recipient}")
        if self.session is None:
            await self.initialize()

        try:
            async with self.session.post(recipient.slack_webhook_url, json=self._prepare_message(text)) as response:
                if response.status != 200:
                    body = await response.text()
                    raise DeliveryError(f"posting to Slack for {recipient}: {response.status} - {body[:200]}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DeliveryError(f"posting to Slack for {recipient}: {e}") from e
        logger.info(f"Slack notification sent to {recipient}")

    async def notify_subscribed(self, recipient: Recipient, query: SavedQuerySpecAndConfig) -> None:
        await self.notify(
            recipient,
            f"Slack notifications enabled for the saved search {self._link(query)}. "
            "Notifications will be sent here when new results are available.",
        )

    async def notify_unsubscribed(self, recipient: Recipient, query: SavedQuerySpecAndConfig) -> None:
        await self.notify(
            recipient,
            f"Slack notifications for the saved search {self._link(query)} disabled.",
        )

    async def notify_test(self, recipient: Recipient, query: SavedQuerySpecAndConfig) -> None:
        await self.notify(
            recipient,
            f"It worked! This is a test notification for the saved search {self._link(query)}.",
        )
