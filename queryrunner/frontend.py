"""
Client for the frontend's internal API.

The frontend is the source of truth for saved query configuration, owns the
persistent saved-query side tables and knows which users belong to which org.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from .models import SavedQuerySpecAndConfig, Subject

logger = logging.getLogger(__name__)


class FrontendError(Exception):
    """A call to the frontend internal API failed."""


class FrontendClient:
    """Thin aiohttp wrapper over the frontend's ``/.internal`` endpoints."""

    def __init__(self, base_url: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: Optional[aiohttp.ClientSession] = None

    async def initialize(self):
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def _post(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        if self.session is None:
            raise RuntimeError("Frontend client not initialized; call initialize() first")
        url = f"{self.base_url}/.internal/{path}"
        logger.debug(f"Frontend request: {path}")
        try:
            async with self.session.post(url, json=payload or {}) as response:
                if response.status != 200:
                    text = await response.text()
                    raise FrontendError(f"{path}: {response.status} - {text[:200]}")
                # empty body decodes to None
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FrontendError(f"{path}: {e}") from e

    async def saved_queries_list_all(self) -> List[SavedQuerySpecAndConfig]:
        """Fetch every saved query configured for every user and org."""
        data = await self._post("saved-queries/list-all")
        return [SavedQuerySpecAndConfig.from_wire(item) for item in data or []]

    async def saved_queries_delete_info(self, query: str) -> None:
        """Drop the persistent side-table rows for a query string."""
        await self._post("saved-queries/delete-info", {"Query": query})

    async def org_members(self, org_id: int) -> List[int]:
        data = await self._post("orgs/list-users", {"OrgID": org_id})
        return [int(user_id) for user_id in data or []]

    async def user_email(self, user_id: int) -> Optional[str]:
        return await self._post("user-emails/get-email", {"UserID": user_id})

    async def slack_webhook_url(self, subject: Subject) -> Optional[str]:
        """The Slack incoming webhook configured in a subject's settings, if any."""
        return await self._post("settings/slack-webhook", {"Subject": subject.to_wire()})
