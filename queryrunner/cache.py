"""
In-memory cache of every saved query configured on the server.

Rather than repeatedly asking the frontend for every user's and org's saved
queries, the full list is fetched once at startup and frontend instances then
tell us about created, updated and deleted saved queries as they happen.
Nothing is persisted: the cache is rebuilt from the frontend on every restart.
"""

import asyncio
import logging
import threading
from typing import Awaitable, Callable, Iterable, Optional

from .models import SavedQueryIdentity, SavedQueryMap, SavedQuerySpecAndConfig
from .observability import Metrics

logger = logging.getLogger(__name__)


class SavedQueryCache:
    """Mapping of identity key -> SavedQuerySpecAndConfig guarded by one lock.

    The lock is held only while the mapping itself is read or mutated; it is
    never held across an await or an outbound call.
    """

    def __init__(
        self,
        retry_delay: float = 5.0,
        quiet_attempts: int = 3,
        metrics: Optional[Metrics] = None,
    ):
        self.retry_delay = retry_delay
        self.quiet_attempts = quiet_attempts
        self.metrics = metrics
        self._lock = threading.Lock()
        self._queries: SavedQueryMap = {}
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    def __len__(self) -> int:
        with self._lock:
            return len(self._queries)

    async def bulk_load(
        self, fetch: Callable[[], Awaitable[Iterable[SavedQuerySpecAndConfig]]]
    ) -> int:
        """
        Block until the initial list can be fetched, then replace the cache.

        Failures are retried forever on a fixed delay. They are only logged once
        more than ``quiet_attempts`` have failed in a row, since the frontend is
        usually just not up yet when we start.

        Returns:
            Number of saved queries loaded
        """
        attempts = 0
        while True:
            if self.metrics:
                self.metrics.bulk_load_attempts.inc()
            try:
                fetched = await fetch()
            except Exception as e:
                if attempts > self.quiet_attempts:
                    logger.error(
                        "Error fetching saved queries list (trying again in %ss): %s",
                        self.retry_delay, e,
                    )
                attempts += 1
                await asyncio.sleep(self.retry_delay)
                continue

            queries = {value.cache_key: value for value in fetched}
            with self._lock:
                self._queries = queries
                self._loaded = True
            self._update_gauge(len(queries))
            logger.debug("Existing saved queries detected", extra={"total_saved_queries": len(queries)})
            return len(queries)

    def snapshot(self) -> SavedQueryMap:
        """Return a copy of the mapping; callers never see the live dict."""
        with self._lock:
            return dict(self._queries)

    def get(self, identity: SavedQueryIdentity) -> Optional[SavedQuerySpecAndConfig]:
        with self._lock:
            return self._queries.get(identity.cache_key)

    def apply_create_or_update(self, value: SavedQuerySpecAndConfig) -> Optional[SavedQuerySpecAndConfig]:
        """Insert or replace ``value``; return whatever it replaced, if anything."""
        key = value.cache_key
        with self._lock:
            previous = self._queries.get(key)
            self._queries[key] = value
            total = len(self._queries)
        self._update_gauge(total)
        return previous

    def apply_delete(self, identity: SavedQueryIdentity) -> Optional[SavedQuerySpecAndConfig]:
        """Remove ``identity``; returns the removed value or None if it was absent."""
        with self._lock:
            previous = self._queries.pop(identity.cache_key, None)
            total = len(self._queries)
        if previous is not None:
            self._update_gauge(total)
        return previous

    def has_query_text(self, query: str) -> bool:
        """Whether any cached saved query uses exactly this query string."""
        with self._lock:
            return any(value.query == query for value in self._queries.values())

    def _update_gauge(self, total: int) -> None:
        if self.metrics:
            self.metrics.saved_queries.set(total)
