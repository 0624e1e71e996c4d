"""
Query runner service: keeps the saved query cache in step with the frontend
and turns every change into subscribe/unsubscribe notifications.
"""

import logging
from typing import Iterable, Optional

from .cache import SavedQueryCache
from .config import Settings
from .diff import SavedQueryDiff, diff_saved_queries
from .errors import SavedQueryNotFound
from .frontend import FrontendClient, FrontendError
from .mailer import EmailNotifier
from .models import SavedQueryConfig, SavedQueryIdentity, SavedQueryMap, SavedQuerySpecAndConfig, Subject
from .notify import NotificationDispatcher
from .observability import Metrics
from .recipients import RecipientResolver
from .slack import SlackNotifier

logger = logging.getLogger(__name__)


class QueryRunnerService:
    """Main service coordinating the cache, the frontend and notification delivery."""

    def __init__(
        self,
        settings: Settings,
        frontend: Optional[FrontendClient] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        metrics: Optional[Metrics] = None,
    ):
        self.settings = settings
        self.metrics = metrics or Metrics()
        self.frontend = frontend or FrontendClient(
            settings.frontend_internal_url, timeout=settings.frontend_timeout_seconds
        )
        self.cache = SavedQueryCache(
            retry_delay=settings.bulk_load_retry_delay,
            quiet_attempts=settings.bulk_load_quiet_attempts,
            metrics=self.metrics,
        )
        self.slack_notifier: Optional[SlackNotifier] = None
        if dispatcher is None:
            self.slack_notifier = SlackNotifier(settings)
            dispatcher = NotificationDispatcher(
                RecipientResolver(self.frontend),
                EmailNotifier(settings),
                self.slack_notifier,
                metrics=self.metrics,
            )
        self.dispatcher = dispatcher

    async def initialize(self):
        """Open connections and block until the initial saved query list is loaded."""
        await self.frontend.initialize()
        if self.slack_notifier:
            await self.slack_notifier.initialize()
        total = await self.cache.bulk_load(self.frontend.saved_queries_list_all)
        logger.info(f"Query runner service initialized with {total} saved queries")

    async def close(self):
        """Let in-flight notifications finish, then close connections."""
        await self.dispatcher.drain(timeout=self.settings.shutdown_drain_seconds)
        if self.slack_notifier:
            await self.slack_notifier.close()
        await self.frontend.close()
        logger.info("Query runner service closed")

    async def saved_query_was_created_or_updated(
        self,
        subject: Subject,
        queries: Iterable[SavedQueryConfig],
        disable_notifications: bool = False,
    ) -> SavedQueryDiff:
        """
        Apply a subject's saved queries to the cache and notify subscribers.

        ``queries`` is the subject's full saved query configuration. Each entry
        is inserted or replaced; the before/after states are diffed so that an
        unchanged saved query produces no notifications.

        Returns:
            The changes that were applied
        """
        before: SavedQueryMap = {}
        after: SavedQueryMap = {}
        seen = set()
        for config in queries:
            value = SavedQuerySpecAndConfig(spec=SavedQueryIdentity(subject, config.key), config=config)
            previous = self.cache.apply_create_or_update(value)
            # a key repeated in one payload diffs against its state before this request
            if value.cache_key not in seen:
                seen.add(value.cache_key)
                if previous is not None:
                    before[value.cache_key] = previous
            after[value.cache_key] = value

        diff = diff_saved_queries(before, after)
        if not disable_notifications:
            self.dispatcher.dispatch_diff(diff)
        logger.info(
            "Saved query created or updated",
            extra={"subject": str(subject), "total_saved_queries": len(self.cache)},
        )
        return diff

    async def saved_query_was_deleted(
        self, identity: SavedQueryIdentity, disable_notifications: bool = False
    ) -> Optional[SavedQuerySpecAndConfig]:
        """
        Remove a saved query from the cache and notify its former subscribers.

        The frontend's stored info for the query is only deleted when no other
        saved query still uses the same query string, since that info is keyed
        by query string rather than by saved query.

        Returns:
            The removed saved query, or None if it was already gone
        """
        removed = self.cache.apply_delete(identity)
        if removed is None:
            # query to delete already doesn't exist; do nothing
            return None

        if not disable_notifications:
            self.dispatcher.dispatch_diff(diff_saved_queries({removed.cache_key: removed}, {}))

        if not self.cache.has_query_text(removed.query):
            try:
                await self.frontend.saved_queries_delete_info(removed.query)
            except FrontendError as e:
                logger.error(f"Failed to delete saved query info from the frontend: {e}")
                return removed

        logger.info(
            "Saved query deleted",
            extra={"key": identity.cache_key, "total_saved_queries": len(self.cache)},
        )
        return removed

    async def send_test_notification(self, identity: SavedQueryIdentity) -> int:
        """
        Notify every current recipient of a saved query right away.

        Raises:
            SavedQueryNotFound: if the saved query isn't cached
            RecipientResolutionError: if recipients can't be computed
            DeliveryError: if any message fails to send
        """
        query = self.cache.get(identity)
        if query is None:
            raise SavedQueryNotFound(f"no saved search found with key {identity.cache_key!r}")

        sent = await self.dispatcher.send_test_notification(query)
        logger.info("Saved query test notification sent", extra={"key": identity.cache_key, "recipients": sent})
        return sent

    async def notify_snapshot_changes(self, old: SavedQueryMap, new: SavedQueryMap) -> SavedQueryDiff:
        """Dispatch notifications for everything that differs between two full snapshots."""
        diff = diff_saved_queries(old, new)
        dispatched = self.dispatcher.dispatch_diff(diff)
        logger.info(
            f"Dispatched {dispatched} saved search notification(s): "
            f"{len(diff.created)} created, {len(diff.updated)} updated, {len(diff.deleted)} deleted"
        )
        return diff
