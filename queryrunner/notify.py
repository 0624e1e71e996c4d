"""
Fan-out of subscribe/unsubscribe notifications when saved queries change.

Change notifications are best-effort: they run as detached asyncio tasks after
the cache has already been updated, and their failures only reach the logs.
Test notifications are the exception and report failures to the caller.
"""

import asyncio
import logging
from typing import Optional, Set

from .diff import SavedQueryDiff, diff_recipients
from .errors import DeliveryError, RecipientResolutionError
from .mailer import SUBSCRIBED, UNSUBSCRIBED, EmailNotifier
from .models import SavedQuerySpecAndConfig
from .observability import Metrics
from .recipients import Recipient, RecipientResolver
from .slack import SlackNotifier

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Works out who gained or lost a subscription and tells them over email and Slack."""

    def __init__(
        self,
        resolver: RecipientResolver,
        email_notifier: EmailNotifier,
        slack_notifier: SlackNotifier,
        metrics: Optional[Metrics] = None,
    ):
        self.resolver = resolver
        self.email_notifier = email_notifier
        self.slack_notifier = slack_notifier
        self.metrics = metrics
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def notify_change(self, old: SavedQuerySpecAndConfig, new: SavedQuerySpecAndConfig) -> None:
        """
        Notify recipients removed or added by a change from ``old`` to ``new``.

        Either side may be ``EMPTY`` (creation or deletion). Recipients present
        on both sides hear nothing.

        Raises:
            RecipientResolutionError: if either side's recipients can't be resolved
        """
        old_recipients = await self.resolver.resolve(old)
        new_recipients = await self.resolver.resolve(new)

        removed, added = diff_recipients(old_recipients, new_recipients)
        logger.debug(
            "Notifying for created/updated saved search",
            extra={"removed": [str(r) for r in removed], "added": [str(r) for r in added]},
        )

        for recipient in removed:
            if recipient.email:
                await self._deliver(
                    "email", "unsubscribed", recipient,
                    self.email_notifier.notify_subscribe_unsubscribe(recipient, old, UNSUBSCRIBED),
                )
            if recipient.slack:
                await self._deliver(
                    "slack", "unsubscribed", recipient,
                    self.slack_notifier.notify_unsubscribed(recipient, old),
                )

        for recipient in added:
            if recipient.email:
                await self._deliver(
                    "email", "subscribed", recipient,
                    self.email_notifier.notify_subscribe_unsubscribe(recipient, new, SUBSCRIBED),
                )
            if recipient.slack:
                await self._deliver(
                    "slack", "subscribed", recipient,
                    self.slack_notifier.notify_subscribed(recipient, new),
                )

    async def _deliver(self, channel: str, kind: str, recipient: Recipient, send) -> None:
        """Await one delivery; a failure is logged and counted but never raised."""
        try:
            await send
        except Exception as e:
            logger.error(f"Failed to send {kind} {channel} notification to {recipient}: {e}")
            if self.metrics:
                self.metrics.notifications_failed.labels(channel=channel, kind=kind).inc()
            return
        if self.metrics:
            self.metrics.notifications_sent.labels(channel=channel, kind=kind).inc()

    def dispatch(self, old: SavedQuerySpecAndConfig, new: SavedQuerySpecAndConfig) -> asyncio.Task:
        """Schedule ``notify_change`` in the background and return without waiting.

        Must be called from a running event loop.
        """
        task = asyncio.create_task(self.notify_change(old, new))
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, old, new))
        return task

    def dispatch_diff(self, diff: SavedQueryDiff) -> int:
        count = 0
        for old, new in diff.changes():
            self.dispatch(old, new)
            count += 1
        return count

    def _finished(self, task: asyncio.Task, old: SavedQuerySpecAndConfig, new: SavedQuerySpecAndConfig) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            query = (new if not new.is_empty else old).query
            logger.error(
                f"Failed to handle created/updated/deleted saved search: {error}",
                extra={"query": query},
            )
            if self.metrics:
                self.metrics.dispatch_failures.inc()

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for dispatched notifications to finish, cancelling stragglers after ``timeout``."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"Cancelled {len(still_running)} notification(s) still running at shutdown")

    async def send_test_notification(self, query: SavedQuerySpecAndConfig) -> int:
        """
        Send a test message to every current recipient of ``query`` on each channel it has enabled.

        Unlike change notifications this waits for every delivery and stops at
        the first failure so an operator sees the problem straight away.

        Returns:
            Number of recipients notified

        Raises:
            RecipientResolutionError: if recipients can't be computed
            DeliveryError: if sending to a recipient fails
        """
        try:
            recipients = await self.resolver.resolve(query)
        except RecipientResolutionError:
            raise
        except Exception as e:
            raise RecipientResolutionError(str(e)) from e

        for recipient in recipients:
            if recipient.email:
                await self._deliver_test(
                    "email", recipient,
                    self.email_notifier.notify_subscribe_unsubscribe(recipient, query, SUBSCRIBED),
                )
            if recipient.slack:
                await self._deliver_test("slack", recipient, self.slack_notifier.notify_test(recipient, query))

        return len(recipients)

    async def _deliver_test(self, channel: str, recipient: Recipient, send) -> None:
        try:
            await send
        except Exception as e:
            if self.metrics:
                self.metrics.notifications_failed.labels(channel=channel, kind="test").inc()
            raise DeliveryError(f"error sending {channel} notifications to {recipient}: {e}") from e
        if self.metrics:
            self.metrics.notifications_sent.labels(channel=channel, kind="test").inc()
