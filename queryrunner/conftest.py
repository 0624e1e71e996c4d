"""Shared fakes for the query runner tests.

Nothing here talks to the network: the frontend, recipient lookups and the
email/Slack channels are replaced by recording doubles.
"""

from typing import Dict, List, Optional

import pytest

from queryrunner.config import Settings
from queryrunner.diff import SavedQueryDiff
from queryrunner.errors import DeliveryError, RecipientResolutionError
from queryrunner.models import SavedQueryConfig, SavedQueryIdentity, SavedQuerySpecAndConfig, Subject


def saved_query(key: str, query: str = "repo:foo", user_id: Optional[int] = 1, org_id: Optional[int] = None,
                **config) -> SavedQuerySpecAndConfig:
    subject = Subject(user_id=user_id) if org_id is None else Subject(org_id=org_id)
    return SavedQuerySpecAndConfig(
        spec=SavedQueryIdentity(subject, key),
        config=SavedQueryConfig(key=key, query=query, **config),
    )


class FakeFrontend:
    def __init__(self, saved_queries=None, failures: int = 0):
        self.saved_queries = list(saved_queries or [])
        self.failures = failures
        self.list_calls = 0
        self.deleted_info: List[str] = []
        self.delete_error: Optional[Exception] = None
        self.org_users: Dict[int, List[int]] = {}
        self.emails: Dict[int, str] = {}
        self.webhooks: Dict[str, str] = {}
        self.lookup_error: Optional[Exception] = None
        self.closed = False

    async def initialize(self):
        pass

    async def close(self):
        self.closed = True

    async def saved_queries_list_all(self):
        self.list_calls += 1
        if self.list_calls <= self.failures:
            raise ConnectionError("frontend not up yet")
        return list(self.saved_queries)

    async def saved_queries_delete_info(self, query):
        if self.delete_error:
            raise self.delete_error
        self.deleted_info.append(query)

    async def org_members(self, org_id):
        if self.lookup_error:
            raise self.lookup_error
        return self.org_users.get(org_id, [])

    async def user_email(self, user_id):
        if self.lookup_error:
            raise self.lookup_error
        return self.emails.get(user_id)

    async def slack_webhook_url(self, subject):
        if self.lookup_error:
            raise self.lookup_error
        return self.webhooks.get(str(subject))


class FakeResolver:
    """Returns canned recipients per saved query value."""

    def __init__(self, recipients=None, fail_for=()):
        self.recipients = recipients or {}
        self.fail_for = set(fail_for)

    async def resolve(self, value):
        if value.is_empty:
            return []
        if value.spec.key in self.fail_for:
            raise RecipientResolutionError(f"cannot resolve {value.spec.key}")
        return list(self.recipients.get(value, []))


class FakeEmailNotifier:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    async def notify_subscribe_unsubscribe(self, recipient, query, template):
        if recipient.spec in self.fail_for:
            raise DeliveryError("smtp down")
        self.sent.append((str(recipient), query.spec.key, template))


class FakeSlackNotifier:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    async def _record(self, kind, recipient, query):
        if recipient.spec in self.fail_for:
            raise DeliveryError("webhook gone")
        self.sent.append((str(recipient), query.spec.key, kind))

    async def notify_subscribed(self, recipient, query):
        await self._record("subscribed", recipient, query)

    async def notify_unsubscribed(self, recipient, query):
        await self._record("unsubscribed", recipient, query)

    async def notify_test(self, recipient, query):
        await self._record("test", recipient, query)


class RecordingDispatcher:
    """Stands in for NotificationDispatcher and records what would be sent."""

    def __init__(self):
        self.changes = []
        self.tests = []
        self.test_error: Optional[Exception] = None
        self.drained = False

    @property
    def pending(self):
        return 0

    def dispatch_diff(self, diff: SavedQueryDiff) -> int:
        changes = list(diff.changes())
        self.changes.extend(changes)
        return len(changes)

    async def drain(self, timeout=None):
        self.drained = True

    async def send_test_notification(self, query):
        if self.test_error:
            raise self.test_error
        self.tests.append(query)
        return 1


@pytest.fixture
def settings(monkeypatch):
    monkeypatch.setenv("EXTERNAL_URL", "https://search.example.com")
    monkeypatch.setenv("BULK_LOAD_RETRY_DELAY", "0")
    return Settings()


@pytest.fixture
def frontend():
    return FakeFrontend()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()
