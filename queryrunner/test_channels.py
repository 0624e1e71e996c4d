import asyncio
from unittest.mock import Mock

import pytest

from queryrunner.conftest import saved_query
from queryrunner.errors import DeliveryError
from queryrunner.mailer import SUBSCRIBED, UNSUBSCRIBED, EmailNotifier
from queryrunner.recipients import Recipient, RecipientSpec
from queryrunner.slack import SlackNotifier
from queryrunner.utils import UTM_SOURCE_SLACK, search_url


class FakeResponse:
    def __init__(self, status, body=""):
        self.status = status
        self.body = body

    async def text(self):
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, status=200, body="ok"):
        self.status = status
        self.body = body
        self.posts = []

    def post(self, url, json=None):
        self.posts.append((url, json))
        return FakeResponse(self.status, self.body)

    async def close(self):
        pass


def test_search_url_encodes_query():
    url = search_url("https://search.example.com/", "repo:foo bar", UTM_SOURCE_SLACK)
    assert url == "https://search.example.com/search?q=repo%3Afoo+bar&utm_source=saved-search-slack"


def test_email_renders_templates(settings):
    client = Mock()
    client.send.return_value = Mock(status_code=202)
    notifier = EmailNotifier(settings, sendgrid_client=client)
    recipient = Recipient(RecipientSpec(user_id=1), email=True, email_addresses=("a@example.com", "b@example.com"))
    query = saved_query("a", query="repo:foo", description="Foo <errors>")

    asyncio.run(notifier.notify_subscribe_unsubscribe(recipient, query, SUBSCRIBED))

    assert client.send.call_count == 2
    mail = client.send.call_args_list[0][0][0].get()
    assert mail["subject"] == "Subscribed to saved search: Foo <errors>"
    bodies = {c["type"]: c["value"] for c in mail["content"]}
    assert "https://search.example.com/search?q=repo%3Afoo" in bodies["text/plain"]
    assert "Foo &lt;errors&gt;" in bodies["text/html"]


def test_email_unsubscribed_subject(settings):
    notifier = EmailNotifier(settings, sendgrid_client=Mock())
    mail = notifier.build_mail("a@example.com", saved_query("a", description="Foo"), UNSUBSCRIBED).get()
    assert mail["subject"] == "Unsubscribed from saved search: Foo"
    assert "no longer receive notifications" in mail["content"][0]["value"]


def test_email_rejected_raises_delivery_error(settings):
    client = Mock()
    client.send.return_value = Mock(status_code=400, body="bad request")
    notifier = EmailNotifier(settings, sendgrid_client=client)
    recipient = Recipient(RecipientSpec(user_id=1), email=True, email_addresses=("a@example.com",))

    with pytest.raises(DeliveryError, match="400"):
        asyncio.run(notifier.notify_subscribe_unsubscribe(recipient, saved_query("a"), SUBSCRIBED))


def test_email_transport_error_raises_delivery_error(settings):
    client = Mock()
    client.send.side_effect = RuntimeError("connection reset")
    notifier = EmailNotifier(settings, sendgrid_client=client)
    recipient = Recipient(RecipientSpec(user_id=1), email=True, email_addresses=("a@example.com",))

    with pytest.raises(DeliveryError, match="connection reset"):
        asyncio.run(notifier.notify_subscribe_unsubscribe(recipient, saved_query("a"), SUBSCRIBED))


def test_slack_test_message(settings):
    notifier = SlackNotifier(settings)
    notifier.session = FakeSession()
    recipient = Recipient(RecipientSpec(user_id=1), slack=True, slack_webhook_url="https://hooks.slack.test/x")

    asyncio.run(notifier.notify_test(recipient, saved_query("a", query="repo:foo", description="Foo")))

    url, payload = notifier.session.posts[0]
    assert url == "https://hooks.slack.test/x"
    assert payload["text"].startswith("It worked! This is a test notification for the saved search <https://")
    assert 'utm_source=saved-search-slack|"Foo">' in payload["text"]


def test_slack_failure_raises_delivery_error(settings):
    notifier = SlackNotifier(settings)
    notifier.session = FakeSession(status=404, body="no_service")
    recipient = Recipient(RecipientSpec(user_id=1), slack=True, slack_webhook_url="https://hooks.slack.test/x")

    with pytest.raises(DeliveryError, match="404"):
        asyncio.run(notifier.notify_unsubscribed(recipient, saved_query("a")))


def test_slack_without_webhook_raises(settings):
    notifier = SlackNotifier(settings)
    notifier.session = FakeSession()
    with pytest.raises(DeliveryError, match="no Slack webhook"):
        asyncio.run(notifier.notify_subscribed(Recipient(RecipientSpec(user_id=1), slack=True), saved_query("a")))
