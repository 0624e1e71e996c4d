"""Errors raised while resolving recipients and delivering notifications."""


class SavedQueryNotFound(LookupError):
    """No saved query is cached under the requested identity."""


class TestNotificationError(Exception):
    """Base for errors surfaced to an operator sending a test notification."""
    __test__ = False


class RecipientResolutionError(TestNotificationError):
    """Recipients could not be computed, usually a configuration problem."""


class DeliveryError(TestNotificationError):
    """An email or Slack message could not be handed to its transport."""
