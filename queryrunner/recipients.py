"""
Resolution of who should be notified about a saved query.

A user's saved query notifies that user; an org's saved query notifies every
member of the org by email and the org's Slack channel.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from .errors import RecipientResolutionError
from .frontend import FrontendClient, FrontendError
from .models import SavedQuerySpecAndConfig, Subject

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecipientSpec:
    """Identifies a recipient: exactly one of a user or an org."""
    user_id: Optional[int] = None
    org_id: Optional[int] = None

    def __str__(self) -> str:
        if self.user_id is not None:
            return f"user {self.user_id}"
        return f"org {self.org_id}"

    @classmethod
    def for_subject(cls, subject: Subject) -> "RecipientSpec":
        if subject.user_id is not None:
            return cls(user_id=subject.user_id)
        if subject.org_id is not None:
            return cls(org_id=subject.org_id)
        raise RecipientResolutionError("saved searches owned by the site have no recipients")

    @property
    def subject(self) -> Subject:
        return Subject(user_id=self.user_id, org_id=self.org_id)


@dataclass(frozen=True)
class Recipient:
    """
    A resolved notification target.

    Two recipients are equal when they have the same spec; which channels are
    enabled and where they deliver to are not part of a recipient's identity.
    """
    spec: RecipientSpec
    email: bool = field(default=False, compare=False)
    slack: bool = field(default=False, compare=False)
    email_addresses: Tuple[str, ...] = field(default=(), compare=False)
    slack_webhook_url: Optional[str] = field(default=None, compare=False)

    def __str__(self) -> str:
        return str(self.spec)


class RecipientResolver:
    """Looks up recipients for a saved query through the frontend."""

    def __init__(self, frontend: FrontendClient):
        self.frontend = frontend

    async def resolve(self, value: SavedQuerySpecAndConfig) -> List[Recipient]:
        """
        Resolve the recipients subscribed to a saved query.

        Args:
            value: Saved query to resolve; ``EMPTY`` has no recipients

        Returns:
            Recipients with merged channel flags, one per spec

        Raises:
            RecipientResolutionError: if the frontend lookups fail
        """
        if value.is_empty or value.config is None:
            return []
        config = value.config
        if not config.notify and not config.notify_slack:
            return []

        spec = RecipientSpec.for_subject(value.spec.subject)
        try:
            email_addresses: Tuple[str, ...] = ()
            slack_webhook_url = None
            if config.notify:
                email_addresses = await self._email_addresses(spec)
            if config.notify_slack:
                slack_webhook_url = await self.frontend.slack_webhook_url(spec.subject)
        except FrontendError as e:
            raise RecipientResolutionError(f"resolving recipients for {spec}: {e}") from e

        merged: Dict[RecipientSpec, Recipient] = {}
        if config.notify:
            _add(merged, Recipient(spec=spec, email=True, email_addresses=email_addresses))
        if config.notify_slack:
            if slack_webhook_url:
                _add(merged, Recipient(spec=spec, slack=True, slack_webhook_url=slack_webhook_url))
            else:
                logger.warning(f"Slack notifications enabled for {spec} but no webhook URL is configured")
        return list(merged.values())

    async def _email_addresses(self, spec: RecipientSpec) -> Tuple[str, ...]:
        if spec.user_id is not None:
            user_ids = [spec.user_id]
        else:
            user_ids = await self.frontend.org_members(spec.org_id)

        addresses = []
        for user_id in user_ids:
            address = await self.frontend.user_email(user_id)
            if address:
                addresses.append(address)
            else:
                logger.debug(f"User {user_id} has no verified email address")
        return tuple(addresses)


def _add(merged: Dict[RecipientSpec, Recipient], recipient: Recipient) -> None:
    """Add a recipient, merging channel flags with an existing entry for the same spec."""
    existing = merged.get(recipient.spec)
    if existing is None:
        merged[recipient.spec] = recipient
        return
    merged[recipient.spec] = replace(
        existing,
        email=existing.email or recipient.email,
        slack=existing.slack or recipient.slack,
        email_addresses=existing.email_addresses or recipient.email_addresses,
        slack_webhook_url=existing.slack_webhook_url or recipient.slack_webhook_url,
    )
