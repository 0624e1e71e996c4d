"""
Email notifications for saved search subscriptions, sent through SendGrid.
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Email, Mail, To

from .config import Settings
from .errors import DeliveryError
from .models import SavedQuerySpecAndConfig
from .recipients import Recipient
from .utils import UTM_SOURCE_EMAIL, search_url

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"

SUBSCRIBED = "notify_subscribed"
UNSUBSCRIBED = "notify_unsubscribed"

SUBJECTS = {
    SUBSCRIBED: "Subscribed to saved search: {description}",
    UNSUBSCRIBED: "Unsubscribed from saved search: {description}",
}


class EmailNotifier:
    """Handles email notifications via SendGrid."""

    def __init__(self, settings: Settings, sendgrid_client: Optional[SendGridAPIClient] = None):
        self.settings = settings
        self.sendgrid_client = sendgrid_client or SendGridAPIClient(api_key=settings.sendgrid_api_key)

        self.jinja_env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=select_autoescape(['html', 'xml'])
        )

    def _context(self, query: SavedQuerySpecAndConfig) -> Dict[str, str]:
        return {
            'description': query.description,
            'query': query.query,
            'search_url': search_url(self.settings.external_url, query.query, UTM_SOURCE_EMAIL),
        }

    def build_mail(self, address: str, query: SavedQuerySpecAndConfig, template: str) -> Mail:
        """Render ``template`` (html + txt) for ``query`` into a SendGrid message."""
        context = self._context(query)
        html_content = self.jinja_env.get_template(f"{template}.html").render(**context)
        text_content = self.jinja_env.get_template(f"{template}.txt").render(**context)

        return Mail(
            from_email=Email(self.settings.email_from, self.settings.email_from_name),
            to_emails=To(address),
            subject=SUBJECTS[template].format(**context),
            html_content=html_content,
            plain_text_content=text_content
        )

    async def notify_subscribe_unsubscribe(
        self, recipient: Recipient, query: SavedQuerySpecAndConfig, template: str
    ) -> None:
        """
        Email every address of ``recipient`` about a (un)subscription.

        Raises:
            DeliveryError: if SendGrid rejects or fails any message
        """
        if not recipient.email_addresses:
            logger.info(f"No email addresses for {recipient}; nothing to send")
            return

        for address in recipient.email_addresses:
            mail = self.build_mail(address, query, template)
            try:
                response = await asyncio.to_thread(self.sendgrid_client.send, mail)
            except Exception as e:
                raise DeliveryError(f"sending email to {address}: {e}") from e

            if response.status_code != 202:
                raise DeliveryError(
                    f"sending email to {address}: {response.status_code} - {response.body}"
                )
            logger.info(f"Sent {template} email for saved search {query.description!r} to {recipient}")
