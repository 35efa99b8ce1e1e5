"""
Email channel dispatcher.

Renders a notification into an HTML email and posts it to the configured
transactional email relay as {to, subject, html}. Without a relay URL the
send is simulated (logged only). Relay failures are logged and reported as
DeliveryStatus.FAILED; they never propagate to the caller.
"""

from pathlib import Path
from typing import Optional
from urllib.parse import urljoin

import httpx
from jinja2 import Environment, FileSystemLoader

from backend.src.config.settings import AppSettings
from backend.src.models.notification import NotificationPriority
from backend.src.models.user import User
from backend.src.schemas.notifications import NotificationEvent
from backend.src.services.delivery import DeliveryStatus
from backend.src.services.exceptions import EmailDeliveryError
from backend.src.utils.logging_config import get_logger


logger = get_logger("dispatch")

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"
TEMPLATE_NAME = "notification_email.html.j2"

PRIORITY_COLORS = {
    NotificationPriority.LOW: "#6b7280",
    NotificationPriority.MEDIUM: "#2563eb",
    NotificationPriority.HIGH: "#d97706",
    NotificationPriority.CRITICAL: "#dc2626",
}


class EmailDispatcher:
    """
    Sends notification emails through an HTTP relay.
    """

    def __init__(self, settings: AppSettings, template_dir: Optional[Path] = None):
        self._settings = settings
        self._env = Environment(
            loader=FileSystemLoader(str(template_dir or TEMPLATE_DIR)),
            autoescape=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        headers = {"Content-Type": "application/json"}
        if settings.email_relay_api_key:
            headers["Authorization"] = f"Bearer {settings.email_relay_api_key}"
        self._client = httpx.AsyncClient(
            timeout=settings.http_timeout_seconds,
            headers=headers,
        )

    async def close(self) -> None:
        await self._client.aclose()

    def build_subject(self, event: NotificationEvent) -> str:
        prefix = self._settings.email_subject_prefix
        return f"{prefix} {event.title}" if prefix else event.title

    def action_url(self, link: Optional[str]) -> str:
        """Absolute URL for the call-to-action button."""
        base = self._settings.app_base_url.rstrip("/") + "/"
        if not link:
            return base
        return urljoin(base, link.lstrip("/"))

    def render(self, event: NotificationEvent, recipient_name: str) -> str:
        """Render the HTML body for an event."""
        template = self._env.get_template(TEMPLATE_NAME)
        return template.render(
            title=event.title,
            message=event.message,
            category=event.category.value,
            priority=event.priority.value,
            accent_color=PRIORITY_COLORS[event.priority],
            recipient_name=recipient_name or "there",
            action_url=self.action_url(event.link),
        )

    async def send(self, to: str, subject: str, html: str) -> None:
        """
        Post a rendered email to the relay.

        Raises:
            EmailDeliveryError: On transport failure or non-2xx response
        """
        payload = {
            "to": to,
            "subject": subject,
            "html": html,
        }
        if self._settings.email_from:
            payload["from"] = self._settings.email_from

        try:
            response = await self._client.post(self._settings.email_relay_url, json=payload)
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"Email relay unreachable: {e}")

        if not response.is_success:
            raise EmailDeliveryError(
                f"Email relay returned status {response.status_code}",
                status_code=response.status_code,
            )

    async def dispatch(self, user: User, event: NotificationEvent) -> DeliveryStatus:
        """
        Deliver an event to a user's email address.

        Args:
            user: Recipient (must carry an email address)
            event: Event being delivered

        Returns:
            DeliveryStatus describing the outcome
        """
        if not user.email:
            logger.debug("Recipient has no email address", extra={"user_id": user.id})
            return DeliveryStatus.SKIPPED

        subject = self.build_subject(event)
        html = self.render(event, user.name)

        if not self._settings.email_configured:
            logger.info(
                "Email relay not configured, simulated email delivery",
                extra={"user_id": user.id, "subject": subject},
            )
            return DeliveryStatus.SIMULATED

        try:
            await self.send(user.email, subject, html)
        except EmailDeliveryError as e:
            logger.warning(
                f"Email delivery failed: {e}",
                extra={"user_id": user.id, "status_code": e.status_code},
            )
            return DeliveryStatus.FAILED

        logger.info("Email sent", extra={"user_id": user.id, "subject": subject})
        return DeliveryStatus.SENT
