"""
Push channel dispatcher.

Delivery paths, in order:
1. No linked device: raise a local (in-browser) notification when the
   recipient is the user of the current session; otherwise nothing.
2. Linked device but no provider credentials: simulated delivery. The
   notification is raised locally for the session user and logged.
3. Linked device and credentials: token exchange plus a send targeted at the
   recipient's subscriber id only.

Failures are logged and reported as DeliveryStatus.FAILED.
"""

from typing import Any, Dict, Optional
from urllib.parse import urljoin

from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings
from backend.src.schemas.notifications import NotificationEvent
from backend.src.services.delivery import DeliveryStatus
from backend.src.services.exceptions import PushDeliveryError
from backend.src.services.push_provider_client import PushProviderClient
from backend.src.services.push_subscription_service import PushLinkService
from backend.src.utils.logging_config import get_logger
from backend.src.utils.websocket import ConnectionManager


logger = get_logger("dispatch")


def local_notification_payload(event: NotificationEvent) -> Dict[str, Any]:
    """Message sent over the user's WebSocket channel for in-browser display."""
    return {
        "type": "local_notification",
        "title": event.title,
        "body": event.message,
        "link": event.dedup_link or "/",
        "category": event.category.value,
        "priority": event.priority.value,
    }


class PushDispatcher:
    """
    Delivers notifications to a user's linked push device.
    """

    def __init__(
        self,
        db: Session,
        settings: AppSettings,
        provider: PushProviderClient,
        connection_manager: ConnectionManager,
    ):
        self.db = db
        self._settings = settings
        self._provider = provider
        self._connections = connection_manager
        self._links = PushLinkService(db)

    def _absolute_link(self, link: Optional[str]) -> str:
        base = self._settings.app_base_url.rstrip("/") + "/"
        return urljoin(base, (link or "").lstrip("/"))

    async def _show_locally(self, user_id: int, event: NotificationEvent) -> int:
        return await self._connections.send_to_user(user_id, local_notification_payload(event))

    async def dispatch(
        self,
        user_id: int,
        event: NotificationEvent,
        session_user_id: Optional[int] = None,
    ) -> DeliveryStatus:
        """
        Deliver an event to a user's push device.

        Args:
            user_id: Recipient user's internal ID
            event: Event being delivered
            session_user_id: User of the session doing the dispatch, if any.
                Local notifications are only raised for this user.

        Returns:
            DeliveryStatus describing the outcome
        """
        is_session_user = session_user_id is not None and session_user_id == user_id
        link = self._links.get_link(user_id)

        if link is None:
            if is_session_user:
                await self._show_locally(user_id, event)
                logger.debug(
                    "No linked push device, raised local notification",
                    extra={"user_id": user_id},
                )
                return DeliveryStatus.SIMULATED
            return DeliveryStatus.SKIPPED

        if not self._provider.configured:
            if is_session_user:
                await self._show_locally(user_id, event)
            logger.info(
                "Push provider not configured, simulated push delivery",
                extra={"user_id": user_id, "title": event.title},
            )
            return DeliveryStatus.SIMULATED

        try:
            await self._provider.send_to_subscriber(
                subscriber_id=link.subscriber_id,
                title=event.title,
                body=event.message,
                link=self._absolute_link(event.link),
            )
        except PushDeliveryError as e:
            logger.warning(
                f"Push delivery failed: {e}",
                extra={"user_id": user_id, "status_code": e.status_code},
            )
            return DeliveryStatus.FAILED

        logger.info("Push sent", extra={"user_id": user_id, "platform": link.platform})
        return DeliveryStatus.SENT
