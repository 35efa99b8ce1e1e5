"""
Push subscription lifecycle: linking a browser device to a user.

State machine (one instance per browser session):

    Unregistered -> SdkLoading -> (timeout -> Unavailable)
                 -> PermissionPrompted -> Denied | Granted
                 -> IdPolling -> (attempts exhausted -> TimedOut)
                 -> Linked -> Unlinked (unsubscribe / logout)

Every public operation returns a SubscribeResult; nothing raises to the
caller. The browser side (push SDK object and the native permission API) is
reached through the PushSdk and PermissionApi interfaces.
"""

import asyncio
import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.models.user import User
from backend.src.services.notification_service import NotificationEngine
from backend.src.services.exceptions import ValidationError
from backend.src.services.preference_service import PreferenceService
from backend.src.services.push_subscription_service import PushLinkService
from backend.src.utils.logging_config import get_logger


logger = get_logger("push")


DEFAULT_PLATFORM = "sendpulse"


class SubscriptionState(str, enum.Enum):
    """Lifecycle states of a browser push subscription."""
    UNREGISTERED = "unregistered"
    SDK_LOADING = "sdk_loading"
    UNAVAILABLE = "unavailable"
    PERMISSION_PROMPTED = "permission_prompted"
    DENIED = "denied"
    GRANTED = "granted"
    ID_POLLING = "id_polling"
    TIMED_OUT = "timed_out"
    LINKED = "linked"
    UNLINKED = "unlinked"


class PermissionState(str, enum.Enum):
    """Browser notification permission values."""
    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"


@dataclass
class SubscribeResult:
    """Structured outcome of a subscribe/unsubscribe attempt."""

    success: bool
    message: str
    state: SubscriptionState
    subscriber_id: Optional[str] = None


# ============================================================================
# Browser-side interfaces
# ============================================================================


class PushSdk(ABC):
    """Third-party push SDK loaded in the browser."""

    @abstractmethod
    def is_ready(self) -> bool:
        """Whether the SDK object is loaded and usable."""

    @abstractmethod
    async def init(self) -> None:
        """(Re)initialize the SDK so it picks up a fresh permission grant."""

    @abstractmethod
    async def get_subscriber_id(self) -> Optional[str]:
        """Provider-assigned subscriber id, or None while unresolved."""


class PermissionApi(ABC):
    """Native browser notification permission API."""

    @abstractmethod
    def current(self) -> PermissionState:
        """Current permission without prompting."""

    @abstractmethod
    async def request(self) -> PermissionState:
        """Prompt the user and return the resulting permission."""


# ============================================================================
# Lifecycle
# ============================================================================


class PushSubscriptionLifecycle:
    """
    Negotiates and persists a push subscription for one browser session.

    The auto-sync guard lives here and is reset by reset() on logout, so a
    later login negotiates again.
    """

    def __init__(
        self,
        db: Session,
        engine: NotificationEngine,
        sdk: PushSdk,
        permission: PermissionApi,
        settings: Optional[AppSettings] = None,
        is_online: Optional[Callable[[], bool]] = None,
    ):
        self.db = db
        self.engine = engine
        self.sdk = sdk
        self.permission = permission
        self.settings = settings or get_settings()
        self._is_online = is_online or (lambda: True)
        self._links = PushLinkService(db)
        self._preferences = PreferenceService(db)
        self._lock = asyncio.Lock()
        self.state = SubscriptionState.UNREGISTERED
        self.auto_sync_ran = False

    def _result(
        self, success: bool, message: str, subscriber_id: Optional[str] = None
    ) -> SubscribeResult:
        return SubscribeResult(success, message, self.state, subscriber_id)

    # ------------------------------------------------------------------------
    # Bounded waits
    # ------------------------------------------------------------------------

    async def wait_for_sdk(self) -> bool:
        """
        Poll for SDK readiness until the configured timeout.

        Returns:
            True if the SDK became ready in time
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.push_sdk_timeout_seconds
        while True:
            if self.sdk.is_ready():
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.settings.push_sdk_poll_interval_seconds)

    async def poll_subscriber_id(self) -> Optional[str]:
        """
        Ask the SDK for a subscriber id at a fixed interval.

        Each tick first re-checks the permission; a revocation mid-flight
        aborts with state Denied.

        Returns:
            The subscriber id, or None if denied or out of attempts
        """
        attempts = self.settings.push_id_max_attempts
        for attempt in range(1, attempts + 1):
            if self.permission.current() == PermissionState.DENIED:
                self.state = SubscriptionState.DENIED
                return None

            try:
                subscriber_id = await self.sdk.get_subscriber_id()
            except Exception as e:
                logger.debug(f"Subscriber id lookup failed: {e}", extra={"attempt": attempt})
                subscriber_id = None

            if subscriber_id:
                return subscriber_id
            if attempt < attempts:
                await asyncio.sleep(self.settings.push_id_poll_interval_seconds)

        self.state = SubscriptionState.TIMED_OUT
        return None

    # ------------------------------------------------------------------------
    # Subscribe
    # ------------------------------------------------------------------------

    async def subscribe(self, user_id: int, explicit: bool = True) -> SubscribeResult:
        """
        Run the full negotiation and link the resulting device to a user.

        Args:
            user_id: User to link the device to
            explicit: True for a user-initiated opt-in. Only explicit
                subscribes prompt from a denied state and turn pushEnabled on.

        Returns:
            SubscribeResult; never raises
        """
        if not self._is_online():
            return self._result(False, "You are offline. Please check connection.")

        async with self._lock:
            return await self._negotiate(user_id, explicit)

    async def _negotiate(self, user_id: int, explicit: bool) -> SubscribeResult:
        self.state = SubscriptionState.SDK_LOADING
        if not await self.wait_for_sdk():
            self.state = SubscriptionState.UNAVAILABLE
            logger.warning("Push SDK did not load in time", extra={"user_id": user_id})
            return self._result(False, "Push service unavailable. Please try again later.")

        current = self.permission.current()
        if current != PermissionState.GRANTED:
            if current == PermissionState.DENIED and not explicit:
                self.state = SubscriptionState.DENIED
                return self._result(False, "Notifications are blocked in browser settings.")

            self.state = SubscriptionState.PERMISSION_PROMPTED
            try:
                current = await self.permission.request()
            except Exception as e:
                logger.error(f"Permission request failed: {e}", extra={"user_id": user_id})
                self.state = SubscriptionState.UNREGISTERED
                return self._result(False, "Could not request permission.")

            if current != PermissionState.GRANTED:
                self.state = SubscriptionState.DENIED
                logger.info("Push permission not granted", extra={"user_id": user_id})
                return self._result(False, "Notifications blocked by user.")

        self.state = SubscriptionState.GRANTED
        try:
            await self.sdk.init()
        except Exception as e:
            logger.warning(f"Push SDK init failed: {e}", extra={"user_id": user_id})

        self.state = SubscriptionState.ID_POLLING
        subscriber_id = await self.poll_subscriber_id()
        if subscriber_id is None:
            if self.state == SubscriptionState.DENIED:
                return self._result(False, "Notifications blocked.")
            logger.warning("Subscriber id not resolved", extra={"user_id": user_id})
            return self._result(False, "Request timed out. Please try again.")

        return await self.link(user_id, subscriber_id, explicit=explicit)

    async def auto_sync(self, user_id: int) -> Optional[SubscribeResult]:
        """
        Non-prompting re-sync at login.

        Runs at most once per session, and only when permission was already
        granted in a prior session.

        Returns:
            SubscribeResult if a sync ran, None if skipped
        """
        if self.auto_sync_ran:
            return None
        if not self._is_online() or self.permission.current() != PermissionState.GRANTED:
            return None

        self.auto_sync_ran = True
        logger.info("Permission granted, syncing push subscription", extra={"user_id": user_id})
        return await self.subscribe(user_id, explicit=False)

    # ------------------------------------------------------------------------
    # Link / unlink
    # ------------------------------------------------------------------------

    async def link(
        self,
        user_id: int,
        subscriber_id: str,
        platform: str = DEFAULT_PLATFORM,
        explicit: bool = False,
    ) -> SubscribeResult:
        """
        Persist the device link and welcome first-time subscribers.

        The existing-link check happens before the upsert, so the welcome
        fires exactly once per user with no prior link.

        Args:
            user_id: User to link
            subscriber_id: Provider-assigned subscriber id
            platform: Provider label
            explicit: True for a user action, which also turns pushEnabled on
        """
        try:
            link, created = self._links.upsert_link(user_id, subscriber_id, platform)
        except SQLAlchemyError as e:
            self.db.rollback()
            self.state = SubscriptionState.GRANTED
            logger.error(f"Failed to save push link: {e}", extra={"user_id": user_id})
            return self._result(False, "Failed to save subscription.")
        except ValidationError as e:
            self.state = SubscriptionState.GRANTED
            logger.warning(f"Rejected push link: {e}", extra={"user_id": user_id})
            return self._result(False, "Push service returned an invalid subscriber id.")

        self.state = SubscriptionState.LINKED

        if explicit:
            self._set_push_enabled(user_id, True)

        if created:
            user = self.db.query(User).filter(User.id == user_id).first()
            if user is not None:
                await self.engine.notify_push_welcome(user)

        return self._result(True, "Notifications active and linked.", link.subscriber_id)

    async def unsubscribe(self, user_id: int, explicit: bool = True) -> SubscribeResult:
        """
        Delete the user's push link.

        Args:
            user_id: User whose link is removed
            explicit: True for a user action, which also turns pushEnabled off
        """
        try:
            self._links.remove_link(user_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to remove push link: {e}", extra={"user_id": user_id})
            return self._result(False, "Failed to remove subscription.")

        self.state = SubscriptionState.UNLINKED
        if explicit:
            self._set_push_enabled(user_id, False)
        return self._result(True, "Push notifications disabled.")

    def _set_push_enabled(self, user_id: int, enabled: bool) -> None:
        try:
            user = self.db.query(User).filter(User.id == user_id).first()
            if user is not None:
                self._preferences.set_push_enabled(user, enabled)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to update pushEnabled: {e}", extra={"user_id": user_id})

    # ------------------------------------------------------------------------
    # Session teardown / diagnostics
    # ------------------------------------------------------------------------

    def reset(self) -> None:
        """Forget session-scoped state (called on logout)."""
        self.auto_sync_ran = False
        self.state = SubscriptionState.UNREGISTERED

    def get_status(self, user_id: int) -> Dict[str, Any]:
        """Diagnostics for the settings page."""
        status = {
            "permission": self.permission.current().value,
            "sdk_loaded": self.sdk.is_ready(),
            "linked": False,
            "subscriber_id": None,
            "platform": None,
            "state": self.state.value,
        }
        try:
            link = self._links.get_link(user_id)
        except SQLAlchemyError as e:
            logger.warning(f"Push link check failed: {e}", extra={"user_id": user_id})
            link = None
        if link is not None:
            status.update(linked=True, subscriber_id=link.subscriber_id, platform=link.platform)
        return status
