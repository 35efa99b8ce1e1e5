"""
Session lifecycle for signed-in users.

A UserSession owns everything scoped to one signed-in user: the live sync
bridge and its change-stream subscriptions, the push subscription lifecycle
(with its once-per-session auto-sync guard), and the background tasks
started at sign-in (health scan, push re-sync). Sign-out releases all of it
so nothing survives a user switch.

The SessionManager maps user ids to sessions, driven by the auth provider's
sign-in/sign-out events.
"""

import asyncio
from typing import Any, Callable, Coroutine, Dict, Mapping, Optional, Set

from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.db.change_stream import ChangeStream, get_change_stream
from backend.src.db.database import SessionLocal
from backend.src.models.notification import Notification
from backend.src.schemas.notifications import NotificationEvent
from backend.src.services.health_scan_service import HealthScanService, HealthScanSummary
from backend.src.services.live_sync_service import LiveSyncBridge, Snapshot
from backend.src.services.notification_service import NotificationEngine
from backend.src.services.push_client_bridge import ClientPushBridge
from backend.src.services.push_lifecycle import (
    PermissionApi,
    PermissionState,
    PushSdk,
    PushSubscriptionLifecycle,
    SubscribeResult,
)
from backend.src.utils.logging_config import get_logger
from backend.src.utils.websocket import ConnectionManager, get_connection_manager


logger = get_logger("services")


class UserSession:
    """
    Application-facing facade for one signed-in user.

    Usage:
        >>> session = await manager.sign_in(user.id)
        >>> await session.notify(event)
        >>> session.notifications     # live, newest first
        >>> await manager.sign_out(user.id)
    """

    def __init__(
        self,
        user_id: int,
        session_factory: Callable[[], Session] = SessionLocal,
        settings: Optional[AppSettings] = None,
        change_stream: Optional[ChangeStream] = None,
        connection_manager: Optional[ConnectionManager] = None,
        sdk: Optional[PushSdk] = None,
        permission: Optional[PermissionApi] = None,
        engine: Optional[NotificationEngine] = None,
    ):
        """
        Build the session's components.

        Args:
            user_id: Signed-in user's internal ID
            session_factory: Factory for database sessions
            settings: Application settings
            change_stream: Change stream to subscribe to
            connection_manager: WebSocket manager for the user's channel
            sdk: Push SDK (defaults to the WebSocket-reported client state)
            permission: Permission API (defaults to the same client state)
            engine: Notification engine (built on the session's db otherwise)
        """
        self.user_id = user_id
        self.settings = settings or get_settings()
        self.db = session_factory()
        self.connections = connection_manager or get_connection_manager()

        self.engine = engine or NotificationEngine(
            self.db, self.settings, session_user_id=user_id
        )
        self.health = HealthScanService(self.db, self.engine)
        self.push_client = ClientPushBridge(user_id, self.connections)
        self.push = PushSubscriptionLifecycle(
            self.db,
            self.engine,
            sdk or self.push_client,
            permission or self.push_client,
            settings=self.settings,
            is_online=self.push_client.is_online,
        )
        self.live_sync = LiveSyncBridge(
            user_id,
            session_factory,
            change_stream or get_change_stream(),
            self.connections,
        )
        self._tasks: Set[asyncio.Task] = set()
        self.active = False

    # ------------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------------

    async def start(self, run_health_scan: bool = True) -> None:
        """Start live sync and the sign-in background work."""
        await self.live_sync.start()
        self.active = True
        if run_health_scan:
            self.spawn(self.run_health_scan())
        self.spawn(self.push.auto_sync(self.user_id))

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run a coroutine as a task owned (and cancelled) by this session."""
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Session background task failed: {error}",
                extra={"user_id": self.user_id},
            )

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def close(self, unlink_push: bool = False) -> None:
        """
        Tear the session down.

        Args:
            unlink_push: Also delete the user's push link
        """
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        self.live_sync.stop()

        if unlink_push:
            await self.push.unsubscribe(self.user_id, explicit=False)
        self.push.reset()

        await self.connections.close_all_for_user(self.user_id)
        self.db.close()
        self.active = False

    # ------------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------------

    @property
    def notifications(self) -> Snapshot:
        """Live notification feed, newest first."""
        return self.live_sync.notifications

    async def notify(self, event: NotificationEvent) -> Optional[Notification]:
        return await self.engine.notify(event)

    def mark_read(self, guid: str) -> bool:
        return self.engine.mark_read(guid, self.user_id)

    def delete_notification(self, guid: str) -> bool:
        return self.engine.delete_notification(guid, self.user_id)

    def mark_all_read(self) -> int:
        return self.engine.mark_all_read(self.user_id)

    def delete_all(self) -> int:
        return self.engine.delete_all(self.user_id)

    async def run_health_scan(self) -> HealthScanSummary:
        return await self.health.run()

    # ------------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------------

    async def subscribe_to_push(self) -> SubscribeResult:
        return await self.push.subscribe(self.user_id, explicit=True)

    async def unsubscribe_from_push(self) -> SubscribeResult:
        return await self.push.unsubscribe(self.user_id, explicit=True)

    def report_push_state(self, data: Mapping[str, Any]) -> None:
        """
        Apply a browser push_state report.

        A report showing permission already granted triggers the
        once-per-session auto-sync if it has not run yet.
        """
        self.push_client.report(data)
        if (
            self.active
            and not self.push.auto_sync_ran
            and self.push.permission.current() == PermissionState.GRANTED
        ):
            self.spawn(self.push.auto_sync(self.user_id))

    def push_status(self) -> Dict[str, Any]:
        return self.push.get_status(self.user_id)


class SessionManager:
    """
    Tracks the active UserSession of each signed-in user.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        settings: Optional[AppSettings] = None,
        session_class: Callable[..., UserSession] = UserSession,
    ):
        self._session_factory = session_factory
        self._settings = settings
        self._session_class = session_class
        self._sessions: Dict[int, UserSession] = {}

    def get(self, user_id: int) -> Optional[UserSession]:
        return self._sessions.get(user_id)

    @property
    def active_user_ids(self) -> Set[int]:
        return set(self._sessions)

    async def sign_in(self, user_id: int, run_health_scan: bool = True) -> UserSession:
        """
        Start (or return the existing) session for a user.
        """
        session = self._sessions.get(user_id)
        if session is not None:
            return session

        session = self._session_class(
            user_id,
            session_factory=self._session_factory,
            settings=self._settings,
        )
        self._sessions[user_id] = session
        await session.start(run_health_scan=run_health_scan)
        logger.info("Session started", extra={"user_id": user_id})
        return session

    async def sign_out(self, user_id: int) -> bool:
        """
        End a user's session.

        Returns:
            True if a session was active
        """
        session = self._sessions.pop(user_id, None)
        if session is None:
            return False

        settings = session.settings
        await session.close(unlink_push=settings.unlink_push_on_logout)
        logger.info("Session ended", extra={"user_id": user_id})
        return True

    async def sign_out_all(self) -> None:
        for user_id in list(self._sessions):
            await self.sign_out(user_id)


# Singleton instance
_session_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """Get the singleton SessionManager instance."""
    global _session_manager
    if _session_manager is None:
        _session_manager = SessionManager()
    return _session_manager
