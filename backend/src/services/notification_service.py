"""
Notification engine: turns events into notifications and delivers them.

Provides business logic for:
- The notify() pipeline (dedup gate -> persist -> resolve prefs -> dispatch)
- Business-event builders (approvals, task updates, role changes, welcome)
- Owner-scoped notification management (mark read, delete, bulk ops)

Nothing here raises into business logic. Failures are logged and reported
through return values (None / False / 0).
"""

import asyncio
from functools import lru_cache
from typing import Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.models.notification import (
    Notification,
    NotificationCategory,
    NotificationPriority,
)
from backend.src.models.project import Project
from backend.src.models.user import User
from backend.src.schemas.notifications import NotificationEvent
from backend.src.services.dedup_gate import DeduplicationGate
from backend.src.services.delivery import DeliveryStatus
from backend.src.services.email_dispatcher import EmailDispatcher
from backend.src.services.exceptions import NotFoundError
from backend.src.services.notification_store import NotificationStore
from backend.src.services.preference_service import resolve_preferences
from backend.src.services.push_dispatcher import PushDispatcher
from backend.src.services.push_provider_client import PushProviderClient
from backend.src.utils.logging_config import get_logger
from backend.src.utils.websocket import get_connection_manager


logger = get_logger("services")


WELCOME_PUSH_MESSAGE = "You have successfully subscribed to CostPilot notifications."
ACCOUNT_CREATED_MESSAGE = "Your account has been created. Explore the dashboard to get started."


@lru_cache()
def get_email_dispatcher() -> EmailDispatcher:
    """Process-wide email dispatcher (owns one HTTP client)."""
    return EmailDispatcher(get_settings())


@lru_cache()
def get_push_provider() -> PushProviderClient:
    """Process-wide push provider client (owns one HTTP client and token cache)."""
    return PushProviderClient(get_settings())


def project_link(project: Project) -> str:
    return f"/projects/{project.guid}"


class NotificationEngine:
    """
    Orchestrates the notification pipeline for one session or request.

    Usage:
        >>> engine = NotificationEngine(db, session_user_id=user.id)
        >>> await engine.notify(NotificationEvent(
        ...     user_id=user.id, title="Budget exceeded",
        ...     message="...", category=NotificationCategory.COST_OVERRUN,
        ...     priority=NotificationPriority.HIGH,
        ... ))
    """

    def __init__(
        self,
        db: Session,
        settings: Optional[AppSettings] = None,
        email_dispatcher: Optional[EmailDispatcher] = None,
        push_dispatcher: Optional[PushDispatcher] = None,
        session_user_id: Optional[int] = None,
    ):
        """
        Initialize the engine.

        Args:
            db: SQLAlchemy database session
            settings: Application settings (defaults to get_settings())
            email_dispatcher: Email channel (defaults to the shared dispatcher)
            push_dispatcher: Push channel (defaults to one built on the shared
                provider client and connection manager)
            session_user_id: User of the calling session; local push fallbacks
                are only raised for this user
        """
        self.db = db
        self.settings = settings or get_settings()
        self.store = NotificationStore(db)
        self.gate = DeduplicationGate(self.store, self.settings.reference_tz)
        self.email = email_dispatcher or get_email_dispatcher()
        self.push = push_dispatcher or PushDispatcher(
            db,
            self.settings,
            get_push_provider(),
            get_connection_manager(),
        )
        self.session_user_id = session_user_id

    # ========================================================================
    # Pipeline
    # ========================================================================

    async def notify(
        self, event: NotificationEvent, bypass_dedup: bool = False
    ) -> Optional[Notification]:
        """
        Run one event through the full pipeline.

        1. Compute the dedup window and consult the gate
        2. Persist the notification (abort on failure, nothing is dispatched)
        3. Resolve recipient and preferences
        4. Dispatch email and push concurrently, each gated independently

        Args:
            event: Event to deliver
            bypass_dedup: Skip the same-day gate (one-shot notifications)

        Returns:
            The persisted Notification, or None if suppressed or not persisted
        """
        try:
            if not bypass_dedup:
                window_start = self.gate.window_start()
                if self.gate.should_suppress(
                    event.user_id, event.category.value, event.link, window_start
                ):
                    return None

            notification = self.store.create(event)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Failed to persist notification: {e}",
                extra={"user_id": event.user_id, "category": event.category.value},
            )
            return None

        try:
            user = self.store.get_user(event.user_id)
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to resolve notification recipient: {e}",
                extra={"user_id": event.user_id},
            )
            return notification

        if user is None or not user.is_active:
            logger.debug(
                "Recipient missing or inactive, in-app only",
                extra={"user_id": event.user_id},
            )
            return notification

        await self._dispatch(user, event)
        return notification

    async def _dispatch(self, user: User, event: NotificationEvent) -> None:
        prefs = resolve_preferences(user.notification_preferences)

        channels = []
        coroutines = []
        if prefs.allows_email(event.category, event.priority):
            channels.append("email")
            coroutines.append(self.email.dispatch(user, event))
        if prefs.allows_push(event.category, event.priority):
            channels.append("push")
            coroutines.append(
                self.push.dispatch(user.id, event, session_user_id=self.session_user_id)
            )

        if not coroutines:
            return

        results = await asyncio.gather(*coroutines, return_exceptions=True)
        for channel, result in zip(channels, results):
            if isinstance(result, Exception):
                logger.error(
                    f"Unexpected {channel} dispatch error: {result}",
                    extra={"user_id": user.id, "channel": channel},
                )
            elif result is DeliveryStatus.FAILED:
                logger.warning(
                    f"{channel} delivery failed",
                    extra={"user_id": user.id, "channel": channel},
                )

    async def notify_many(self, user_ids: Iterable[int], **fields) -> int:
        """
        Notify several recipients with the same content.

        Returns:
            Number of notifications persisted
        """
        created = 0
        for user_id in dict.fromkeys(user_ids):
            try:
                event = NotificationEvent(user_id=user_id, **fields)
            except PydanticValidationError as e:
                logger.error(
                    f"Invalid notification fields: {e}",
                    extra={"user_id": user_id, "title": fields.get("title")},
                )
                continue
            if await self.notify(event):
                created += 1
        return created

    # ========================================================================
    # Business events
    # ========================================================================

    async def notify_approval_requested(
        self, project: Project, approver_ids: Iterable[int]
    ) -> int:
        """Ask approvers to review a project awaiting approval."""
        return await self.notify_many(
            approver_ids,
            title="New Project Approval",
            message=f"{project.title} needs approval.",
            category=NotificationCategory.APPROVAL_REQUEST,
            priority=NotificationPriority.HIGH,
            link="/financials",
        )

    async def notify_project_approved(self, project: Project) -> Optional[Notification]:
        if project.team_leader_id is None:
            return None
        return await self.notify(NotificationEvent(
            user_id=project.team_leader_id,
            title="Project Approved",
            message=f'Your project "{project.title}" has been approved and is now in progress.',
            category=NotificationCategory.APPROVAL_RESULT,
            priority=NotificationPriority.HIGH,
            link=project_link(project),
        ))

    async def notify_project_rejected(
        self, project: Project, reason: str
    ) -> Optional[Notification]:
        if project.team_leader_id is None:
            return None
        return await self.notify(NotificationEvent(
            user_id=project.team_leader_id,
            title="Project Rejected",
            message=(
                f'Your project "{project.title}" has been put on hold. '
                f"Reason: {reason or 'No reason given'}"
            ),
            category=NotificationCategory.APPROVAL_RESULT,
            priority=NotificationPriority.HIGH,
            link=project_link(project),
        ))

    async def notify_task_completed(
        self, project: Project, task_name: str, completed_by: str
    ) -> Optional[Notification]:
        """Tell the team leader a task on their project was completed."""
        if project.team_leader_id is None:
            return None
        return await self.notify(NotificationEvent(
            user_id=project.team_leader_id,
            title="Task Completed",
            message=f"{task_name} completed by {completed_by}.",
            category=NotificationCategory.TASK_UPDATE,
            priority=NotificationPriority.MEDIUM,
            link=project_link(project),
        ))

    async def notify_role_changed(self, user: User, role: str) -> Optional[Notification]:
        return await self.notify(NotificationEvent(
            user_id=user.id,
            title="Your Role Has Changed",
            message=f"Your role has been updated to {role}.",
            category=NotificationCategory.SYSTEM,
            priority=NotificationPriority.HIGH,
        ))

    async def notify_account_created(self, user: User) -> Optional[Notification]:
        return await self.notify(NotificationEvent(
            user_id=user.id,
            title="Welcome to CostPilot!",
            message=ACCOUNT_CREATED_MESSAGE,
            category=NotificationCategory.SYSTEM,
            priority=NotificationPriority.MEDIUM,
        ))

    async def notify_push_welcome(self, user: User) -> Optional[Notification]:
        """
        One-shot welcome after a user's first push link.

        Bypasses the dedup gate: the caller guarantees it fires once per
        first-time link.
        """
        return await self.notify(
            NotificationEvent(
                user_id=user.id,
                title=f"Welcome, {user.name}!",
                message=WELCOME_PUSH_MESSAGE,
                category=NotificationCategory.SYSTEM,
                priority=NotificationPriority.HIGH,
                link="/",
            ),
            bypass_dedup=True,
        )

    # ========================================================================
    # Management
    # ========================================================================

    def list_notifications(self, user_id: int) -> List[Notification]:
        """All notifications for a user, newest first."""
        return self.store.list_for_user(user_id)

    def unread_count(self, user_id: int) -> int:
        return self.store.unread_count(user_id)

    def mark_read(self, guid: str, user_id: int) -> bool:
        """
        Mark a notification as read.

        Returns:
            False if the notification is unknown, foreign, or the update failed
        """
        try:
            self.store.mark_read(guid, user_id)
        except NotFoundError:
            return False
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to mark notification read: {e}", extra={"guid": guid})
            return False
        return True

    def delete_notification(self, guid: str, user_id: int) -> bool:
        """
        Delete a notification.

        Returns:
            False if the notification is unknown, foreign, or the delete failed
        """
        try:
            self.store.delete(guid, user_id)
        except NotFoundError:
            return False
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to delete notification: {e}", extra={"guid": guid})
            return False
        return True

    def mark_all_read(self, user_id: int) -> int:
        try:
            return self.store.mark_all_read(user_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to mark all read: {e}", extra={"user_id": user_id})
            return 0

    def delete_all(self, user_id: int) -> int:
        try:
            return self.store.delete_all(user_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to delete notifications: {e}", extra={"user_id": user_id})
            return 0
