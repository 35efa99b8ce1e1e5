"""
Notification store adapter.

The only component that reads or writes notification rows. Everything else
(the engine, the dedup gate, the live sync bridge, the API) goes through it.

Ownership: every read/update/delete by GUID is scoped to the owning user, so
a foreign GUID behaves exactly like an unknown one.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from backend.src.models.notification import Notification
from backend.src.models.user import User
from backend.src.schemas.notifications import NotificationEvent
from backend.src.services.exceptions import NotFoundError
from backend.src.utils.logging_config import get_logger


logger = get_logger("services")


class NotificationStore:
    """
    CRUD over notification rows plus the recipient lookup the engine needs.
    """

    def __init__(self, db: Session):
        self.db = db

    # ========================================================================
    # Create
    # ========================================================================

    def create(self, event: NotificationEvent) -> Notification:
        """
        Persist a notification for an event.

        Args:
            event: Validated notification event

        Returns:
            Created Notification (timestamp assigned on insert)

        Raises:
            SQLAlchemyError: If the insert or commit fails (session is rolled back)
        """
        notification = Notification(
            user_id=event.user_id,
            category=event.category.value,
            priority=event.priority.value,
            title=event.title,
            message=event.message,
            link=event.dedup_link,
            is_read=False,
        )
        self.db.add(notification)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(notification)

        logger.info(
            "Created notification",
            extra={
                "guid": notification.guid,
                "category": notification.category,
                "user_id": notification.user_id,
            },
        )
        return notification

    # ========================================================================
    # Read
    # ========================================================================

    def count_since(
        self, user_id: int, category: str, link: str, window_start: datetime
    ) -> int:
        """
        Count notifications matching (user, category, link) at or after window_start.

        Args:
            user_id: Recipient user's internal ID
            category: Category value
            link: Link as stored (empty string when absent)
            window_start: Inclusive lower bound (naive UTC)
        """
        return (
            self.db.query(func.count(Notification.id))
            .filter(
                Notification.user_id == user_id,
                Notification.category == category,
                Notification.link == link,
                Notification.timestamp >= window_start,
            )
            .scalar()
        )

    def get_by_guid(self, guid: str, user_id: int) -> Notification:
        """
        Get a notification owned by user_id.

        Raises:
            NotFoundError: If the GUID is malformed, unknown or owned by someone else
        """
        try:
            uuid_value = Notification.parse_guid(guid)
        except ValueError:
            raise NotFoundError("Notification", guid)

        notification = (
            self.db.query(Notification)
            .filter(
                Notification.uuid == uuid_value,
                Notification.user_id == user_id,
            )
            .first()
        )
        if not notification:
            raise NotFoundError("Notification", guid)
        return notification

    def list_for_user(self, user_id: int) -> List[Notification]:
        """
        All notifications for a user, newest first.

        Filtered on user only and sorted in-process, matching what the hosted
        store can serve without a composite (user, timestamp) index.
        """
        rows = self.db.query(Notification).filter(Notification.user_id == user_id).all()
        return sorted(rows, key=lambda n: (n.timestamp, n.id), reverse=True)

    def unread_count(self, user_id: int) -> int:
        return (
            self.db.query(func.count(Notification.id))
            .filter(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
            .scalar()
        )

    def get_user(self, user_id: int) -> Optional[User]:
        """Recipient lookup; None when the user no longer exists."""
        return self.db.query(User).filter(User.id == user_id).first()

    # ========================================================================
    # Update / delete
    # ========================================================================

    def mark_read(self, guid: str, user_id: int) -> Notification:
        """
        Mark a notification as read (idempotent).

        Raises:
            NotFoundError: If not found or owned by another user
        """
        notification = self.get_by_guid(guid, user_id)
        if not notification.is_read:
            notification.is_read = True
            self.db.commit()
            self.db.refresh(notification)
        return notification

    def mark_all_read(self, user_id: int) -> int:
        """
        Mark every unread notification of a user as read.

        Rows are updated through the ORM (not a bulk UPDATE) so the change
        stream sees them.

        Returns:
            Number of notifications that changed
        """
        unread = (
            self.db.query(Notification)
            .filter(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
            .all()
        )
        for notification in unread:
            notification.is_read = True
        if unread:
            self.db.commit()
        return len(unread)

    def delete(self, guid: str, user_id: int) -> None:
        """
        Delete a single notification.

        Raises:
            NotFoundError: If not found or owned by another user
        """
        notification = self.get_by_guid(guid, user_id)
        self.db.delete(notification)
        self.db.commit()
        logger.info(
            "Deleted notification",
            extra={"guid": guid, "user_id": user_id},
        )

    def delete_all(self, user_id: int) -> int:
        """
        Delete all notifications of a user.

        Returns:
            Number of notifications deleted
        """
        rows = self.db.query(Notification).filter(Notification.user_id == user_id).all()
        for notification in rows:
            self.db.delete(notification)
        if rows:
            self.db.commit()
            logger.info(
                f"Deleted {len(rows)} notifications",
                extra={"user_id": user_id},
            )
        return len(rows)
