"""
Notification model for in-app notification history.

A notification row is the durable record of one delivered event. In-app
delivery is satisfied by the row itself (the UI reads it through the live
sync bridge); email and push are dispatched only after the row exists.

Rows are mutated only by mark-as-read and deleted individually or in bulk
by their owner. There is no server-side expiry.
"""

import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin


class NotificationCategory(str, enum.Enum):
    """Notification type; also the key the dedup gate compares on."""
    APPROVAL_REQUEST = "ApprovalRequest"
    APPROVAL_RESULT = "ApprovalResult"
    COST_OVERRUN = "CostOverrun"
    TASK_UPDATE = "TaskUpdate"
    DEADLINE = "Deadline"
    SYSTEM = "System"


class NotificationPriority(str, enum.Enum):
    """Ordered notification priority (Low < Medium < High < Critical)."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    def __ge__(self, other):
        if isinstance(other, NotificationPriority):
            return self.rank >= other.rank
        return NotImplemented

    def __gt__(self, other):
        if isinstance(other, NotificationPriority):
            return self.rank > other.rank
        return NotImplemented

    def __le__(self, other):
        if isinstance(other, NotificationPriority):
            return self.rank <= other.rank
        return NotImplemented

    def __lt__(self, other):
        if isinstance(other, NotificationPriority):
            return self.rank < other.rank
        return NotImplemented


_PRIORITY_RANK = {
    NotificationPriority.LOW: 0,
    NotificationPriority.MEDIUM: 1,
    NotificationPriority.HIGH: 2,
    NotificationPriority.CRITICAL: 3,
}


class Notification(Base, GuidMixin):
    """
    Notification delivered to a user.

    Attributes:
        category: NotificationCategory value (column name "type")
        priority: NotificationPriority value
        title: Short notification title (max 200 chars)
        message: Notification body (max 1000 chars)
        link: In-app route; empty string when absent so comparisons are total
        is_read: Read flag (default false)
        timestamp: Server-assigned insert time (UTC, naive)

    Relationships:
        user: Recipient User (many-to-one)
    """

    __tablename__ = "notifications"
    GUID_PREFIX = "ntf"

    id = Column(Integer, primary_key=True, autoincrement=True)

    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    category = Column("type", String(30), nullable=False)
    priority = Column(String(10), nullable=False, default=NotificationPriority.MEDIUM.value)
    title = Column(String(200), nullable=False)
    message = Column(String(1000), nullable=False)
    link = Column(String(500), nullable=False, default="")

    is_read = Column(Boolean, nullable=False, default=False)

    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    user = relationship("User", back_populates="notifications")

    # Serves the dedup lookup (user + type + link within a time range)
    __table_args__ = (
        Index("ix_notifications_dedup", "user_id", "type", "link", "timestamp"),
    )

    def to_dict(self) -> dict:
        """Serialize for the live feed and API responses."""
        return {
            "id": self.guid,
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
            "type": self.category,
            "priority": self.priority,
            "link": self.link or None,
            "is_read": self.is_read,
            "timestamp": self.timestamp.isoformat() + "Z" if self.timestamp else None,
        }

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, type='{self.category}', user_id={self.user_id})>"
