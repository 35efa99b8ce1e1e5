"""
User model.

Users are the recipients of notifications. The notification subsystem reads
three things from a user: the email address (email channel), the display
name (message personalisation) and the notification preference blob, which
is stored verbatim and resolved against system defaults at read time.
"""

import enum
from datetime import datetime

from sqlalchemy import JSON, Column, Integer, String, DateTime, ForeignKey, Enum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin


class UserStatus(enum.Enum):
    """
    User account lifecycle status.

    Inactive users still get in-app records but no email or push delivery.
    """
    ACTIVE = "active"
    INACTIVE = "inactive"


class User(Base, GuidMixin):
    """
    Application user.

    Attributes:
        id: Primary key (internal, never exposed)
        guid: GUID string property (usr_xxx)
        name: Display name
        email: Email address (nullable; email channel is skipped when absent)
        role: Free-form role label (Admin, Project Manager, ...)
        status: Account status
        team_id: Optional team membership
        notification_preferences: Raw preference blob (possibly partial or absent)

    Relationships:
        notifications: Notifications addressed to this user
        push_link: The user's single linked push device, if any
    """

    __tablename__ = "users"
    GUID_PREFIX = "usr"

    id = Column(Integer, primary_key=True, autoincrement=True)

    name = Column(String(255), nullable=False, index=True)
    email = Column(String(255), nullable=True)
    role = Column(String(50), nullable=False, default="Project Manager")
    status = Column(
        Enum(UserStatus, name="user_status"),
        default=UserStatus.ACTIVE,
        nullable=False,
    )

    team_id = Column(Integer, ForeignKey("teams.id", ondelete="SET NULL"), nullable=True)

    # Stored as-is; resolved by PreferenceResolver
    notification_preferences = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    notifications = relationship(
        "Notification",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    push_link = relationship(
        "PushLink",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    def to_dict(self) -> dict:
        """Serialize for the live feed."""
        return {
            "id": self.guid,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "status": self.status.value if self.status else None,
        }

    def __repr__(self) -> str:
        return f"<User(id={self.id}, name='{self.name}')>"
