"""
Pydantic schemas for the notification subsystem.

Provides data validation and serialization for:
- NotificationEvent, the ephemeral input to the notification engine
- Notification history responses
- Preference get/update payloads
- Push link management and diagnostics
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

from backend.src.models.notification import NotificationCategory, NotificationPriority


# ============================================================================
# Engine input
# ============================================================================


TITLE_MAX_LENGTH = 200
MESSAGE_MAX_LENGTH = 1000


class NotificationEvent(BaseModel):
    """
    A business or scan event to be turned into a notification.

    Never persisted directly; the engine persists a Notification row from it
    once the deduplication gate lets it through.
    """

    user_id: int = Field(..., description="Recipient user's internal ID")
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)
    message: str = Field(..., min_length=1, max_length=MESSAGE_MAX_LENGTH)
    category: NotificationCategory
    priority: NotificationPriority = NotificationPriority.MEDIUM
    link: Optional[str] = Field(default=None, max_length=500)

    model_config = {"frozen": True}

    @field_validator("title", "message", mode="before")
    @classmethod
    def clip_to_column(cls, v, info):
        """Clip interpolated user text instead of rejecting the event."""
        limit = TITLE_MAX_LENGTH if info.field_name == "title" else MESSAGE_MAX_LENGTH
        if isinstance(v, str) and len(v) > limit:
            return v[: limit - 3] + "..."
        return v

    @property
    def dedup_link(self) -> str:
        """Link as compared by the dedup gate (empty string when absent)."""
        return self.link or ""


# ============================================================================
# Notification history
# ============================================================================


class NotificationResponse(BaseModel):
    """Response schema for a single notification."""

    guid: str = Field(..., description="Notification GUID (ntf_xxx)")
    title: str
    message: str
    category: str
    priority: str
    link: Optional[str] = None
    is_read: bool
    timestamp: datetime

    @field_validator("link", mode="before")
    @classmethod
    def empty_link_to_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @field_serializer("timestamp")
    @classmethod
    def serialize_datetime_utc(cls, v: datetime) -> str:
        """Serialize datetime as ISO 8601 with explicit UTC timezone."""
        return v.isoformat() + "Z"

    model_config = {"from_attributes": True}


class NotificationListResponse(BaseModel):
    """Notifications for the current user, newest first."""

    items: List[NotificationResponse]
    total: int
    unread_count: int


class UnreadCountResponse(BaseModel):
    unread_count: int


class BulkUpdateResponse(BaseModel):
    """Result of a bulk mark-read or bulk delete."""

    updated_count: int


class HealthScanResponse(BaseModel):
    """Summary of a health scan run."""

    projects_scanned: int
    events_emitted: int
    notifications_created: int


# ============================================================================
# Preferences
# ============================================================================


class CategoryFlags(BaseModel):
    """Per-category switches for one channel."""

    taskUpdates: Optional[bool] = None
    approvals: Optional[bool] = None
    costOverruns: Optional[bool] = None
    deadlines: Optional[bool] = None
    system: Optional[bool] = None


class NotificationPreferencesResponse(BaseModel):
    """Resolved (fully populated) preferences."""

    inApp: Dict[str, bool]
    email: Dict[str, bool]
    pushEnabled: bool
    emailEnabled: bool
    priorityThreshold: NotificationPriority
    projectSubscriptions: List[str]


class NotificationPreferencesUpdate(BaseModel):
    """Partial preference update; omitted fields are left unchanged."""

    inApp: Optional[CategoryFlags] = None
    email: Optional[CategoryFlags] = None
    pushEnabled: Optional[bool] = None
    emailEnabled: Optional[bool] = None
    priorityThreshold: Optional[NotificationPriority] = None
    projectSubscriptions: Optional[List[str]] = None


# ============================================================================
# Push links
# ============================================================================


class PushLinkCreate(BaseModel):
    """Subscriber id resolved client-side, to be linked to the current user."""

    subscriber_id: str = Field(..., min_length=1, max_length=255)
    platform: str = Field(default="sendpulse", max_length=50)


class SubscribeResultResponse(BaseModel):
    """Structured outcome of a subscribe/unsubscribe attempt."""

    success: bool
    message: str
    state: str


class PushStatusResponse(BaseModel):
    """Push diagnostics for the settings page."""

    permission: str
    sdk_loaded: bool
    linked: bool
    subscriber_id: Optional[str] = None
    platform: Optional[str] = None
    state: str
