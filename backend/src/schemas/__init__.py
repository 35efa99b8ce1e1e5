"""
Pydantic schemas for API request/response validation.

This module exports all schema classes for use in API endpoints.
"""

from backend.src.schemas.notifications import (
    NotificationEvent,
    NotificationResponse,
    NotificationListResponse,
    UnreadCountResponse,
    BulkUpdateResponse,
    HealthScanResponse,
    CategoryFlags,
    NotificationPreferencesResponse,
    NotificationPreferencesUpdate,
    PushLinkCreate,
    SubscribeResultResponse,
    PushStatusResponse,
)

__all__ = [
    "NotificationEvent",
    "NotificationResponse",
    "NotificationListResponse",
    "UnreadCountResponse",
    "BulkUpdateResponse",
    "HealthScanResponse",
    "CategoryFlags",
    "NotificationPreferencesResponse",
    "NotificationPreferencesUpdate",
    "PushLinkCreate",
    "SubscribeResultResponse",
    "PushStatusResponse",
]
