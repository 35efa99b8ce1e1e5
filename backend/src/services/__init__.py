"""
Service layer for business logic.

This module exports the service classes used by API endpoints and
session handling.
"""

from backend.src.services.exceptions import (
    ServiceError,
    NotFoundError,
    ValidationError,
    DispatchError,
    EmailDeliveryError,
    PushDeliveryError,
    PushProviderAuthError,
)
from backend.src.services.delivery import DeliveryStatus
from backend.src.services.preference_service import PreferenceMatrix, PreferenceService
from backend.src.services.push_subscription_service import PushLinkService
from backend.src.services.notification_service import NotificationEngine
from backend.src.services.health_scan_service import HealthScanService

__all__ = [
    "ServiceError",
    "NotFoundError",
    "ValidationError",
    "DispatchError",
    "EmailDeliveryError",
    "PushDeliveryError",
    "PushProviderAuthError",
    "DeliveryStatus",
    "PreferenceMatrix",
    "PreferenceService",
    "PushLinkService",
    "NotificationEngine",
    "HealthScanService",
]
