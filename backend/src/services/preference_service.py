"""
Notification preference resolution and management.

A user's stored preference blob may be absent, partial or malformed. The
resolver always produces a fully populated PreferenceMatrix by starting from
the system defaults and overlaying each stored field that has the right
shape, one field at a time. Missing data is the common case, not an error.

Blob shape (camelCase, as written by the settings page):
    {
        "inApp": {"taskUpdates": bool, "approvals": bool, ...},
        "email": {"taskUpdates": bool, "approvals": bool, ...},
        "pushEnabled": bool,
        "emailEnabled": bool,
        "priorityThreshold": "Low" | "Medium" | "High" | "Critical",
        "projectSubscriptions": [str, ...]
    }
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from backend.src.models.notification import NotificationCategory, NotificationPriority
from backend.src.models.user import User
from backend.src.utils.logging_config import get_logger


logger = get_logger("services")


# Preference keys, in settings-page order
PREFERENCE_KEYS: Tuple[str, ...] = (
    "taskUpdates",
    "approvals",
    "costOverruns",
    "deadlines",
    "system",
)

# Categories that map to preference keys
CATEGORY_PREFERENCE_KEYS: Dict[NotificationCategory, str] = {
    NotificationCategory.APPROVAL_REQUEST: "approvals",
    NotificationCategory.APPROVAL_RESULT: "approvals",
    NotificationCategory.COST_OVERRUN: "costOverruns",
    NotificationCategory.DEADLINE: "deadlines",
    NotificationCategory.TASK_UPDATE: "taskUpdates",
    NotificationCategory.SYSTEM: "system",
}

DEFAULT_IN_APP = {key: True for key in PREFERENCE_KEYS}
DEFAULT_EMAIL = {key: False for key in PREFERENCE_KEYS}
DEFAULT_PRIORITY_THRESHOLD = NotificationPriority.MEDIUM


@dataclass(frozen=True)
class PreferenceMatrix:
    """
    Resolved channel x category delivery configuration for one user.

    Push has no per-category matrix of its own; it mirrors the in-app flags
    and is switched on or off as a whole by push_enabled.
    """

    in_app: Dict[str, bool] = field(default_factory=lambda: dict(DEFAULT_IN_APP))
    email: Dict[str, bool] = field(default_factory=lambda: dict(DEFAULT_EMAIL))
    push_enabled: bool = False
    email_enabled: bool = False
    priority_threshold: NotificationPriority = DEFAULT_PRIORITY_THRESHOLD
    # Project GUIDs the dashboard watches; stored for the UI, not a dispatch gate
    project_subscriptions: Tuple[str, ...] = ()

    def _meets_threshold(self, priority: NotificationPriority) -> bool:
        return priority >= self.priority_threshold

    def allows_email(
        self, category: NotificationCategory, priority: NotificationPriority
    ) -> bool:
        """Category flag AND global toggle AND priority threshold."""
        key = CATEGORY_PREFERENCE_KEYS[category]
        return (
            self.email_enabled
            and self.email.get(key, False)
            and self._meets_threshold(priority)
        )

    def allows_push(
        self, category: NotificationCategory, priority: NotificationPriority
    ) -> bool:
        """In-app category flag AND push toggle AND priority threshold."""
        key = CATEGORY_PREFERENCE_KEYS[category]
        return (
            self.push_enabled
            and self.in_app.get(key, False)
            and self._meets_threshold(priority)
        )

    def to_blob(self) -> Dict[str, Any]:
        """Serialize back to the stored blob shape."""
        return {
            "inApp": dict(self.in_app),
            "email": dict(self.email),
            "pushEnabled": self.push_enabled,
            "emailEnabled": self.email_enabled,
            "priorityThreshold": self.priority_threshold.value,
            "projectSubscriptions": list(self.project_subscriptions),
        }


def _overlay_flags(defaults: Dict[str, bool], stored: Any) -> Dict[str, bool]:
    result = dict(defaults)
    if not isinstance(stored, Mapping):
        return result
    for key in PREFERENCE_KEYS:
        value = stored.get(key)
        if isinstance(value, bool):
            result[key] = value
    return result


def _parse_priority(value: Any) -> Optional[NotificationPriority]:
    if isinstance(value, NotificationPriority):
        return value
    try:
        return NotificationPriority(value)
    except ValueError:
        return None


def resolve_preferences(blob: Any) -> PreferenceMatrix:
    """
    Resolve a stored preference blob into a full PreferenceMatrix.

    Args:
        blob: Stored preferences (dict, JSON string, None or anything else)

    Returns:
        PreferenceMatrix with every field populated. Fields that are absent
        or of the wrong type keep their system default.
    """
    if isinstance(blob, (str, bytes)):
        try:
            blob = json.loads(blob)
        except (json.JSONDecodeError, TypeError, UnicodeDecodeError):
            blob = None

    if not isinstance(blob, Mapping):
        return PreferenceMatrix()

    defaults = PreferenceMatrix()

    push_enabled = blob.get("pushEnabled")
    email_enabled = blob.get("emailEnabled")
    threshold = _parse_priority(blob.get("priorityThreshold"))
    subscriptions = blob.get("projectSubscriptions")
    if isinstance(subscriptions, (list, tuple)):
        subscriptions = tuple(str(s) for s in subscriptions)
    else:
        subscriptions = defaults.project_subscriptions

    return PreferenceMatrix(
        in_app=_overlay_flags(defaults.in_app, blob.get("inApp")),
        email=_overlay_flags(defaults.email, blob.get("email")),
        push_enabled=push_enabled if isinstance(push_enabled, bool) else defaults.push_enabled,
        email_enabled=email_enabled if isinstance(email_enabled, bool) else defaults.email_enabled,
        priority_threshold=threshold or defaults.priority_threshold,
        project_subscriptions=subscriptions,
    )


class PreferenceService:
    """
    Reads and updates a user's notification preferences.

    Reads go through resolve_preferences(); updates are a partial merge on
    top of the resolved matrix, so unknown keys are dropped and the stored
    blob is always written back fully populated.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_user_preferences(self, user: User) -> PreferenceMatrix:
        """Resolved preferences for a user."""
        return resolve_preferences(user.notification_preferences)

    def update_preferences(
        self, user: User, updates: Mapping[str, Any]
    ) -> PreferenceMatrix:
        """
        Update notification preferences for a user (partial merge).

        Args:
            user: User instance
            updates: Partial blob using the stored key names

        Returns:
            The resolved preferences after the update
        """
        merged = self.get_user_preferences(user).to_blob()

        for key, value in updates.items():
            if value is None or key not in merged:
                continue
            if key in ("inApp", "email") and isinstance(value, Mapping):
                merged[key] = {**merged[key], **dict(value)}
            else:
                merged[key] = value

        resolved = resolve_preferences(merged)
        user.notification_preferences = resolved.to_blob()
        self.db.commit()
        self.db.refresh(user)

        logger.info(
            "Updated notification preferences",
            extra={"user_id": user.id},
        )
        return resolved

    def set_push_enabled(self, user: User, enabled: bool) -> PreferenceMatrix:
        """Flip the global push toggle."""
        return self.update_preferences(user, {"pushEnabled": enabled})
