"""
Deduplication gate for notifications.

Suppresses a notification when an equivalent one (same user, category and
link) was already recorded since the start of the current calendar day in the
reference time zone. The health scan is re-entrant and runs on every session
start, so without this gate users would get the same alert repeatedly.

The window is a calendar day, not a rolling 24 hours: an alert raised at
23:59 and again at 00:01 is delivered twice.
"""

from datetime import datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from backend.src.services.notification_store import NotificationStore
from backend.src.utils.logging_config import get_logger


logger = get_logger("services")


def start_of_day(tz: ZoneInfo, now: Optional[datetime] = None) -> datetime:
    """
    Start of the current calendar day in tz, as naive UTC.

    Args:
        tz: Reference time zone
        now: Aware or naive-UTC "now" (defaults to the current time)

    Returns:
        Naive UTC datetime comparable with stored notification timestamps
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    local_midnight = datetime.combine(now.astimezone(tz).date(), time.min, tzinfo=tz)
    return local_midnight.astimezone(timezone.utc).replace(tzinfo=None)


class DeduplicationGate:
    """
    Same-day duplicate check in front of the notification store.

    Races between concurrent notify() calls for the same key can both pass
    the gate before either has persisted; the resulting duplicate is accepted.
    """

    def __init__(self, store: NotificationStore, tz: ZoneInfo):
        self.store = store
        self.tz = tz

    def window_start(self, now: Optional[datetime] = None) -> datetime:
        return start_of_day(self.tz, now)

    def should_suppress(
        self,
        user_id: int,
        category: str,
        link: Optional[str],
        window_start: datetime,
    ) -> bool:
        """
        Check whether an equivalent notification already exists in the window.

        Args:
            user_id: Recipient user's internal ID
            category: Notification category value
            link: Notification link; None compares as empty string
            window_start: Inclusive lower bound (naive UTC)

        Returns:
            True if at least one matching notification exists
        """
        existing = self.store.count_since(user_id, category, link or "", window_start)
        if existing:
            logger.debug(
                "Notification suppressed by dedup gate",
                extra={
                    "user_id": user_id,
                    "category": category,
                    "link": link or "",
                    "existing": existing,
                },
            )
            return True
        return False
