"""
Push link service: persistence for the user <-> push device association.

One link per user, keyed by user id. Saving a link for a user that already
has one replaces it; concurrent relinks resolve to last write wins.
"""

from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.src.models.push_subscription import PushLink
from backend.src.services.exceptions import ValidationError
from backend.src.utils.logging_config import get_logger


logger = get_logger("push")


class PushLinkService:
    """
    Service for managing push links.

    Handles link lifecycle:
    - Get (by user)
    - Upsert (by user, reporting whether a link existed before)
    - Remove (by user)
    """

    def __init__(self, db: Session):
        self.db = db

    def get_link(self, user_id: int) -> Optional[PushLink]:
        """The user's linked device, if any."""
        return self.db.query(PushLink).filter(PushLink.user_id == user_id).first()

    def upsert_link(
        self,
        user_id: int,
        subscriber_id: str,
        platform: str = "sendpulse",
    ) -> Tuple[PushLink, bool]:
        """
        Create or replace the push link for a user.

        Args:
            user_id: Owning user's internal ID
            subscriber_id: Provider-assigned subscriber identifier
            platform: Provider/platform label

        Returns:
            Tuple of (link, created) where created is True when the user had
            no link before this call

        Raises:
            ValidationError: If subscriber_id is blank
        """
        if not subscriber_id or not subscriber_id.strip():
            raise ValidationError("Subscriber id is required", field="subscriber_id")

        existing = self.get_link(user_id)
        if existing:
            self._overwrite(existing, subscriber_id, platform)
            return existing, False

        link = PushLink(
            user_id=user_id,
            subscriber_id=subscriber_id,
            platform=platform,
            created_at=datetime.utcnow(),
        )
        self.db.add(link)
        try:
            self.db.commit()
        except IntegrityError:
            # Another flow linked this user in between; its row loses
            self.db.rollback()
            existing = self.get_link(user_id)
            if existing is None:
                raise
            self._overwrite(existing, subscriber_id, platform)
            return existing, False

        self.db.refresh(link)
        logger.info(
            "Created push link",
            extra={"user_id": user_id, "platform": platform},
        )
        return link, True

    def _overwrite(self, link: PushLink, subscriber_id: str, platform: str) -> None:
        link.subscriber_id = subscriber_id
        link.platform = platform
        link.created_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(link)
        logger.info(
            "Replaced push link",
            extra={"user_id": link.user_id, "platform": platform},
        )

    def remove_link(self, user_id: int) -> bool:
        """
        Remove the push link for a user.

        Returns:
            True if a link was found and removed
        """
        link = self.get_link(user_id)
        if not link:
            return False

        self.db.delete(link)
        self.db.commit()
        logger.info("Removed push link", extra={"user_id": user_id})
        return True
