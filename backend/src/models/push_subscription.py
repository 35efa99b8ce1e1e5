"""
PushLink model: the association between a user and a push-provider device.

One active link per user. The user id is the primary key, so saving a new
link for the same user replaces the previous one (last write wins).
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from backend.src.models import Base


class PushLink(Base):
    """
    Linked push device for a user.

    Attributes:
        user_id: Owning user (primary key, one link per user)
        subscriber_id: Opaque provider-assigned subscriber identifier
        platform: Provider/platform label (e.g. "sendpulse")
        created_at: When this link was (re)written

    Lifecycle:
        Created by the push lifecycle manager on first successful id
        resolution. Replaced on relink. Deleted on explicit unsubscribe
        (and on logout when UNLINK_PUSH_ON_LOGOUT is set).
    """

    __tablename__ = "push_subscribers"

    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    subscriber_id = Column(String(255), nullable=False)
    platform = Column(String(50), nullable=False, default="sendpulse")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="push_link")

    def __repr__(self) -> str:
        return f"<PushLink(user_id={self.user_id}, platform='{self.platform}')>"
