"""
Team model.

Teams group users for project staffing. The notification subsystem only
reads them: the live sync bridge republishes the team list whenever the
table changes.
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin


class Team(Base, GuidMixin):
    """
    Team of users.

    Attributes:
        id: Primary key (internal, never exposed)
        uuid: UUIDv7 for external identification (inherited from GuidMixin)
        guid: GUID string property (ten_xxx, inherited from GuidMixin)
        name: Team display name
    """

    __tablename__ = "teams"
    GUID_PREFIX = "ten"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {"id": self.guid, "name": self.name}

    def __repr__(self) -> str:
        return f"<Team(id={self.id}, name='{self.name}')>"
