"""
Project model.

Only the fields the health scan evaluates are modelled here: status, end
date, budget, spend and the team leader who receives project alerts.
"""

import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, Date, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import relationship

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin


class ProjectStatus(str, enum.Enum):
    """Project workflow status."""
    NOT_STARTED = "Not Started"
    PENDING_APPROVAL = "Pending Approval"
    IN_PROGRESS = "In Progress"
    ON_HOLD = "On Hold"
    COMPLETED = "Completed"
    REJECTED = "Rejected"

    @classmethod
    def terminal(cls) -> tuple:
        """Statuses excluded from the health scan."""
        return (cls.COMPLETED.value, cls.REJECTED.value)


class Project(Base, GuidMixin):
    """
    Project tracked by the dashboard.

    Attributes:
        guid: GUID string property (prj_xxx)
        title: Project title
        status: ProjectStatus value (stored as its string)
        end_date: Terminal date (nullable; projects without one are never overdue)
        budget: Approved budget
        spent: Actual spend to date
        team_leader_id: Recipient of deadline and cost alerts
    """

    __tablename__ = "projects"
    GUID_PREFIX = "prj"

    id = Column(Integer, primary_key=True, autoincrement=True)

    title = Column(String(255), nullable=False)
    status = Column(String(30), nullable=False, default=ProjectStatus.NOT_STARTED.value, index=True)
    end_date = Column(Date, nullable=True)
    budget = Column(Numeric(14, 2), nullable=False, default=0)
    spent = Column(Numeric(14, 2), nullable=False, default=0)

    team_leader_id = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    team_leader = relationship("User", foreign_keys=[team_leader_id])

    def to_dict(self) -> dict:
        """Serialize for the live feed."""
        return {
            "id": self.guid,
            "title": self.title,
            "status": self.status,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "budget": float(self.budget or 0),
            "spent": float(self.spent or 0),
            "team_leader_id": self.team_leader.guid if self.team_leader else None,
            "created_at": self.created_at.isoformat() + "Z" if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, title='{self.title}', status='{self.status}')>"
