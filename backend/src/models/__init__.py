"""
SQLAlchemy models for the CostPilot notification backend.

This module provides the declarative base class and imports all models
to ensure they are registered with SQLAlchemy's metadata.
"""

from sqlalchemy.orm import declarative_base

# All models inherit from this Base class
Base = declarative_base()


# Import all models here so they are registered with Base.metadata
from backend.src.models.team import Team
from backend.src.models.user import User, UserStatus
from backend.src.models.project import Project, ProjectStatus
from backend.src.models.notification import (
    Notification,
    NotificationCategory,
    NotificationPriority,
)
from backend.src.models.push_subscription import PushLink

__all__ = [
    "Base",
    "Team",
    "User",
    "UserStatus",
    "Project",
    "ProjectStatus",
    "Notification",
    "NotificationCategory",
    "NotificationPriority",
    "PushLink",
]
