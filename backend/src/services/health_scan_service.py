"""
Health scan: synthesizes deadline and budget alerts from project state.

A scan re-evaluates every non-terminal project from scratch on each call.
There is no cursor; repeated scans on the same day are absorbed by the
notification engine's dedup gate, and a condition that no longer holds
simply produces no event.

Rules per project (recipient: the project's team leader):
- end date in the past          -> Deadline, Critical ("overdue by N days")
- end date today or tomorrow    -> Deadline, High
- budget > 0 and spent > budget -> CostOverrun, High (independent of the above)
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.src.models.notification import NotificationCategory, NotificationPriority
from backend.src.models.project import Project, ProjectStatus
from backend.src.schemas.notifications import NotificationEvent
from backend.src.services.notification_service import NotificationEngine, project_link
from backend.src.utils.logging_config import get_logger


logger = get_logger("services")


@dataclass
class HealthScanSummary:
    """Counters for one scan run."""

    projects_scanned: int = 0
    events_emitted: int = 0
    notifications_created: int = 0


def _plural_days(days: int) -> str:
    return f"{days} day" if days == 1 else f"{days} days"


def _money(amount: Decimal) -> str:
    return f"${amount:,.2f}"


def deadline_event(project: Project, today: date) -> Optional[NotificationEvent]:
    """
    Deadline event for a project, if its end date warrants one.

    Args:
        project: Project with a team leader
        today: Current date in the reference time zone
    """
    if project.end_date is None:
        return None

    days_left = (project.end_date - today).days

    if days_left < 0:
        overdue = -days_left
        return NotificationEvent(
            user_id=project.team_leader_id,
            title="Project Overdue",
            message=f'Project "{project.title}" is overdue by {_plural_days(overdue)}.',
            category=NotificationCategory.DEADLINE,
            priority=NotificationPriority.CRITICAL,
            link=project_link(project),
        )
    if days_left == 0:
        return NotificationEvent(
            user_id=project.team_leader_id,
            title="Due Today",
            message=f'Project "{project.title}" is scheduled for closure today.',
            category=NotificationCategory.DEADLINE,
            priority=NotificationPriority.HIGH,
            link=project_link(project),
        )
    if days_left == 1:
        return NotificationEvent(
            user_id=project.team_leader_id,
            title="Due Tomorrow",
            message=f'Project "{project.title}" is due tomorrow.',
            category=NotificationCategory.DEADLINE,
            priority=NotificationPriority.HIGH,
            link=project_link(project),
        )
    return None


def cost_overrun_event(project: Project) -> Optional[NotificationEvent]:
    """CostOverrun event when actual spend exceeds a positive budget."""
    budget = Decimal(project.budget or 0)
    spent = Decimal(project.spent or 0)
    if budget <= 0 or spent <= budget:
        return None

    return NotificationEvent(
        user_id=project.team_leader_id,
        title="Budget Overrun",
        message=(
            f'Project "{project.title}" has spent {_money(spent)} '
            f"against a budget of {_money(budget)}."
        ),
        category=NotificationCategory.COST_OVERRUN,
        priority=NotificationPriority.HIGH,
        link=project_link(project),
    )


class HealthScanService:
    """
    Runs the project health scan through the notification engine.
    """

    def __init__(self, db: Session, engine: NotificationEngine):
        self.db = db
        self.engine = engine

    def _active_projects(self) -> List[Project]:
        return (
            self.db.query(Project)
            .filter(Project.status.notin_(ProjectStatus.terminal()))
            .order_by(Project.id)
            .all()
        )

    def today(self) -> date:
        """Current date in the reference time zone."""
        return datetime.now(self.engine.settings.reference_tz).date()

    def collect_events(self, projects: List[Project], today: date) -> List[NotificationEvent]:
        events = []
        for project in projects:
            if project.team_leader_id is None:
                continue
            for event in (deadline_event(project, today), cost_overrun_event(project)):
                if event is not None:
                    events.append(event)
        return events

    async def run(self) -> HealthScanSummary:
        """
        Scan all active projects and notify team leaders.

        Returns:
            HealthScanSummary with scanned/emitted/created counts
        """
        summary = HealthScanSummary()
        try:
            projects = self._active_projects()
        except SQLAlchemyError as e:
            logger.error(f"Health scan aborted, project query failed: {e}")
            return summary
        summary.projects_scanned = len(projects)

        events = self.collect_events(projects, self.today())
        summary.events_emitted = len(events)

        for event in events:
            if await self.engine.notify(event):
                summary.notifications_created += 1

        logger.info(
            "Health scan completed",
            extra={
                "projects_scanned": summary.projects_scanned,
                "events_emitted": summary.events_emitted,
                "notifications_created": summary.notifications_created,
            },
        )
        return summary
