"""
Unit tests for NotificationEngine.

Tests the notify pipeline (dedup gate, persistence, preference gating,
concurrent dispatch), the business-event builders and owner-scoped
management operations.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from backend.src.models.notification import (
    Notification,
    NotificationCategory,
    NotificationPriority,
)
from backend.src.models.user import UserStatus
from backend.src.schemas.notifications import NotificationEvent
from backend.src.services.notification_service import (
    ACCOUNT_CREATED_MESSAGE,
    WELCOME_PUSH_MESSAGE,
    NotificationEngine,
    project_link,
)


def _event(user_id, category=NotificationCategory.APPROVAL_REQUEST,
           priority=NotificationPriority.HIGH, link="/financials"):
    return NotificationEvent(
        user_id=user_id,
        title="New Project Approval",
        message="Apollo needs approval.",
        category=category,
        priority=priority,
        link=link,
    )


# ============================================================================
# Test: notify pipeline
# ============================================================================


class TestNotify:
    """Tests for NotificationEngine.notify."""

    @pytest.mark.asyncio
    async def test_persists_and_dispatches_allowed_channels(
        self, notification_engine, sample_user, push_preferences,
        mock_email_dispatcher, mock_push_dispatcher,
    ):
        user = sample_user(preferences=push_preferences)
        event = _event(user.id)

        notification = await notification_engine.notify(event)

        assert notification is not None
        assert notification.user_id == user.id
        mock_email_dispatcher.dispatch.assert_awaited_once_with(user, event)
        mock_push_dispatcher.dispatch.assert_awaited_once_with(
            user.id, event, session_user_id=None
        )

    @pytest.mark.asyncio
    async def test_default_preferences_are_in_app_only(
        self, notification_engine, sample_user,
        mock_email_dispatcher, mock_push_dispatcher,
    ):
        user = sample_user()

        notification = await notification_engine.notify(_event(user.id))

        assert notification is not None
        mock_email_dispatcher.dispatch.assert_not_awaited()
        mock_push_dispatcher.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_same_day_duplicate_is_suppressed(
        self, notification_engine, sample_user, push_preferences,
        mock_email_dispatcher, test_db_session,
    ):
        user = sample_user(preferences=push_preferences)

        first = await notification_engine.notify(_event(user.id))
        second = await notification_engine.notify(_event(user.id))

        assert first is not None
        assert second is None
        assert test_db_session.query(Notification).count() == 1
        assert mock_email_dispatcher.dispatch.await_count == 1

    @pytest.mark.asyncio
    async def test_bypass_dedup_creates_duplicate(
        self, notification_engine, sample_user, test_db_session,
    ):
        user = sample_user()

        await notification_engine.notify(_event(user.id))
        again = await notification_engine.notify(_event(user.id), bypass_dedup=True)

        assert again is not None
        assert test_db_session.query(Notification).count() == 2

    @pytest.mark.asyncio
    async def test_below_threshold_is_recorded_but_not_dispatched(
        self, notification_engine, sample_user, push_preferences,
        mock_email_dispatcher, mock_push_dispatcher,
    ):
        user = sample_user(preferences=push_preferences)

        notification = await notification_engine.notify(
            _event(user.id, category=NotificationCategory.TASK_UPDATE,
                   priority=NotificationPriority.LOW)
        )

        assert notification is not None
        mock_email_dispatcher.dispatch.assert_not_awaited()
        mock_push_dispatcher.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_inactive_recipient_gets_in_app_only(
        self, notification_engine, sample_user, push_preferences,
        mock_email_dispatcher, mock_push_dispatcher,
    ):
        user = sample_user(preferences=push_preferences, status=UserStatus.INACTIVE)

        notification = await notification_engine.notify(_event(user.id))

        assert notification is not None
        mock_email_dispatcher.dispatch.assert_not_awaited()
        mock_push_dispatcher.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_persistence_failure_dispatches_nothing(
        self, notification_engine, sample_user, push_preferences,
        mock_email_dispatcher, mock_push_dispatcher,
    ):
        user = sample_user(preferences=push_preferences)

        with patch.object(
            notification_engine.store, "create",
            side_effect=OperationalError("INSERT", {}, Exception("database is locked")),
        ):
            result = await notification_engine.notify(_event(user.id))

        assert result is None
        mock_email_dispatcher.dispatch.assert_not_awaited()
        mock_push_dispatcher.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_channel_error_does_not_affect_other_channel(
        self, notification_engine, sample_user, push_preferences,
        mock_email_dispatcher, mock_push_dispatcher,
    ):
        user = sample_user(preferences=push_preferences)
        mock_email_dispatcher.dispatch.side_effect = RuntimeError("relay exploded")

        notification = await notification_engine.notify(_event(user.id))

        assert notification is not None
        mock_push_dispatcher.dispatch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_session_user_is_forwarded_to_push(
        self, test_db_session, test_settings, sample_user, push_preferences,
        mock_email_dispatcher, mock_push_dispatcher,
    ):
        user = sample_user(preferences=push_preferences)
        engine = NotificationEngine(
            test_db_session,
            test_settings,
            email_dispatcher=mock_email_dispatcher,
            push_dispatcher=mock_push_dispatcher,
            session_user_id=user.id,
        )
        event = _event(user.id)

        await engine.notify(event)

        mock_push_dispatcher.dispatch.assert_awaited_once_with(
            user.id, event, session_user_id=user.id
        )

    @pytest.mark.asyncio
    async def test_notify_many_skips_repeated_recipients(
        self, notification_engine, sample_user,
    ):
        alice = sample_user()
        bob = sample_user()

        created = await notification_engine.notify_many(
            [alice.id, bob.id, alice.id],
            title="Heads up",
            message="Quarterly review on Friday.",
            category=NotificationCategory.SYSTEM,
        )

        assert created == 2

    @pytest.mark.asyncio
    async def test_notify_many_with_invalid_fields_returns_zero(
        self, notification_engine, sample_user, test_db_session,
    ):
        user = sample_user()

        created = await notification_engine.notify_many(
            [user.id], title="", message="Empty titles are rejected.",
            category=NotificationCategory.SYSTEM,
        )

        assert created == 0
        assert test_db_session.query(Notification).count() == 0


# ============================================================================
# Test: business events
# ============================================================================


class TestBusinessEvents:
    """Tests for the business-event builders."""

    @pytest.mark.asyncio
    async def test_approval_requested_notifies_each_approver(
        self, notification_engine, sample_user, sample_project, test_db_session,
    ):
        approvers = [sample_user(role="Admin"), sample_user(role="Admin")]
        project = sample_project(title="Apollo")

        created = await notification_engine.notify_approval_requested(
            project, [a.id for a in approvers]
        )

        assert created == 2
        rows = test_db_session.query(Notification).all()
        assert {r.user_id for r in rows} == {a.id for a in approvers}
        assert all(r.title == "New Project Approval" for r in rows)
        assert all(r.message == "Apollo needs approval." for r in rows)
        assert all(r.category == "ApprovalRequest" for r in rows)
        assert all(r.link == "/financials" for r in rows)

    @pytest.mark.asyncio
    async def test_project_approved_goes_to_team_leader(
        self, notification_engine, sample_user, sample_project,
    ):
        leader = sample_user()
        project = sample_project(title="Apollo", leader=leader)

        notification = await notification_engine.notify_project_approved(project)

        assert notification.user_id == leader.id
        assert notification.category == "ApprovalResult"
        assert notification.priority == "High"
        assert notification.link == project_link(project)

    @pytest.mark.asyncio
    async def test_project_rejected_includes_reason(
        self, notification_engine, sample_user, sample_project,
    ):
        leader = sample_user()
        project = sample_project(title="Apollo", leader=leader)

        notification = await notification_engine.notify_project_rejected(project, "Over budget")

        assert "Reason: Over budget" in notification.message

    @pytest.mark.asyncio
    async def test_long_rejection_reason_is_clipped(
        self, notification_engine, sample_user, sample_project,
    ):
        leader = sample_user()
        project = sample_project(title="Apollo", leader=leader)

        notification = await notification_engine.notify_project_rejected(project, "x" * 1000)

        assert notification is not None
        assert len(notification.message) == 1000
        assert notification.message.endswith("...")

    @pytest.mark.asyncio
    async def test_long_task_name_is_clipped(
        self, notification_engine, sample_user, sample_project,
    ):
        project = sample_project(leader=sample_user())

        notification = await notification_engine.notify_task_completed(project, "t" * 1200, "Bob")

        assert notification is not None
        assert len(notification.message) == 1000

    @pytest.mark.asyncio
    async def test_project_without_leader_is_skipped(
        self, notification_engine, sample_project,
    ):
        project = sample_project(leader=None)

        assert await notification_engine.notify_project_approved(project) is None
        assert await notification_engine.notify_task_completed(project, "Wiring", "Bob") is None

    @pytest.mark.asyncio
    async def test_task_completed(self, notification_engine, sample_user, sample_project):
        leader = sample_user()
        project = sample_project(leader=leader, budget=Decimal("500"))

        notification = await notification_engine.notify_task_completed(project, "Wiring", "Bob")

        assert notification.message == "Wiring completed by Bob."
        assert notification.category == "TaskUpdate"
        assert notification.priority == "Medium"

    @pytest.mark.asyncio
    async def test_role_changed(self, notification_engine, sample_user):
        user = sample_user()

        notification = await notification_engine.notify_role_changed(user, "Admin")

        assert notification.title == "Your Role Has Changed"
        assert "Admin" in notification.message
        assert notification.priority == "High"

    @pytest.mark.asyncio
    async def test_account_created(self, notification_engine, sample_user):
        user = sample_user()

        notification = await notification_engine.notify_account_created(user)

        assert notification.title == "Welcome to CostPilot!"
        assert notification.message == ACCOUNT_CREATED_MESSAGE
        assert notification.category == "System"
        assert notification.priority == "Medium"

    @pytest.mark.asyncio
    async def test_push_welcome_bypasses_dedup(
        self, notification_engine, sample_user, test_db_session,
    ):
        user = sample_user(name="Dana")

        first = await notification_engine.notify_push_welcome(user)
        second = await notification_engine.notify_push_welcome(user)

        assert first.title == "Welcome, Dana!"
        assert first.message == WELCOME_PUSH_MESSAGE
        assert second is not None
        assert test_db_session.query(Notification).count() == 2


# ============================================================================
# Test: management
# ============================================================================


class TestManagement:
    """Tests for owner-scoped management operations."""

    @pytest.mark.asyncio
    async def test_mark_read_and_delete_are_owner_scoped(
        self, notification_engine, sample_user,
    ):
        alice = sample_user()
        bob = sample_user()
        notification = await notification_engine.notify(_event(alice.id))

        assert notification_engine.mark_read(notification.guid, bob.id) is False
        assert notification_engine.delete_notification(notification.guid, bob.id) is False
        assert notification_engine.mark_read(notification.guid, alice.id) is True
        assert notification_engine.unread_count(alice.id) == 0
        assert notification_engine.delete_notification(notification.guid, alice.id) is True
        assert notification_engine.list_notifications(alice.id) == []

    def test_unknown_guid_returns_false(self, notification_engine, sample_user):
        user = sample_user()

        assert notification_engine.mark_read("ntf_00000000000000000000000000", user.id) is False
        assert notification_engine.delete_notification("garbage", user.id) is False

    @pytest.mark.asyncio
    async def test_bulk_operations(self, notification_engine, sample_user):
        user = sample_user()
        await notification_engine.notify(_event(user.id, link="/a"))
        await notification_engine.notify(_event(user.id, link="/b"))

        assert notification_engine.mark_all_read(user.id) == 2
        assert notification_engine.unread_count(user.id) == 0
        assert notification_engine.delete_all(user.id) == 2
        assert notification_engine.list_notifications(user.id) == []

    def test_bulk_failure_returns_zero(self, notification_engine, sample_user, mocker):
        user = sample_user()
        mocker.patch.object(
            notification_engine.store, "delete_all",
            side_effect=OperationalError("DELETE", {}, Exception("disk I/O error")),
        )

        assert notification_engine.delete_all(user.id) == 0
