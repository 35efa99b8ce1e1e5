"""
Integration tests for the notifications API.

Exercises history, preferences, health scan, push link and session
endpoints through the FastAPI test client with an authenticated user.
"""

from datetime import date, timedelta

import pytest

from backend.src.models.notification import (
    Notification,
    NotificationCategory,
    NotificationPriority,
)
from backend.src.models.push_subscription import PushLink
from backend.src.schemas.notifications import NotificationEvent
from backend.src.services.notification_service import WELCOME_PUSH_MESSAGE
from backend.src.services.notification_store import NotificationStore


def _seed(db, user_id, title="Task Completed", link=None):
    return NotificationStore(db).create(NotificationEvent(
        user_id=user_id,
        title=title,
        message="Wiring completed by Bob.",
        category=NotificationCategory.TASK_UPDATE,
        priority=NotificationPriority.MEDIUM,
        link=link,
    ))


# ============================================================================
# History
# ============================================================================


class TestNotificationHistory:

    def test_list_returns_own_notifications(self, test_client, test_db_session, test_user, sample_user):
        _seed(test_db_session, test_user.id, title="Mine", link="/projects/prj_1")
        _seed(test_db_session, sample_user().id, title="Theirs")

        response = test_client.get("/api/notifications")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["unread_count"] == 1
        item = data["items"][0]
        assert item["title"] == "Mine"
        assert item["guid"].startswith("ntf_")
        assert item["link"] == "/projects/prj_1"
        assert item["timestamp"].endswith("Z")

    def test_missing_link_is_null(self, test_client, test_db_session, test_user):
        _seed(test_db_session, test_user.id)

        item = test_client.get("/api/notifications").json()["items"][0]

        assert item["link"] is None

    def test_unread_count(self, test_client, test_db_session, test_user):
        _seed(test_db_session, test_user.id, link="/a")
        _seed(test_db_session, test_user.id, link="/b")

        response = test_client.get("/api/notifications/unread-count")

        assert response.json() == {"unread_count": 2}

    def test_mark_read(self, test_client, test_db_session, test_user):
        notification = _seed(test_db_session, test_user.id)

        response = test_client.post(f"/api/notifications/{notification.guid}/read")

        assert response.status_code == 200
        assert response.json()["is_read"] is True
        assert test_client.get("/api/notifications/unread-count").json()["unread_count"] == 0

    def test_mark_read_foreign_notification_is_404(
        self, test_client, test_db_session, sample_user,
    ):
        foreign = _seed(test_db_session, sample_user().id)

        response = test_client.post(f"/api/notifications/{foreign.guid}/read")

        assert response.status_code == 404

    def test_delete_notification(self, test_client, test_db_session, test_user):
        notification = _seed(test_db_session, test_user.id)

        response = test_client.delete(f"/api/notifications/{notification.guid}")

        assert response.status_code == 204
        assert test_client.get("/api/notifications").json()["total"] == 0

    def test_delete_unknown_is_404(self, test_client):
        response = test_client.delete("/api/notifications/ntf_garbage")

        assert response.status_code == 404

    def test_read_all_and_delete_all(self, test_client, test_db_session, test_user):
        _seed(test_db_session, test_user.id, link="/a")
        _seed(test_db_session, test_user.id, link="/b")

        assert test_client.post("/api/notifications/read-all").json() == {"updated_count": 2}
        assert test_client.delete("/api/notifications").json() == {"updated_count": 2}
        assert test_client.get("/api/notifications").json()["total"] == 0


# ============================================================================
# Preferences
# ============================================================================


class TestPreferences:

    def test_defaults(self, test_client):
        response = test_client.get("/api/notifications/preferences")

        assert response.status_code == 200
        data = response.json()
        assert data["pushEnabled"] is False
        assert data["emailEnabled"] is False
        assert data["priorityThreshold"] == "Medium"
        assert all(data["inApp"].values())
        assert not any(data["email"].values())

    def test_partial_update(self, test_client):
        response = test_client.patch(
            "/api/notifications/preferences",
            json={"email": {"approvals": True}, "emailEnabled": True},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["email"]["approvals"] is True
        assert data["email"]["deadlines"] is False
        assert data["emailEnabled"] is True
        assert test_client.get("/api/notifications/preferences").json()["emailEnabled"] is True

    def test_invalid_threshold_rejected(self, test_client):
        response = test_client.patch(
            "/api/notifications/preferences",
            json={"priorityThreshold": "Urgent"},
        )

        assert response.status_code == 422


# ============================================================================
# Health scan
# ============================================================================


class TestHealthScan:

    def test_scan_is_idempotent_within_a_day(self, test_client, test_user, sample_project):
        sample_project(title="Apollo", leader=test_user, end_date=date.today() - timedelta(days=10))

        first = test_client.post("/api/notifications/health-scan").json()
        second = test_client.post("/api/notifications/health-scan").json()

        assert first == {"projects_scanned": 1, "events_emitted": 1, "notifications_created": 1}
        assert second["notifications_created"] == 0
        items = test_client.get("/api/notifications").json()["items"]
        assert len(items) == 1
        assert items[0]["priority"] == "Critical"


# ============================================================================
# Push links
# ============================================================================


class TestPushLinks:

    def test_first_link_welcomes_once(self, test_client, test_db_session, test_user):
        first = test_client.post(
            "/api/notifications/push/link", json={"subscriber_id": "sub-1"}
        )
        second = test_client.post(
            "/api/notifications/push/link", json={"subscriber_id": "sub-2"}
        )

        assert first.status_code == 200
        assert first.json()["success"] is True
        assert first.json()["state"] == "linked"
        assert second.json()["success"] is True

        link = test_db_session.query(PushLink).filter(PushLink.user_id == test_user.id).one()
        assert link.subscriber_id == "sub-2"
        welcomes = (
            test_db_session.query(Notification)
            .filter(Notification.message == WELCOME_PUSH_MESSAGE)
            .count()
        )
        assert welcomes == 1
        prefs = test_client.get("/api/notifications/preferences").json()
        assert prefs["pushEnabled"] is True

    def test_status_reflects_link(self, test_client):
        test_client.post("/api/notifications/push/link", json={"subscriber_id": "sub-1"})

        status = test_client.get("/api/notifications/push/status").json()

        assert status["linked"] is True
        assert status["subscriber_id"] == "sub-1"
        assert status["platform"] == "sendpulse"

    def test_unlink(self, test_client, test_db_session):
        test_client.post("/api/notifications/push/link", json={"subscriber_id": "sub-1"})

        response = test_client.delete("/api/notifications/push/link")

        assert response.json()["message"] == "Push notifications disabled."
        assert test_db_session.query(PushLink).count() == 0
        assert test_client.get("/api/notifications/preferences").json()["pushEnabled"] is False

    def test_empty_subscriber_id_rejected(self, test_client):
        response = test_client.post("/api/notifications/push/link", json={"subscriber_id": ""})

        assert response.status_code == 422

    def test_subscribe_requires_session(self, test_client):
        response = test_client.post("/api/notifications/push/subscribe")

        assert response.status_code == 409


# ============================================================================
# Session
# ============================================================================


class TestSession:

    def test_start_and_end_session(self, test_client, test_user, test_session_manager):
        response = test_client.post("/api/notifications/session")

        assert response.status_code == 204
        assert test_user.id in test_session_manager.active_user_ids

        response = test_client.delete("/api/notifications/session")

        assert response.status_code == 204
        assert test_session_manager.active_user_ids == set()


# ============================================================================
# Authentication
# ============================================================================


class TestAuthentication:

    @pytest.fixture
    def anonymous_client(self, test_db_session):
        from fastapi.testclient import TestClient
        from backend.src.main import app
        from backend.src.db.database import get_db

        def get_test_db():
            yield test_db_session

        app.dependency_overrides[get_db] = get_test_db
        with TestClient(app) as client:
            yield client
        app.dependency_overrides.clear()

    def test_requires_session_cookie(self, anonymous_client):
        response = anonymous_client.get("/api/notifications")

        assert response.status_code == 401

    def test_health_endpoint_is_public(self, anonymous_client):
        response = anonymous_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
