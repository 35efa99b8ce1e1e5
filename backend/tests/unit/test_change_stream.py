"""
Unit tests for the in-process change stream.
"""

import pytest

from backend.src.db.change_stream import ChangeEvent, ChangeStream
from backend.src.models.notification import Notification


@pytest.fixture
def stream():
    stream = ChangeStream()
    stream.install()
    yield stream
    stream.uninstall()


def _notification(user_id, title="Task Completed"):
    return Notification(
        user_id=user_id,
        category="TaskUpdate",
        priority="Medium",
        title=title,
        message="Wiring completed by Bob.",
        link="",
    )


class TestPublish:
    """Tests for ChangeStream.publish and subscriptions."""

    def test_routes_by_table(self):
        stream = ChangeStream()
        received = []
        stream.subscribe("projects", received.append)

        stream.publish(ChangeEvent("projects", "update", key="prj_1"))
        stream.publish(ChangeEvent("teams", "update", key="ten_1"))

        assert [c.table for c in received] == ["projects"]

    def test_where_filter(self):
        stream = ChangeStream()
        received = []
        stream.subscribe("notifications", received.append, where=lambda c: c.user_id == 1)

        stream.publish(ChangeEvent("notifications", "insert", user_id=1))
        stream.publish(ChangeEvent("notifications", "insert", user_id=2))

        assert [c.user_id for c in received] == [1]

    def test_unsubscribe_stops_delivery(self):
        stream = ChangeStream()
        received = []
        handle = stream.subscribe("users", received.append)

        handle.unsubscribe()
        handle.unsubscribe()
        stream.publish(ChangeEvent("users", "update"))

        assert received == []
        assert stream.subscriber_count == 0

    def test_failing_subscriber_does_not_block_others(self):
        stream = ChangeStream()
        received = []

        def broken(change):
            raise RuntimeError("listener bug")

        stream.subscribe("users", broken)
        stream.subscribe("users", received.append)

        stream.publish(ChangeEvent("users", "update"))

        assert len(received) == 1


class TestSessionHooks:
    """Tests for the flush/commit/rollback hooks."""

    def test_commit_publishes_insert(self, stream, test_db_session, sample_user):
        user = sample_user()
        received = []
        stream.subscribe("notifications", received.append)

        test_db_session.add(_notification(user.id))
        test_db_session.commit()

        assert len(received) == 1
        assert received[0].operation == "insert"
        assert received[0].user_id == user.id

    def test_update_and_delete_are_published(self, stream, test_db_session, sample_user):
        user = sample_user()
        notification = _notification(user.id)
        test_db_session.add(notification)
        test_db_session.commit()
        received = []
        stream.subscribe("notifications", received.append)

        notification.is_read = True
        test_db_session.commit()
        test_db_session.delete(notification)
        test_db_session.commit()

        assert [c.operation for c in received] == ["update", "delete"]

    def test_rollback_discards_changes(self, stream, test_db_session, sample_user):
        user = sample_user()
        received = []
        stream.subscribe("notifications", received.append)

        test_db_session.add(_notification(user.id))
        test_db_session.flush()
        test_db_session.rollback()
        test_db_session.commit()

        assert received == []

    def test_uninstall_detaches(self, test_db_session, sample_user):
        stream = ChangeStream()
        stream.install()
        stream.uninstall()
        received = []
        stream.subscribe("users", received.append)

        sample_user()

        assert received == []

    def test_each_installed_stream_receives_the_commit(self, stream, test_db_session, sample_user):
        other = ChangeStream()
        other.install()
        try:
            user = sample_user()
            first, second = [], []
            stream.subscribe("notifications", first.append)
            other.subscribe("notifications", second.append)

            test_db_session.add(_notification(user.id))
            test_db_session.commit()

            assert [c.operation for c in first] == ["insert"]
            assert [c.operation for c in second] == ["insert"]
        finally:
            other.uninstall()
