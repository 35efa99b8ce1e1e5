"""
Unit tests for PushLinkService.

Tests the one-link-per-user upsert and removal.
"""

import pytest

from backend.src.models.push_subscription import PushLink
from backend.src.services.exceptions import ValidationError
from backend.src.services.push_subscription_service import PushLinkService


@pytest.fixture
def link_service(test_db_session):
    """Create a PushLinkService instance."""
    return PushLinkService(db=test_db_session)


class TestUpsertLink:
    """Tests for PushLinkService.upsert_link."""

    def test_first_link_is_created(self, link_service, sample_user):
        user = sample_user()

        link, created = link_service.upsert_link(user.id, "sub-1")

        assert created is True
        assert link.user_id == user.id
        assert link.subscriber_id == "sub-1"
        assert link.platform == "sendpulse"

    def test_relink_replaces_existing(self, link_service, sample_user, test_db_session):
        user = sample_user()
        link_service.upsert_link(user.id, "sub-1")

        link, created = link_service.upsert_link(user.id, "sub-2", platform="webpush")

        assert created is False
        assert link.subscriber_id == "sub-2"
        assert link.platform == "webpush"
        assert test_db_session.query(PushLink).count() == 1

    def test_links_are_per_user(self, link_service, sample_user, test_db_session):
        alice = sample_user()
        bob = sample_user()

        link_service.upsert_link(alice.id, "sub-a")
        link_service.upsert_link(bob.id, "sub-b")

        assert link_service.get_link(alice.id).subscriber_id == "sub-a"
        assert link_service.get_link(bob.id).subscriber_id == "sub-b"
        assert test_db_session.query(PushLink).count() == 2

    def test_blank_subscriber_id_raises(self, link_service, sample_user, test_db_session):
        user = sample_user()

        with pytest.raises(ValidationError) as exc_info:
            link_service.upsert_link(user.id, "")

        assert exc_info.value.field == "subscriber_id"
        assert test_db_session.query(PushLink).count() == 0


class TestRemoveLink:
    """Tests for PushLinkService.remove_link."""

    def test_remove_existing(self, link_service, sample_user):
        user = sample_user()
        link_service.upsert_link(user.id, "sub-1")

        assert link_service.remove_link(user.id) is True
        assert link_service.get_link(user.id) is None

    def test_remove_missing_returns_false(self, link_service, sample_user):
        user = sample_user()

        assert link_service.remove_link(user.id) is False

    def test_link_removed_with_user(self, link_service, sample_user, test_db_session):
        user = sample_user()
        link_service.upsert_link(user.id, "sub-1")

        test_db_session.delete(user)
        test_db_session.commit()

        assert test_db_session.query(PushLink).count() == 0
