"""
Pytest configuration and fixtures for backend tests.

Provides shared fixtures for:
- Test database sessions
- Fast-timing application settings
- Mocked delivery channels and a wired NotificationEngine
- Sample data factories (teams, users, projects)
- FastAPI test client with auth and database overrides
"""

import os
import pytest
from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ['COSTPILOT_DB_URL'] = 'sqlite:///:memory:'
os.environ['COSTPILOT_ENV'] = 'test'
os.environ.setdefault('SESSION_SECRET_KEY', 'test-session-secret-key-with-at-least-32-chars')

from backend.src.config.settings import get_settings
from backend.src.models import Base, Team, User, UserStatus, Project, ProjectStatus
from backend.src.services.delivery import DeliveryStatus
from backend.src.services.notification_service import NotificationEngine
from backend.src.utils.websocket import ConnectionManager


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope='function')
def test_db_engine():
    """Create an in-memory SQLite database engine for testing."""
    from sqlalchemy import event

    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )

    # Enable foreign key constraints for SQLite
    # This must be set for each connection
    def _fk_pragma_on_connect(dbapi_con, con_record):
        dbapi_con.execute('pragma foreign_keys=ON')

    event.listen(engine, 'connect', _fk_pragma_on_connect)

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope='function')
def test_session_factory(test_db_engine):
    """Session factory bound to the test engine."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_db_engine
    )


@pytest.fixture(scope='function')
def test_db_session(test_session_factory):
    """Create a test database session."""
    session = test_session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ============================================================================
# Settings and Channel Fixtures
# ============================================================================

@pytest.fixture
def test_settings():
    """Settings with millisecond-scale push lifecycle timings."""
    return get_settings().model_copy(update={
        'notification_timezone': 'UTC',
        'email_relay_url': '',
        'push_client_id': '',
        'push_client_secret': '',
        'push_sdk_timeout_seconds': 0.05,
        'push_sdk_poll_interval_seconds': 0.01,
        'push_id_poll_interval_seconds': 0.01,
        'push_id_max_attempts': 3,
        'unlink_push_on_logout': False,
    })


@pytest.fixture
def mock_email_dispatcher():
    """Email channel double reporting successful delivery."""
    dispatcher = AsyncMock()
    dispatcher.dispatch.return_value = DeliveryStatus.SENT
    return dispatcher


@pytest.fixture
def mock_push_dispatcher():
    """Push channel double reporting successful delivery."""
    dispatcher = AsyncMock()
    dispatcher.dispatch.return_value = DeliveryStatus.SENT
    return dispatcher


@pytest.fixture
def notification_engine(test_db_session, test_settings, mock_email_dispatcher, mock_push_dispatcher):
    """NotificationEngine over the test database with mocked channels."""
    return NotificationEngine(
        test_db_session,
        test_settings,
        email_dispatcher=mock_email_dispatcher,
        push_dispatcher=mock_push_dispatcher,
    )


@pytest.fixture
def connection_manager():
    """Fresh WebSocket connection manager (not the process singleton)."""
    return ConnectionManager()


# ============================================================================
# Sample Data Factories
# ============================================================================

@pytest.fixture
def sample_team(test_db_session):
    """Factory for creating sample Team models."""
    def _create(name='Platform'):
        team = Team(name=name)
        test_db_session.add(team)
        test_db_session.commit()
        test_db_session.refresh(team)
        return team
    return _create


@pytest.fixture
def sample_user(test_db_session):
    """Factory for creating sample User models."""
    counter = {'n': 0}

    def _create(
        name=None,
        email=None,
        no_email=False,
        role='Project Manager',
        status=UserStatus.ACTIVE,
        preferences=None,
        team=None,
    ):
        counter['n'] += 1
        user = User(
            name=name or f'User {counter["n"]}',
            email=None if no_email else (email or f'user{counter["n"]}@example.com'),
            role=role,
            status=status,
            notification_preferences=preferences,
            team_id=team.id if team else None,
        )
        test_db_session.add(user)
        test_db_session.commit()
        test_db_session.refresh(user)
        return user
    return _create


@pytest.fixture
def sample_project(test_db_session):
    """Factory for creating sample Project models."""
    def _create(
        title='Data Center Migration',
        leader=None,
        status=ProjectStatus.IN_PROGRESS,
        end_date=None,
        budget=Decimal('1000.00'),
        spent=Decimal('0.00'),
        created_at=None,
    ):
        project = Project(
            title=title,
            status=status.value,
            end_date=end_date,
            budget=budget,
            spent=spent,
            team_leader_id=leader.id if leader else None,
            created_at=created_at or datetime.utcnow(),
        )
        test_db_session.add(project)
        test_db_session.commit()
        test_db_session.refresh(project)
        return project
    return _create


@pytest.fixture
def push_preferences():
    """Stored preference blob with push and email switched on."""
    return {
        'inApp': {
            'taskUpdates': True,
            'approvals': True,
            'costOverruns': True,
            'deadlines': True,
            'system': True,
        },
        'email': {
            'taskUpdates': False,
            'approvals': True,
            'costOverruns': True,
            'deadlines': True,
            'system': False,
        },
        'pushEnabled': True,
        'emailEnabled': True,
        'priorityThreshold': 'Medium',
        'projectSubscriptions': [],
    }


# ============================================================================
# API Fixtures
# ============================================================================

@pytest.fixture
def test_user(sample_user):
    """The authenticated user for API tests."""
    return sample_user(name='Alice Manager', email='alice@example.com')


@pytest.fixture
def test_session_manager(test_session_factory, test_settings):
    """SessionManager over the test database."""
    from backend.src.services.session_service import SessionManager

    return SessionManager(session_factory=test_session_factory, settings=test_settings)


@pytest.fixture
def test_client(test_db_session, test_user, test_session_manager):
    """Create a test client for FastAPI application."""
    from fastapi.testclient import TestClient
    from backend.src.main import app
    from backend.src.db.database import get_db
    from backend.src.middleware.auth import SessionIdentity, require_auth
    from backend.src.services.session_service import get_session_manager

    # Override dependencies
    def get_test_db():
        try:
            yield test_db_session
        finally:
            pass

    identity = SessionIdentity(
        user_id=test_user.id,
        user_guid=test_user.guid,
        user_email=test_user.email,
    )

    app.dependency_overrides[get_db] = get_test_db
    app.dependency_overrides[require_auth] = lambda: identity
    app.dependency_overrides[get_session_manager] = lambda: test_session_manager

    with TestClient(app) as client:
        yield client

    # Clear overrides
    app.dependency_overrides.clear()
