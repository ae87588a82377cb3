"""Pytest configuration and fixtures."""

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from helpdesk.models import ApiKey, Base, Ticket, User, utcnow
from helpdesk.notification_config import NotificationConfig
from helpdesk.notifier import TicketNotifier
from helpdesk.tickets import TicketService


@pytest.fixture
def db_session():
    """Create an in-memory database session for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def admin_user(db_session):
    user = User(id="admin-1", email="admin@example.com", name="Admin", role="admin")
    db_session.add(user)
    db_session.add(ApiKey(key="hd_admin", name="test", user_id=user.id))
    db_session.commit()
    return user


@pytest.fixture
def regular_user(db_session):
    user = User(id="user-1", email="maria@example.com", name="Maria", role="user")
    db_session.add(user)
    db_session.add(ApiKey(key="hd_maria", name="test", user_id=user.id))
    db_session.commit()
    return user


@pytest.fixture
def other_user(db_session):
    user = User(id="user-2", email="joao@example.com", name="João", role="user")
    db_session.add(user)
    db_session.add(ApiKey(key="hd_joao", name="test", user_id=user.id))
    db_session.commit()
    return user


@pytest.fixture
def sample_ticket(db_session, regular_user):
    """An open medium-priority ticket opened by the regular user."""
    now = utcnow()
    ticket = Ticket(
        id="ticket-1",
        title="Impressora não imprime",
        description="A impressora do segundo andar parou de imprimir.",
        category="hardware",
        priority="medium",
        status="open",
        deadline=now + timedelta(days=3),
        user_id=regular_user.id,
        created_at=now,
        updated_at=now,
    )
    db_session.add(ticket)
    db_session.commit()
    return ticket


@pytest.fixture
def quiet_notifier(db_session):
    """Notifier with email and Slack switched off."""
    email = MagicMock()
    email.enabled = False
    slack = MagicMock()
    slack.send_message = AsyncMock(return_value=True)
    return TicketNotifier(
        db_session,
        config=NotificationConfig(channels={"in_app": True, "email": False, "slack": False}),
        email=email,
        slack=slack,
    )


@pytest.fixture
def dispatcher():
    """Webhook dispatcher that delivers nothing."""
    mock = MagicMock()
    mock.dispatch = AsyncMock(return_value=None)
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def service(db_session, dispatcher, quiet_notifier):
    return TicketService(db_session, dispatcher=dispatcher, notifier=quiet_notifier)
