"""Shared pytest fixtures for GuestPass."""

from __future__ import annotations

import sys
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from guestpass import api, database, storage
from guestpass.crud import ParticipantInput, add_participants, create_event
from guestpass.identity import Identity
from guestpass.mailer import InvitationMessage
from guestpass.models import Base
from guestpass.utils import utcnow

BASE_URL = "https://guests.example.com"


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    database.SessionLocal.remove()
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield
    database.SessionLocal.remove()


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def organizer() -> Identity:
    return Identity(user_id="user-organizer", email="host@example.com", full_name="Hana Host")


@pytest.fixture()
def stranger() -> Identity:
    return Identity(user_id="user-stranger", email="other@example.com")


@pytest.fixture()
def make_event(session, organizer):
    def _make(*, capacity: int = 10, title: str = "Launch Party", days_ahead: int = 7):
        event = create_event(
            session,
            organizer,
            title=title,
            description="Drinks and demos",
            location="Main Hall",
            capacity=capacity,
            event_date=utcnow().replace(microsecond=0) + timedelta(days=days_ahead),
        )
        session.commit()
        return event

    return _make


@pytest.fixture()
def add_guests(session):
    def _add(event, *emails: str):
        participants = add_participants(
            session,
            event,
            [ParticipantInput(email) for email in emails],
            base_url=BASE_URL,
        )
        session.commit()
        return participants

    return _add


class RecordingMailer:
    """Mailer double that records messages and can fail selected recipients."""

    def __init__(self, failures: dict[str, Exception] | None = None) -> None:
        self.sent: list[InvitationMessage] = []
        self.failures = failures or {}

    def send_invitation(self, message: InvitationMessage) -> str:
        if message.to in self.failures:
            raise self.failures[message.to]
        self.sent.append(message)
        return f"msg-{len(self.sent)}"

    def close(self) -> None:
        pass


@pytest.fixture()
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture()
def mailer_factory():
    return RecordingMailer
