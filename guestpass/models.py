"""SQLAlchemy models for GuestPass."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class ParticipantStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CHECKED_IN = "checked-in"


PARTICIPANT_STATUSES = tuple(status.value for status in ParticipantStatus)
RSVP_RESPONSES = (ParticipantStatus.ACCEPTED.value, ParticipantStatus.DECLINED.value)


class Profile(Base):
    __tablename__ = "profiles"

    # Same value as the upstream auth identity.
    id = Column(String(64), primary_key=True)
    email = Column(String(320), nullable=False, default="")
    full_name = Column(String(255), nullable=False, default="")
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    events = relationship("Event", back_populates="organizer")

    @property
    def display_name(self) -> str:
        return self.full_name or self.email


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (CheckConstraint("capacity >= 1", name="ck_events_capacity"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=False)
    capacity = Column(Integer, nullable=False)
    event_date = Column(DateTime, nullable=False)
    created_by = Column(
        String(64), ForeignKey("profiles.id"), nullable=False, index=True
    )
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    organizer = relationship("Profile", back_populates="events")
    participants = relationship(
        "Participant",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="Participant.created_at.desc()",
    )


class Participant(Base):
    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("event_id", "email", name="uq_participants_event_email"),
        CheckConstraint(
            "status IN ('pending', 'accepted', 'declined', 'checked-in')",
            name="ck_participants_status",
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    email = Column(String(320), nullable=False)
    name = Column(String(255), nullable=True)
    status = Column(
        String(16), nullable=False, default=ParticipantStatus.PENDING.value
    )
    invitation_token = Column(String(64), nullable=False, unique=True)
    qr_code_data = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    event = relationship("Event", back_populates="participants")

    @property
    def display_name(self) -> str:
        return self.name or self.email
