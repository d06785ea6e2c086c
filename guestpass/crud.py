"""CRUD helpers for profiles, events, and participants."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import NamedTuple, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import (
    AlreadyRegisteredError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from .identity import Identity
from .models import (
    PARTICIPANT_STATUSES,
    RSVP_RESPONSES,
    Event,
    Participant,
    ParticipantStatus,
    Profile,
)
from .tokens import invitation_url, mint_invitation_token
from .utils import to_naive_utc, utcnow


class ParticipantInput(NamedTuple):
    email: str
    name: str | None = None


def _now() -> datetime:
    return utcnow()


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) == "23505":
        return True
    if getattr(orig, "sqlite_errorname", None) == "SQLITE_CONSTRAINT_UNIQUE":
        return True
    return "unique" in str(orig or exc).lower()


def _raw_message(exc: SQLAlchemyError) -> str:
    return str(getattr(exc, "orig", None) or exc)


def _normalize_status(status: str | None, *, allowed=PARTICIPANT_STATUSES) -> str:
    normalized = (status or "").strip().lower()
    if normalized not in allowed:
        raise ValidationError(
            "INVALID_STATUS",
            f"Status must be one of: {', '.join(allowed)}",
        )
    return normalized


def _require_text(value: str | None, field: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError("INVALID_REQUEST", f"{field} is required")
    return cleaned


def _validate_capacity(capacity: int | None) -> int:
    if capacity is None or isinstance(capacity, bool) or int(capacity) < 1:
        raise ValidationError("INVALID_CAPACITY", "Capacity must be at least 1")
    return int(capacity)


def get_profile(session: Session, user_id: str) -> Profile | None:
    return session.get(Profile, user_id)


def ensure_profile(session: Session, identity: Identity) -> Profile:
    """Return the caller's profile, creating it on first use.

    Losing a creation race to a concurrent request is a success: the row the
    other request wrote is returned.
    """
    profile = get_profile(session, identity.user_id)
    if profile:
        return profile
    profile = Profile(
        id=identity.user_id,
        email=identity.email or "",
        full_name=identity.full_name or identity.email or "",
    )
    session.add(profile)
    try:
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        if not _is_unique_violation(exc):
            raise StorageError(_raw_message(exc)) from exc
        existing = get_profile(session, identity.user_id)
        if existing is None:
            raise StorageError(_raw_message(exc)) from exc
        return existing
    return profile


def create_event(
    session: Session,
    identity: Identity,
    *,
    title: str,
    description: str | None,
    location: str,
    capacity: int,
    event_date: datetime,
) -> Event:
    """Create and persist a new event owned by the caller."""
    ensure_profile(session, identity)
    event = Event(
        title=_require_text(title, "Title"),
        description=(description or "").strip() or None,
        location=_require_text(location, "Location"),
        capacity=_validate_capacity(capacity),
        event_date=to_naive_utc(event_date),
        created_by=identity.user_id,
    )
    session.add(event)
    session.flush()
    return event


def list_events(session: Session, identity: Identity) -> Sequence[Event]:
    stmt = (
        select(Event)
        .where(Event.created_by == identity.user_id)
        .order_by(Event.event_date.asc())
    )
    return session.scalars(stmt).all()


def get_owned_event(session: Session, identity: Identity, event_id: str) -> Event:
    """Return the event if the caller owns it; foreign events look missing."""
    event = session.get(Event, event_id)
    if not event or event.created_by != identity.user_id:
        raise NotFoundError("EVENT_NOT_FOUND", "Event not found or unauthorized")
    return event


def update_event(
    session: Session,
    event: Event,
    *,
    title: str | None = None,
    description: str | None = None,
    location: str | None = None,
    capacity: int | None = None,
    event_date: datetime | None = None,
    clear_description: bool = False,
) -> Event:
    """Update the supplied fields of an existing event."""
    if title is not None:
        event.title = _require_text(title, "Title")
    if description is not None or clear_description:
        event.description = (description or "").strip() or None
    if location is not None:
        event.location = _require_text(location, "Location")
    if capacity is not None:
        event.capacity = _validate_capacity(capacity)
    if event_date is not None:
        event.event_date = to_naive_utc(event_date)
    event.updated_at = _now()
    session.add(event)
    session.flush()
    return event


def delete_event(session: Session, event: Event) -> None:
    session.delete(event)
    session.flush()


def add_participants(
    session: Session,
    event: Event,
    entries: Iterable[ParticipantInput],
    *,
    base_url: str,
) -> list[Participant]:
    """Add invitees in one batch, minting an invitation token for each."""
    valid = [
        ParticipantInput(entry.email.strip(), (entry.name or "").strip() or None)
        for entry in entries
        if (entry.email or "").strip()
    ]
    if not valid:
        raise ValidationError(
            "NO_VALID_PARTICIPANTS",
            "Please add at least one participant with an email address",
        )

    participants = []
    for entry in valid:
        token = mint_invitation_token()
        participants.append(
            Participant(
                event_id=event.id,
                email=entry.email,
                name=entry.name,
                status=ParticipantStatus.PENDING.value,
                invitation_token=token,
                qr_code_data=invitation_url(base_url, token),
            )
        )
    session.add_all(participants)
    try:
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        if _is_unique_violation(exc):
            raise AlreadyRegisteredError() from exc
        raise StorageError(_raw_message(exc)) from exc
    except SQLAlchemyError as exc:
        session.rollback()
        raise StorageError(_raw_message(exc)) from exc
    return participants


def list_participants(session: Session, event: Event) -> Sequence[Participant]:
    stmt = (
        select(Participant)
        .where(Participant.event_id == event.id)
        .order_by(Participant.created_at.desc())
    )
    return session.scalars(stmt).all()


def get_event_participant(
    session: Session, event: Event, participant_id: str
) -> Participant:
    participant = session.get(Participant, participant_id)
    if not participant or participant.event_id != event.id:
        raise NotFoundError("PARTICIPANT_NOT_FOUND", "Participant not found")
    return participant


def get_participants_by_ids(
    session: Session, event: Event, participant_ids: Iterable[str]
) -> Sequence[Participant]:
    ids = list(dict.fromkeys(participant_ids))
    if not ids:
        return []
    stmt = (
        select(Participant)
        .where(Participant.event_id == event.id, Participant.id.in_(ids))
        .order_by(Participant.created_at.asc())
    )
    return session.scalars(stmt).all()


def get_participant_by_token(session: Session, token: str) -> Participant | None:
    stmt = select(Participant).where(Participant.invitation_token == token)
    return session.scalars(stmt).first()


def delete_participant(session: Session, participant: Participant) -> None:
    session.delete(participant)
    session.flush()


def set_participant_status(
    session: Session, participant: Participant, status: str
) -> Participant:
    """Administrative override; any of the four statuses, from any status."""
    participant.status = _normalize_status(status)
    participant.updated_at = _now()
    session.add(participant)
    session.flush()
    return participant


def respond_to_invitation(
    session: Session, participant: Participant, response: str
) -> Participant:
    """Record a participant's accept/decline answer.

    The current status is not checked; callers only offer the choice while
    the participant is still pending.
    """
    participant.status = _normalize_status(response, allowed=RSVP_RESPONSES)
    participant.updated_at = _now()
    session.add(participant)
    session.flush()
    return participant


def record_invitation_sent(
    session: Session, participant: Participant, invitation_link: str
) -> Participant:
    participant.qr_code_data = invitation_link
    participant.updated_at = _now()
    session.add(participant)
    session.flush()
    return participant


def mark_checked_in(session: Session, participant: Participant) -> Participant:
    participant.status = ParticipantStatus.CHECKED_IN.value
    participant.updated_at = _now()
    session.add(participant)
    session.flush()
    return participant
