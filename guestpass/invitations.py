"""Invitation links and bulk invitation sending."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .crud import (
    get_owned_event,
    get_participant_by_token,
    get_participants_by_ids,
    get_profile,
    record_invitation_sent,
)
from .errors import ConfigurationError, DeliveryError, NotFoundError
from .identity import Identity
from .mailer import InvitationMessage
from .models import Event, Participant, ParticipantStatus, Profile
from .tokens import invitation_url
from .utils import format_event_date

logger = logging.getLogger("uvicorn.error")

DEFAULT_ORGANIZER_NAME = "Event Organizer"

MISSING_API_KEY_MESSAGE = (
    "Email service not configured. Please add GUESTPASS_RESEND_API_KEY to your "
    "environment variables."
)

_unverified_domain_pattern = re.compile(r"domain (?:is )?not verified", re.IGNORECASE)


class Mailer(Protocol):
    def send_invitation(self, message: InvitationMessage) -> str: ...


@dataclass(frozen=True)
class InvitationSent:
    participant_id: str
    email: str


@dataclass(frozen=True)
class InvitationFailed:
    participant_id: str
    email: str
    error: str


@dataclass
class InvitationReport:
    results: list[InvitationSent] = field(default_factory=list)
    errors: list[InvitationFailed] = field(default_factory=list)

    @property
    def total_sent(self) -> int:
        return len(self.results)

    @property
    def total_failed(self) -> int:
        return len(self.errors)

    @property
    def success(self) -> bool:
        return self.total_sent > 0

    @property
    def domain_verification_required(self) -> bool:
        """True when nothing went out and every failure blames the sending domain."""
        if self.results or not self.errors:
            return False
        return all(
            _unverified_domain_pattern.search(failure.error) for failure in self.errors
        )


def organizer_name(profile: Profile | None, identity: Identity) -> str:
    if profile and profile.display_name:
        return profile.display_name
    return identity.email or DEFAULT_ORGANIZER_NAME


def build_invitation_message(
    participant: Participant,
    event: Event,
    *,
    organizer: str,
    invitation_link: str,
) -> InvitationMessage:
    return InvitationMessage(
        to=participant.email,
        participant_name=participant.name,
        event_title=event.title,
        event_description=event.description,
        event_location=event.location,
        event_date=format_event_date(event.event_date),
        invitation_url=invitation_link,
        organizer_name=organizer,
    )


def _deliver(mailer: Mailer, message: InvitationMessage) -> str | None:
    """Send one message; return the failure text or ``None`` on success."""
    try:
        mailer.send_invitation(message)
    except DeliveryError as exc:
        logger.warning("Failed to send invitation to %s: %s", message.to, exc)
        return str(exc) or "Unknown error"
    except Exception as exc:
        logger.exception("Unexpected error sending invitation to %s", message.to)
        return str(exc) or "Unknown error"
    return None


def send_invitations(
    session: Session,
    identity: Identity,
    *,
    event_id: str,
    participant_ids: Iterable[str],
    mailer: Mailer | None,
    base_url: str,
) -> InvitationReport:
    """Email every still-pending participant among ``participant_ids``.

    Preconditions fail before anything is sent. After that each participant
    is attempted on its own: a failure is recorded and the loop moves on, and
    each success is committed as soon as it happens.
    """
    if mailer is None:
        raise ConfigurationError("MISSING_API_KEY", MISSING_API_KEY_MESSAGE)

    event = get_owned_event(session, identity, event_id)
    participants = [
        p
        for p in get_participants_by_ids(session, event, participant_ids)
        if p.status == ParticipantStatus.PENDING.value
    ]
    if not participants:
        raise NotFoundError("PARTICIPANTS_NOT_FOUND", "Participants not found")

    organizer = organizer_name(get_profile(session, identity.user_id), identity)
    report = InvitationReport()
    for participant in participants:
        participant_id, email = participant.id, participant.email
        link = invitation_url(base_url, participant.invitation_token)
        message = build_invitation_message(
            participant, event, organizer=organizer, invitation_link=link
        )
        failure = _deliver(mailer, message)
        if failure is not None:
            report.errors.append(InvitationFailed(participant_id, email, failure))
            continue

        try:
            record_invitation_sent(session, participant, link)
            session.commit()
        except SQLAlchemyError:
            # The email already left; only the bookkeeping is lost.
            session.rollback()
            logger.exception(
                "Invitation sent to %s but participant %s was not updated",
                email,
                participant_id,
            )
        report.results.append(InvitationSent(participant_id, email))

    logger.info(
        "Invitations for event %s: %s sent, %s failed",
        event_id,
        report.total_sent,
        report.total_failed,
    )
    return report


def resolve_invitation(session: Session, token: str) -> Participant:
    """Return the participant behind an invitation link."""
    participant = get_participant_by_token(session, (token or "").strip())
    if not participant or participant.event is None:
        raise NotFoundError(
            "INVALID_TOKEN", "This invitation link is not valid or has expired."
        )
    return participant
