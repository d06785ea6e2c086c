"""Door check-in from a scanned or typed invitation code."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from .crud import get_participant_by_token, mark_checked_in
from .identity import Identity
from .models import Participant, ParticipantStatus
from .tokens import parse_checkin_token

logger = logging.getLogger("uvicorn.error")


class CheckInOutcome(str, enum.Enum):
    CHECKED_IN = "checked_in"
    ALREADY_CHECKED_IN = "already_checked_in"
    NOT_ACCEPTED = "not_accepted"
    INVALID_TOKEN = "invalid_token"


@dataclass(frozen=True)
class CheckInResult:
    outcome: CheckInOutcome
    message: str
    participant: Participant | None = None

    @property
    def success(self) -> bool:
        return self.outcome is CheckInOutcome.CHECKED_IN


def check_in(
    session: Session, payload: str, identity: Identity | None = None
) -> CheckInResult:
    """Check a participant in from a bare token or an invitation URL.

    Raises ``ValidationError`` when no token can be read from ``payload``.
    An already checked-in participant is reported before the accepted-state
    check so the door sees "already in" rather than a status complaint.

    With an ``identity``, tokens for events the caller does not organize are
    reported as invalid.
    """
    token = parse_checkin_token(payload)
    participant = get_participant_by_token(session, token)
    if participant is None or (
        identity is not None and participant.event.created_by != identity.user_id
    ):
        return CheckInResult(CheckInOutcome.INVALID_TOKEN, "Invalid invitation token")

    name = participant.display_name
    if participant.status == ParticipantStatus.CHECKED_IN.value:
        return CheckInResult(
            CheckInOutcome.ALREADY_CHECKED_IN,
            f"{name} is already checked in!",
            participant,
        )
    if participant.status != ParticipantStatus.ACCEPTED.value:
        return CheckInResult(
            CheckInOutcome.NOT_ACCEPTED,
            "Participant must accept invitation before checking in. "
            f"Current status: {participant.status}",
            participant,
        )

    mark_checked_in(session, participant)
    logger.info("Checked in participant %s for event %s", participant.id, participant.event_id)
    return CheckInResult(
        CheckInOutcome.CHECKED_IN,
        f"Successfully checked in {name}!",
        participant,
    )
