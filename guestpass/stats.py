"""Read-only aggregates over an event's guest list.

Every helper works on whatever snapshot it is handed and keeps no state, so
callers recompute on each read.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from .models import PARTICIPANT_STATUSES, Participant, ParticipantStatus


def available_seats(capacity: int, participants: Iterable[Participant]) -> int:
    """Capacity minus everyone who has not declined. May go negative."""
    holding = sum(
        1 for p in participants if p.status != ParticipantStatus.DECLINED.value
    )
    return capacity - holding


def checked_in_count(participants: Iterable[Participant]) -> int:
    return sum(
        1 for p in participants if p.status == ParticipantStatus.CHECKED_IN.value
    )


def pending_count(participants: Iterable[Participant]) -> int:
    return sum(1 for p in participants if p.status == ParticipantStatus.PENDING.value)


def status_breakdown(participants: Iterable[Participant]) -> dict[str, int]:
    counts = {status: 0 for status in PARTICIPANT_STATUSES}
    for participant in participants:
        if participant.status in counts:
            counts[participant.status] += 1
    return counts


def event_stats(capacity: int, participants: Sequence[Participant]) -> dict:
    return {
        "capacity": capacity,
        "total": len(participants),
        "available_seats": available_seats(capacity, participants),
        "checked_in": checked_in_count(participants),
        "pending": pending_count(participants),
        "by_status": status_breakdown(participants),
    }
