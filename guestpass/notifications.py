"""Participant change notifications.

Views subscribe per event and are told whenever a participant row of that
event is inserted, updated or deleted. Changes are gathered from SQLAlchemy
flushes and only published once the owning session commits.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable

from sqlalchemy import event
from sqlalchemy.orm import Session

from .models import Participant

logger = logging.getLogger("uvicorn.error")

_PENDING_KEY = "guestpass.participant_changes"


@dataclass(frozen=True)
class ParticipantChange:
    event_id: str
    participant_id: str
    kind: str  # insert | update | delete


ChangeCallback = Callable[[ParticipantChange], None]


class ParticipantChangeBus:
    """In-process fan-out of participant changes keyed by event id."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[ChangeCallback]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_id: str, on_change: ChangeCallback) -> Callable[[], None]:
        """Register ``on_change`` for ``event_id`` and return an unsubscribe callable."""
        with self._lock:
            self._subscribers[event_id].append(on_change)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(event_id)
                if callbacks and on_change in callbacks:
                    callbacks.remove(on_change)
                if not callbacks:
                    self._subscribers.pop(event_id, None)

        return unsubscribe

    def subscriber_count(self, event_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(event_id, ()))

    def publish(self, change: ParticipantChange) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(change.event_id, ()))
        for callback in callbacks:
            try:
                callback(change)
            except Exception:
                logger.exception(
                    "Participant change subscriber failed for event %s",
                    change.event_id,
                )


bus = ParticipantChangeBus()


def subscribe(event_id: str, on_change: ChangeCallback) -> Callable[[], None]:
    return bus.subscribe(event_id, on_change)


@event.listens_for(Session, "after_flush")
def _collect_participant_changes(session: Session, flush_context) -> None:
    pending = session.info.setdefault(_PENDING_KEY, [])
    for obj in session.new:
        if isinstance(obj, Participant):
            pending.append(ParticipantChange(obj.event_id, obj.id, "insert"))
    for obj in session.dirty:
        if isinstance(obj, Participant) and session.is_modified(obj):
            pending.append(ParticipantChange(obj.event_id, obj.id, "update"))
    for obj in session.deleted:
        if isinstance(obj, Participant):
            pending.append(ParticipantChange(obj.event_id, obj.id, "delete"))


@event.listens_for(Session, "after_commit")
def _publish_participant_changes(session: Session) -> None:
    for change in session.info.pop(_PENDING_KEY, []):
        bus.publish(change)


@event.listens_for(Session, "after_rollback")
def _discard_participant_changes(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)
