from __future__ import annotations

import pytest

from guestpass import crud, notifications
from guestpass.crud import ParticipantInput
from guestpass.errors import AlreadyRegisteredError
from guestpass.notifications import ParticipantChange, ParticipantChangeBus


@pytest.fixture()
def changes(make_event):
    event = make_event()
    received: list[ParticipantChange] = []
    unsubscribe = notifications.subscribe(event.id, received.append)
    yield event, received
    unsubscribe()


def test_bus_delivers_only_to_matching_event():
    bus = ParticipantChangeBus()
    seen = []
    bus.subscribe("event-1", seen.append)

    bus.publish(ParticipantChange("event-2", "p-1", "insert"))
    bus.publish(ParticipantChange("event-1", "p-2", "update"))

    assert seen == [ParticipantChange("event-1", "p-2", "update")]


def test_unsubscribe_stops_delivery():
    bus = ParticipantChangeBus()
    seen = []
    unsubscribe = bus.subscribe("event-1", seen.append)
    assert bus.subscriber_count("event-1") == 1

    unsubscribe()
    bus.publish(ParticipantChange("event-1", "p-1", "delete"))

    assert seen == []
    assert bus.subscriber_count("event-1") == 0


def test_failing_subscriber_does_not_block_others():
    bus = ParticipantChangeBus()
    seen = []

    def explode(change):
        raise RuntimeError("view went away")

    bus.subscribe("event-1", explode)
    bus.subscribe("event-1", seen.append)
    bus.publish(ParticipantChange("event-1", "p-1", "insert"))

    assert len(seen) == 1


def test_committed_changes_are_published(session, changes, add_guests):
    event, received = changes
    (guest,) = add_guests(event, "guest@example.com")
    assert received == [ParticipantChange(event.id, guest.id, "insert")]

    crud.respond_to_invitation(session, guest, "accepted")
    session.commit()
    crud.delete_participant(session, guest)
    session.commit()

    assert [c.kind for c in received] == ["insert", "update", "delete"]


def test_uncommitted_changes_are_not_published(session, changes):
    event, received = changes
    crud.add_participants(
        session, event, [ParticipantInput("guest@example.com")], base_url="http://x"
    )
    session.rollback()

    assert received == []


def test_failed_batch_publishes_nothing(session, changes, add_guests):
    event, received = changes
    add_guests(event, "dup@example.com")
    received.clear()

    with pytest.raises(AlreadyRegisteredError):
        crud.add_participants(
            session,
            event,
            [ParticipantInput("new@example.com"), ParticipantInput("dup@example.com")],
            base_url="http://x",
        )
    session.commit()

    assert received == []
