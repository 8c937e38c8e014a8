"""
Status Machine Tests.

Trip and load transition graphs, derived snapshots and the events each
transition appends.
"""

import pytest
from datetime import timedelta
from sqlalchemy import select

from backend.app.core.exceptions import (
    InvalidStatusError, InvalidStatusTransitionError, ResourceNotFoundError
)
from backend.app.core.timeutils import utcnow, ensure_utc
from backend.app.domain.tracking.queries import get_tracking_status
from backend.app.domain.tracking.status_machine import (
    TRIP_TRANSITIONS, LOAD_TRANSITIONS,
    is_valid_transition, is_valid_load_transition,
    completion_percent, load_completion_percent,
    compare_and_set_trip_status, compare_and_set_load_status,
    transition_trip, transition_load,
)
from backend.app.models.tracking_event import TrackingEvent, TrackingEventType
from backend.app.models.trip_enums import TripStatus, LoadStatus


@pytest.mark.parametrize("current, new", [
    ("PLANNED", "ACTIVE"),
    ("PLANNED", "CANCELLED"),
    ("ACTIVE", "AT_PICKUP"),
    ("ACTIVE", "IN_TRANSIT"),
    ("AT_PICKUP", "ACTIVE"),
    ("IN_TRANSIT", "DELAYED"),
    ("DELAYED", "IN_TRANSIT"),
    ("AT_DELIVERY", "IN_TRANSIT"),
    ("AT_DELIVERY", "COMPLETED"),
])
def test_allowed_trip_transitions(current, new):
    assert is_valid_transition(current, new)


@pytest.mark.parametrize("current, new", [
    ("PLANNED", "COMPLETED"),
    ("PLANNED", "PLANNED"),
    ("IN_TRANSIT", "CANCELLED"),
    ("COMPLETED", "IN_TRANSIT"),
    ("CANCELLED", "ACTIVE"),
    ("PLANNED", "FLYING"),
])
def test_rejected_trip_transitions(current, new):
    assert not is_valid_transition(current, new)


def test_terminal_states_have_no_exits():
    assert TRIP_TRANSITIONS[TripStatus.COMPLETED] == frozenset()
    assert TRIP_TRANSITIONS[TripStatus.CANCELLED] == frozenset()
    assert LOAD_TRANSITIONS[LoadStatus.DELIVERED] == frozenset()


def test_every_state_has_a_graph_entry():
    assert set(TRIP_TRANSITIONS) == set(TripStatus)
    assert set(LOAD_TRANSITIONS) == set(LoadStatus)


def test_completion_percentages():
    assert completion_percent("PLANNED") == 0
    assert completion_percent("ACTIVE") == 10
    assert completion_percent("AT_PICKUP") == 25
    assert completion_percent("IN_TRANSIT") == 50
    assert completion_percent("DELAYED") == 50
    assert completion_percent("AT_DELIVERY") == 90
    assert completion_percent("COMPLETED") == 100
    assert completion_percent("UNKNOWN") == 0


def test_load_graph():
    assert is_valid_load_transition("BOOKED", "PICKUP_SCHEDULED")
    assert is_valid_load_transition("OUT_FOR_DELIVERY", "IN_TRANSIT")
    assert is_valid_load_transition("IN_TRANSIT", "EXCEPTION")
    assert is_valid_load_transition("EXCEPTION", "DELIVERED")
    assert not is_valid_load_transition("BOOKED", "DELIVERED")
    assert not is_valid_load_transition("DELIVERED", "EXCEPTION")
    assert not is_valid_load_transition("EXCEPTION", "BOOKED")
    assert load_completion_percent("DELIVERED") == 100
    assert load_completion_percent("BOOKED") == 10


@pytest.mark.asyncio
async def test_transition_creates_snapshot_and_event(db_session, make_trip):
    trip = await make_trip(status=TripStatus.PLANNED)

    snapshot = await transition_trip(db_session, trip.id, "ACTIVE")

    assert snapshot.current_status == "ACTIVE"
    assert snapshot.previous_status == "PLANNED"
    assert snapshot.completion_percent == 10
    assert snapshot.next_milestone == "AT_PICKUP"
    assert trip.status == TripStatus.ACTIVE

    events = (await db_session.execute(
        select(TrackingEvent).where(TrackingEvent.trip_id == trip.id)
    )).scalars().all()
    assert [e.event_type for e in events] == [TrackingEventType.STATUS_CHANGE]
    assert events[0].event_data == {"from": "PLANNED", "to": "ACTIVE"}


@pytest.mark.asyncio
async def test_new_snapshots_carry_the_trip_eta(db_session, make_trip, make_load):
    eta = utcnow() + timedelta(hours=3)
    trip = await make_trip(status=TripStatus.PLANNED, estimated_arrival=eta)
    load = await make_load(trip)

    trip_snapshot = await transition_trip(db_session, trip.id, "ACTIVE")
    load_snapshot = await transition_load(db_session, load.id, "PICKUP_SCHEDULED")

    assert ensure_utc(trip_snapshot.estimated_arrival) == eta
    assert ensure_utc(load_snapshot.estimated_arrival) == eta


@pytest.mark.asyncio
async def test_snapshot_is_updated_in_place(db_session, make_trip):
    trip = await make_trip(status=TripStatus.PLANNED)

    first = await transition_trip(db_session, trip.id, TripStatus.ACTIVE)
    second = await transition_trip(db_session, trip.id, TripStatus.AT_PICKUP)

    assert first.id == second.id
    assert second.previous_status == "ACTIVE"
    assert second.current_status == "AT_PICKUP"
    assert second.completion_percent == 25


@pytest.mark.asyncio
async def test_departure_and_arrival_events(db_session, make_trip):
    trip = await make_trip(status=TripStatus.ACTIVE)

    await transition_trip(db_session, trip.id, "IN_TRANSIT")
    await transition_trip(db_session, trip.id, "COMPLETED")

    types = (await db_session.execute(
        select(TrackingEvent.event_type)
        .where(TrackingEvent.trip_id == trip.id)
        .order_by(TrackingEvent.id)
    )).scalars().all()
    assert types == [
        TrackingEventType.STATUS_CHANGE, TrackingEventType.DEPARTURE,
        TrackingEventType.STATUS_CHANGE, TrackingEventType.ARRIVAL,
    ]


@pytest.mark.asyncio
async def test_status_names_are_case_insensitive(db_session, make_trip):
    trip = await make_trip(status=TripStatus.PLANNED)
    snapshot = await transition_trip(db_session, trip.id, " active ")
    assert snapshot.current_status == "ACTIVE"


@pytest.mark.asyncio
async def test_invalid_transition_changes_nothing(db_session, make_trip):
    trip = await make_trip(status=TripStatus.PLANNED)

    with pytest.raises(InvalidStatusTransitionError) as exc_info:
        await transition_trip(db_session, trip.id, "COMPLETED")

    assert exc_info.value.error_code == "INVALID_STATUS_TRANSITION"
    assert exc_info.value.details["from"] == "PLANNED"
    assert exc_info.value.details["to"] == "COMPLETED"

    await db_session.refresh(trip)
    assert trip.status == TripStatus.PLANNED
    assert await get_tracking_status(db_session, trip_id=trip.id) is None


@pytest.mark.asyncio
async def test_terminal_trip_cannot_move(db_session, make_trip):
    trip = await make_trip(status=TripStatus.COMPLETED)
    with pytest.raises(InvalidStatusTransitionError):
        await transition_trip(db_session, trip.id, "IN_TRANSIT")


@pytest.mark.asyncio
async def test_unknown_status_name(db_session, make_trip):
    trip = await make_trip(status=TripStatus.PLANNED)
    with pytest.raises(InvalidStatusError) as exc_info:
        await transition_trip(db_session, trip.id, "FLYING")
    assert exc_info.value.error_code == "INVALID_STATUS"


@pytest.mark.asyncio
async def test_unknown_trip(db_session):
    with pytest.raises(ResourceNotFoundError):
        await transition_trip(db_session, 9999, "ACTIVE")


@pytest.mark.asyncio
async def test_compare_and_set_rejects_stale_expectation(db_session, make_trip):
    """A writer that read PLANNED loses once another writer moved the trip."""
    trip = await make_trip(status=TripStatus.ACTIVE)

    swapped = await compare_and_set_trip_status(db_session, trip.id, TripStatus.PLANNED, TripStatus.CANCELLED)
    assert swapped is False

    swapped = await compare_and_set_trip_status(db_session, trip.id, TripStatus.ACTIVE, TripStatus.IN_TRANSIT)
    assert swapped is True
    await db_session.commit()

    await db_session.refresh(trip)
    assert trip.status == TripStatus.IN_TRANSIT


@pytest.mark.asyncio
async def test_load_lifecycle(db_session, make_trip, make_load):
    trip = await make_trip(status=TripStatus.IN_TRANSIT)
    load = await make_load(trip)

    for status in ("PICKUP_SCHEDULED", "PICKED_UP", "IN_TRANSIT", "OUT_FOR_DELIVERY", "DELIVERED"):
        snapshot = await transition_load(db_session, load.id, status)

    assert snapshot.load_id == load.id
    assert snapshot.trip_id == trip.id
    assert snapshot.current_status == "DELIVERED"
    assert snapshot.completion_percent == 100
    assert load.status == LoadStatus.DELIVERED

    # The trip-level snapshot is independent of load snapshots
    assert await get_tracking_status(db_session, trip_id=trip.id) is None

    with pytest.raises(InvalidStatusTransitionError):
        await transition_load(db_session, load.id, "EXCEPTION")


@pytest.mark.asyncio
@pytest.mark.parametrize("current, new", [
    (LoadStatus.BOOKED, "PICKED_UP"),
    (LoadStatus.PICKED_UP, "DELIVERED"),
    (LoadStatus.DELIVERED, "EXCEPTION"),
])
async def test_load_cannot_skip_steps_or_leave_delivered(db_session, make_trip, make_load, current, new):
    trip = await make_trip(status=TripStatus.IN_TRANSIT)
    load = await make_load(trip, status=current)

    with pytest.raises(InvalidStatusTransitionError) as exc_info:
        await transition_load(db_session, load.id, new)
    assert exc_info.value.details["from"] == current.value
    assert exc_info.value.details["to"] == new

    await db_session.refresh(load)
    assert load.status == current
    assert await get_tracking_status(db_session, load_id=load.id) is None


@pytest.mark.asyncio
async def test_load_exception_appends_exception_event(db_session, make_trip, make_load):
    trip = await make_trip(status=TripStatus.IN_TRANSIT)
    load = await make_load(trip)

    await transition_load(db_session, load.id, "EXCEPTION")
    snapshot = await transition_load(db_session, load.id, "PICKUP_SCHEDULED")
    assert snapshot.previous_status == "EXCEPTION"

    types = (await db_session.execute(
        select(TrackingEvent.event_type)
        .where(TrackingEvent.load_id == load.id)
        .order_by(TrackingEvent.id)
    )).scalars().all()
    assert types == [
        TrackingEventType.LOAD_STATUS_CHANGE,
        TrackingEventType.EXCEPTION,
        TrackingEventType.LOAD_STATUS_CHANGE,
    ]


@pytest.mark.asyncio
async def test_load_compare_and_set(db_session, make_trip, make_load):
    trip = await make_trip()
    load = await make_load(trip)
    assert await compare_and_set_load_status(db_session, load.id, LoadStatus.PICKED_UP, LoadStatus.IN_TRANSIT) is False
    assert await compare_and_set_load_status(db_session, load.id, LoadStatus.BOOKED, LoadStatus.PICKUP_SCHEDULED) is True
    await db_session.commit()
