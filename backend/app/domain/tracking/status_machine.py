"""
Trip and load status machines.

Transitions are validated against fixed graphs and applied with a
compare-and-swap on the owning row, so two concurrent requests that both
looked valid cannot both win. The derived TrackingStatus snapshot and the
STATUS_CHANGE event are written in the same transaction as the swap.
"""

import logging
from datetime import datetime
from typing import Dict, FrozenSet, Optional, Type, TypeVar

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import InvalidStatusError, InvalidStatusTransitionError
from backend.app.core.reliability import storage_bound
from backend.app.core.timeutils import utcnow
from backend.app.domain.tracking.events import record_event
from backend.app.domain.tracking.queries import get_trip, get_load, get_or_create_tracking_status
from backend.app.models.load import Load
from backend.app.models.tracking_event import TrackingEventType
from backend.app.models.tracking_status import TrackingStatus
from backend.app.models.trip import Trip
from backend.app.models.trip_enums import TripStatus, LoadStatus

logger = logging.getLogger("shipment_tracking")

E = TypeVar("E", TripStatus, LoadStatus)


TRIP_TRANSITIONS: Dict[TripStatus, FrozenSet[TripStatus]] = {
    TripStatus.PLANNED: frozenset({TripStatus.ACTIVE, TripStatus.CANCELLED}),
    TripStatus.ACTIVE: frozenset({TripStatus.IN_TRANSIT, TripStatus.AT_PICKUP, TripStatus.CANCELLED}),
    TripStatus.AT_PICKUP: frozenset({TripStatus.IN_TRANSIT, TripStatus.ACTIVE}),
    TripStatus.IN_TRANSIT: frozenset({TripStatus.AT_DELIVERY, TripStatus.DELAYED, TripStatus.COMPLETED}),
    TripStatus.AT_DELIVERY: frozenset({TripStatus.COMPLETED, TripStatus.IN_TRANSIT}),
    TripStatus.DELAYED: frozenset({TripStatus.IN_TRANSIT, TripStatus.AT_DELIVERY, TripStatus.COMPLETED}),
    TripStatus.COMPLETED: frozenset(),
    TripStatus.CANCELLED: frozenset(),
}

TRIP_COMPLETION_PERCENT: Dict[TripStatus, float] = {
    TripStatus.PLANNED: 0.0,
    TripStatus.ACTIVE: 10.0,
    TripStatus.AT_PICKUP: 25.0,
    TripStatus.IN_TRANSIT: 50.0,
    TripStatus.AT_DELIVERY: 90.0,
    TripStatus.COMPLETED: 100.0,
    TripStatus.DELAYED: 50.0,  # Same as IN_TRANSIT
    TripStatus.CANCELLED: 0.0,
}

TRIP_NEXT_MILESTONE: Dict[TripStatus, Optional[str]] = {
    TripStatus.PLANNED: TripStatus.ACTIVE.value,
    TripStatus.ACTIVE: TripStatus.AT_PICKUP.value,
    TripStatus.AT_PICKUP: TripStatus.IN_TRANSIT.value,
    TripStatus.IN_TRANSIT: TripStatus.AT_DELIVERY.value,
    TripStatus.DELAYED: TripStatus.AT_DELIVERY.value,
    TripStatus.AT_DELIVERY: TripStatus.COMPLETED.value,
    TripStatus.COMPLETED: None,
    TripStatus.CANCELLED: None,
}

_LOAD_RECOVERABLE = frozenset({
    LoadStatus.PICKUP_SCHEDULED, LoadStatus.PICKED_UP, LoadStatus.IN_TRANSIT,
    LoadStatus.OUT_FOR_DELIVERY, LoadStatus.DELIVERED,
})

LOAD_TRANSITIONS: Dict[LoadStatus, FrozenSet[LoadStatus]] = {
    LoadStatus.BOOKED: frozenset({LoadStatus.PICKUP_SCHEDULED, LoadStatus.EXCEPTION}),
    LoadStatus.PICKUP_SCHEDULED: frozenset({LoadStatus.PICKED_UP, LoadStatus.EXCEPTION}),
    LoadStatus.PICKED_UP: frozenset({LoadStatus.IN_TRANSIT, LoadStatus.EXCEPTION}),
    LoadStatus.IN_TRANSIT: frozenset({LoadStatus.OUT_FOR_DELIVERY, LoadStatus.DELIVERED, LoadStatus.EXCEPTION}),
    LoadStatus.OUT_FOR_DELIVERY: frozenset({LoadStatus.DELIVERED, LoadStatus.IN_TRANSIT, LoadStatus.EXCEPTION}),
    LoadStatus.EXCEPTION: _LOAD_RECOVERABLE,
    LoadStatus.DELIVERED: frozenset(),
}

LOAD_COMPLETION_PERCENT: Dict[LoadStatus, float] = {
    LoadStatus.BOOKED: 10.0,
    LoadStatus.PICKUP_SCHEDULED: 20.0,
    LoadStatus.PICKED_UP: 40.0,
    LoadStatus.IN_TRANSIT: 60.0,
    LoadStatus.OUT_FOR_DELIVERY: 80.0,
    LoadStatus.DELIVERED: 100.0,
    LoadStatus.EXCEPTION: 50.0,
}


def _coerce(enum_cls: Type[E], value, trip_id=None, load_id=None) -> E:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().upper())
    except ValueError:
        raise InvalidStatusError(value, trip_id=trip_id, load_id=load_id)


def is_valid_transition(current, new) -> bool:
    """True when ``new`` is reachable from ``current`` in the trip graph."""
    try:
        current, new = TripStatus(current), TripStatus(new)
    except ValueError:
        return False
    return new in TRIP_TRANSITIONS.get(current, frozenset())


def is_valid_load_transition(current, new) -> bool:
    try:
        current, new = LoadStatus(current), LoadStatus(new)
    except ValueError:
        return False
    return new in LOAD_TRANSITIONS.get(current, frozenset())


def completion_percent(status) -> float:
    """Fixed progress figure for a trip status; unknown statuses map to 0."""
    try:
        return TRIP_COMPLETION_PERCENT[TripStatus(status)]
    except ValueError:
        return 0.0


def load_completion_percent(status) -> float:
    try:
        return LOAD_COMPLETION_PERCENT[LoadStatus(status)]
    except ValueError:
        return 0.0


async def compare_and_set_trip_status(
    db: AsyncSession, trip_id: int, expected: TripStatus, new: TripStatus
) -> bool:
    """Set trips.status to ``new`` only if it still equals ``expected``."""
    result = await db.execute(
        update(Trip)
        .where(Trip.id == trip_id, Trip.status == expected)
        .values(status=new)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def compare_and_set_load_status(
    db: AsyncSession, load_id: int, expected: LoadStatus, new: LoadStatus
) -> bool:
    result = await db.execute(
        update(Load)
        .where(Load.id == load_id, Load.status == expected)
        .values(status=new)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _apply_snapshot(
    db: AsyncSession,
    trip_id: int,
    load_id: Optional[int],
    previous: str,
    new: str,
    percent: float,
    next_milestone: Optional[str],
    now: datetime,
    estimated_arrival: Optional[datetime] = None
) -> TrackingStatus:
    # a new snapshot starts from the trip's stored ETA; recompute_eta() keeps it current
    snapshot, created = await get_or_create_tracking_status(
        db,
        trip_id,
        load_id=load_id,
        current_status=new,
        previous_status=previous,
        status_changed_at=now,
        completion_percent=percent,
        next_milestone=next_milestone,
        estimated_arrival=estimated_arrival,
    )
    if not created:
        snapshot.previous_status = snapshot.current_status
        snapshot.current_status = new
        snapshot.status_changed_at = now
        snapshot.completion_percent = percent
        snapshot.next_milestone = next_milestone
    await db.flush()
    return snapshot


def _milestone_event_type(previous: TripStatus, new: TripStatus) -> Optional[str]:
    if new == TripStatus.IN_TRANSIT and previous in (TripStatus.ACTIVE, TripStatus.AT_PICKUP):
        return TrackingEventType.DEPARTURE
    if new == TripStatus.COMPLETED:
        return TrackingEventType.ARRIVAL
    return None


@storage_bound
async def transition_trip(
    db: AsyncSession,
    trip_id: int,
    new_status,
    now: Optional[datetime] = None
) -> TrackingStatus:
    """
    Move a trip to ``new_status``.

    Flow:
    1. Validate the transition against the trip graph
    2. Compare-and-swap trips.status (lost race -> invalid transition)
    3. Upsert the trip's TrackingStatus snapshot
    4. Append STATUS_CHANGE (plus DEPARTURE/ARRIVAL where applicable)

    Raises:
        ResourceNotFoundError: unknown trip
        InvalidStatusError: unknown status name
        InvalidStatusTransitionError: transition not allowed, or the trip
            changed status concurrently
    """
    new = _coerce(TripStatus, new_status, trip_id=trip_id)
    trip = await get_trip(db, trip_id)
    previous = trip.status
    estimated_arrival = trip.estimated_arrival

    if not is_valid_transition(previous, new):
        raise InvalidStatusTransitionError(previous.value, new.value, trip_id=trip_id)

    if not await compare_and_set_trip_status(db, trip_id, previous, new):
        await db.rollback()
        logger.warning(
            "Concurrent trip status change detected",
            extra={"trip_id": trip_id, "from": previous.value, "to": new.value}
        )
        raise InvalidStatusTransitionError(previous.value, new.value, trip_id=trip_id)

    now = now or utcnow()
    snapshot = await _apply_snapshot(
        db, trip_id, None, previous.value, new.value,
        TRIP_COMPLETION_PERCENT[new], TRIP_NEXT_MILESTONE[new], now,
        estimated_arrival=estimated_arrival
    )

    await record_event(
        db,
        trip_id=trip_id,
        event_type=TrackingEventType.STATUS_CHANGE,
        event_data={"from": previous.value, "to": new.value},
        description=f"Trip status changed from {previous.value} to {new.value}",
        latitude=trip.current_latitude,
        longitude=trip.current_longitude,
        timestamp=now
    )

    milestone = _milestone_event_type(previous, new)
    if milestone:
        await record_event(
            db,
            trip_id=trip_id,
            event_type=milestone,
            event_data={"status": new.value},
            description=f"Trip {milestone.lower()} recorded",
            latitude=trip.current_latitude,
            longitude=trip.current_longitude,
            timestamp=now
        )

    await db.commit()
    await db.refresh(trip)

    logger.info("Trip status changed", extra={"trip_id": trip_id, "from": previous.value, "to": new.value})
    return snapshot


@storage_bound
async def transition_load(
    db: AsyncSession,
    load_id: int,
    new_status,
    now: Optional[datetime] = None
) -> TrackingStatus:
    """
    Move a load to ``new_status`` along the load graph.

    Same shape as transition_trip(), keyed by load id and writing a
    LOAD_STATUS_CHANGE event.
    """
    new = _coerce(LoadStatus, new_status, load_id=load_id)
    load = await get_load(db, load_id)
    previous = load.status
    estimated_arrival = (await get_trip(db, load.trip_id)).estimated_arrival

    if not is_valid_load_transition(previous, new):
        raise InvalidStatusTransitionError(previous.value, new.value, trip_id=load.trip_id, load_id=load_id)

    if not await compare_and_set_load_status(db, load_id, previous, new):
        await db.rollback()
        raise InvalidStatusTransitionError(previous.value, new.value, trip_id=load.trip_id, load_id=load_id)

    now = now or utcnow()
    snapshot = await _apply_snapshot(
        db, load.trip_id, load_id, previous.value, new.value,
        LOAD_COMPLETION_PERCENT[new], None, now,
        estimated_arrival=estimated_arrival
    )

    event_type = TrackingEventType.LOAD_STATUS_CHANGE
    await record_event(
        db,
        trip_id=load.trip_id,
        load_id=load_id,
        event_type=event_type,
        event_data={"from": previous.value, "to": new.value},
        description=f"Load status changed from {previous.value} to {new.value}",
        timestamp=now
    )
    if new == LoadStatus.EXCEPTION:
        await record_event(
            db,
            trip_id=load.trip_id,
            load_id=load_id,
            event_type=TrackingEventType.EXCEPTION,
            event_data={"from": previous.value},
            description="Load flagged with an exception",
            timestamp=now
        )

    await db.commit()
    await db.refresh(load)

    logger.info("Load status changed", extra={"load_id": load_id, "from": previous.value, "to": new.value})
    return snapshot
