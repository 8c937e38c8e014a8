"""
Shared reads and upserts for the tracking engine.
"""

from typing import Optional, Tuple

from sqlalchemy import select, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.models.load import Load
from backend.app.models.location_sample import LocationSample
from backend.app.models.tracking_status import TrackingStatus
from backend.app.models.trip import Trip


async def get_trip(db: AsyncSession, trip_id: int) -> Trip:
    """Fetch a trip or raise ResourceNotFoundError."""
    result = await db.execute(select(Trip).where(Trip.id == trip_id))
    trip = result.scalar_one_or_none()
    if not trip:
        raise ResourceNotFoundError("Trip", trip_id)
    return trip


async def get_load(db: AsyncSession, load_id: int) -> Load:
    """Fetch a load or raise ResourceNotFoundError."""
    result = await db.execute(select(Load).where(Load.id == load_id))
    load = result.scalar_one_or_none()
    if not load:
        raise ResourceNotFoundError("Load", load_id)
    return load


async def get_recent_samples(
    db: AsyncSession,
    trip_id: int,
    limit: int,
    by_arrival: bool = False,
    with_speed: bool = False
) -> list[LocationSample]:
    """
    Most recent samples for a trip, newest first.
    
    Args:
        by_arrival: order by insertion (id) instead of recorded_at, which
            exposes samples that arrived out of order
        with_speed: skip samples without a speed reading
    """
    query = select(LocationSample).where(LocationSample.trip_id == trip_id)
    if with_speed:
        query = query.where(LocationSample.speed.is_not(None))
    if by_arrival:
        query = query.order_by(desc(LocationSample.id))
    else:
        query = query.order_by(desc(LocationSample.recorded_at), desc(LocationSample.id))
    result = await db.execute(query.limit(limit))
    return list(result.scalars().all())


async def get_tracking_status(
    db: AsyncSession,
    trip_id: Optional[int] = None,
    load_id: Optional[int] = None
) -> Optional[TrackingStatus]:
    """Trip-level snapshot when load_id is None, otherwise the load's snapshot."""
    if load_id is not None:
        query = select(TrackingStatus).where(TrackingStatus.load_id == load_id)
    else:
        query = select(TrackingStatus).where(
            TrackingStatus.trip_id == trip_id,
            TrackingStatus.load_id.is_(None)
        )
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_or_create_tracking_status(
    db: AsyncSession,
    trip_id: int,
    load_id: Optional[int] = None,
    **defaults
) -> Tuple[TrackingStatus, bool]:
    """
    Return the existing snapshot or insert one built from ``defaults``.
    
    The insert runs in a SAVEPOINT; losing the race to a concurrent
    creator re-reads the winner's row instead of failing.
    
    Returns:
        (snapshot, created)
    """
    existing = await get_tracking_status(db, trip_id=trip_id, load_id=load_id)
    if existing is not None:
        return existing, False
    
    snapshot = TrackingStatus(trip_id=trip_id, load_id=load_id, **defaults)
    try:
        async with db.begin_nested():
            db.add(snapshot)
    except IntegrityError:
        existing = await get_tracking_status(db, trip_id=trip_id, load_id=load_id)
        return existing, False
    return snapshot, True
