"""
Tracking event log.

Append-only records of status changes, delays, retries and system work.
Other features (analytics, audit) read this table; nothing here mutates
an existing row.
"""

from datetime import datetime
from typing import Optional, Dict, Any, Sequence

from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.reliability import storage_bound
from backend.app.core.timeutils import utcnow
from backend.app.models.tracking_event import TrackingEvent


async def record_event(
    db: AsyncSession,
    trip_id: Optional[int],
    event_type: str,
    event_data: Optional[Dict[str, Any]] = None,
    description: Optional[str] = None,
    load_id: Optional[int] = None,
    location: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    timestamp: Optional[datetime] = None
) -> TrackingEvent:
    """
    Stage a tracking event in the caller's transaction.
    
    The caller commits; use log_tracking_event() for a standalone write.
    """
    event = TrackingEvent(
        trip_id=trip_id,
        load_id=load_id,
        event_type=event_type,
        event_data=event_data,
        location=location,
        latitude=latitude,
        longitude=longitude,
        timestamp=timestamp or utcnow(),
        description=description
    )
    db.add(event)
    await db.flush()
    return event


@storage_bound
async def log_tracking_event(
    db: AsyncSession,
    trip_id: Optional[int],
    event_type: str,
    event_data: Optional[Dict[str, Any]] = None,
    description: Optional[str] = None,
    load_id: Optional[int] = None,
    location: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None
) -> TrackingEvent:
    """
    Write a tracking event and commit it.
    
    Args:
        db: Database session
        trip_id: Trip the event belongs to (None for engine-wide events)
        event_type: Use TrackingEventType constants
        event_data: Structured payload stored as JSON
        description: Human-readable summary
        load_id: Narrow the event to one load on the trip
        location, latitude, longitude: Where it happened, if known
    
    Returns:
        Created TrackingEvent instance
    """
    event = await record_event(
        db,
        trip_id=trip_id,
        event_type=event_type,
        event_data=event_data,
        description=description,
        load_id=load_id,
        location=location,
        latitude=latitude,
        longitude=longitude
    )
    await db.commit()
    await db.refresh(event)
    return event


@storage_bound
async def get_tracking_events(
    db: AsyncSession,
    trip_id: int,
    event_types: Optional[Sequence[str]] = None,
    limit: int = 50,
    load_id: Optional[int] = None
) -> list[TrackingEvent]:
    """
    Retrieve tracking events for a trip, most recent first.
    
    Args:
        db: Database session
        trip_id: Trip to read
        event_types: Only return these types
        limit: Maximum number of events (non-positive means 50)
        load_id: Only return events for this load
    """
    if limit <= 0:
        limit = 50
    
    query = select(TrackingEvent).where(TrackingEvent.trip_id == trip_id)
    
    if event_types:
        query = query.where(TrackingEvent.event_type.in_(list(event_types)))
    
    if load_id is not None:
        query = query.where(TrackingEvent.load_id == load_id)
    
    query = query.order_by(desc(TrackingEvent.timestamp), desc(TrackingEvent.id)).limit(limit)
    
    result = await db.execute(query)
    return list(result.scalars().all())
