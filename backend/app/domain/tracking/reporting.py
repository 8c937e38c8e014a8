"""
Tracking history, audit trail, statistics and export.
"""

import csv
import io
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, desc, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.reliability import storage_bound
from backend.app.core.timeutils import utcnow, ensure_utc
from backend.app.domain.tracking.queries import get_trip
from backend.app.models.location_sample import LocationSample
from backend.app.models.tracking_event import TrackingEvent, SYSTEM_EVENT_TYPES
from backend.app.models.tracking_status import TrackingStatus
from backend.app.schemas.tracking import LocationSampleResponse, TrackingEventResponse

EXPORT_FORMATS = ("json", "csv")

CSV_COLUMNS = [
    "recorded_at", "latitude", "longitude", "altitude", "speed",
    "heading", "accuracy", "source", "status", "load_id",
]


@storage_bound
async def get_tracking_history(
    db: AsyncSession,
    trip_id: int,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    source: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 100,
    offset: int = 0
) -> List[LocationSample]:
    """
    Location samples for a trip, newest first.

    Args:
        start_date, end_date: inclusive bounds on recorded_at
        source: GPS, MANUAL, ESTIMATED, NETWORK or PASSIVE
        status: ACTIVE or INACTIVE
        limit: page size (non-positive means 100)
        offset: rows to skip (negative means 0)
    """
    query = select(LocationSample).where(LocationSample.trip_id == trip_id)

    if start_date:
        query = query.where(LocationSample.recorded_at >= ensure_utc(start_date))
    if end_date:
        query = query.where(LocationSample.recorded_at <= ensure_utc(end_date))
    if source:
        query = query.where(LocationSample.source == source.upper())
    if status:
        query = query.where(LocationSample.status == status.upper())

    limit = limit if limit > 0 else 100
    offset = max(offset, 0)

    query = query.order_by(desc(LocationSample.recorded_at), desc(LocationSample.id)).limit(limit).offset(offset)
    result = await db.execute(query)
    return list(result.scalars().all())


@storage_bound
async def get_audit_trail(db: AsyncSession, trip_id: int, include_system_events: bool = False) -> Dict[str, Any]:
    """
    Chronological timeline of everything tracked for a trip.

    Merges location samples, events and status snapshots (trip and load)
    and sorts them by timestamp.
    """
    await get_trip(db, trip_id)

    samples = (await db.execute(
        select(LocationSample).where(LocationSample.trip_id == trip_id).order_by(LocationSample.recorded_at)
    )).scalars().all()

    events_query = select(TrackingEvent).where(TrackingEvent.trip_id == trip_id)
    if not include_system_events:
        events_query = events_query.where(TrackingEvent.event_type.not_in(SYSTEM_EVENT_TYPES))
    events = (await db.execute(events_query.order_by(TrackingEvent.timestamp))).scalars().all()

    snapshots = (await db.execute(
        select(TrackingStatus).where(TrackingStatus.trip_id == trip_id).order_by(TrackingStatus.status_changed_at)
    )).scalars().all()

    timeline: List[Dict[str, Any]] = []
    for sample in samples:
        timeline.append({
            "timestamp": ensure_utc(sample.recorded_at),
            "type": "location_update",
            "latitude": sample.latitude,
            "longitude": sample.longitude,
            "speed": sample.speed,
            "source": sample.source,
            "accuracy": sample.accuracy,
        })
    for event in events:
        timeline.append({
            "timestamp": ensure_utc(event.timestamp),
            "type": "event",
            "event_type": event.event_type,
            "description": event.description,
            "location": event.location,
            "event_data": event.event_data,
        })
    for snapshot in snapshots:
        timeline.append({
            "timestamp": ensure_utc(snapshot.status_changed_at),
            "type": "status_change",
            "load_id": snapshot.load_id,
            "current_status": snapshot.current_status,
            "previous_status": snapshot.previous_status,
            "completion_percent": snapshot.completion_percent,
            "delay_minutes": snapshot.delay_minutes,
            "delay_reason": snapshot.delay_reason,
        })

    timeline.sort(key=lambda entry: entry["timestamp"])

    return {
        "trip_id": trip_id,
        "timeline": timeline,
        "total_records": len(samples),
        "total_events": len(events),
        "total_status_changes": len(snapshots),
        "generated_at": utcnow(),
    }


@storage_bound
async def get_tracking_statistics(db: AsyncSession, trip_id: int) -> Dict[str, Any]:
    """Update counts, cadence and speed figures for a trip."""
    await get_trip(db, trip_id)
    stats: Dict[str, Any] = {}

    bounds = (await db.execute(
        select(
            func.count(LocationSample.id),
            func.min(LocationSample.recorded_at),
            func.max(LocationSample.recorded_at)
        ).where(LocationSample.trip_id == trip_id)
    )).one()
    record_count, first_update, last_update = bounds
    stats["total_location_updates"] = record_count

    event_rows = (await db.execute(
        select(TrackingEvent.event_type, func.count(TrackingEvent.id))
        .where(TrackingEvent.trip_id == trip_id)
        .group_by(TrackingEvent.event_type)
    )).all()
    stats["events_by_type"] = {event_type: count for event_type, count in event_rows}

    if record_count:
        first_update, last_update = ensure_utc(first_update), ensure_utc(last_update)
        duration = last_update - first_update
        stats["first_update"] = first_update
        stats["last_update"] = last_update
        stats["tracking_duration_hours"] = duration.total_seconds() / 3600
        if record_count > 1:
            stats["average_update_interval_minutes"] = duration.total_seconds() / 60 / (record_count - 1)

    speed_row = (await db.execute(
        select(
            func.max(LocationSample.speed),
            func.min(LocationSample.speed),
            func.avg(LocationSample.speed)
        ).where(LocationSample.trip_id == trip_id, LocationSample.speed.is_not(None))
    )).one()
    max_speed, min_speed, avg_speed = speed_row
    if max_speed is not None:
        stats["max_speed_kmh"] = float(max_speed)
        stats["min_speed_kmh"] = float(min_speed)
        stats["avg_speed_kmh"] = float(avg_speed)

    return stats


def _samples_to_csv(samples: List[LocationSample]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS)
    writer.writeheader()
    for sample in samples:
        writer.writerow({
            "recorded_at": ensure_utc(sample.recorded_at).isoformat(),
            "latitude": sample.latitude,
            "longitude": sample.longitude,
            "altitude": sample.altitude,
            "speed": sample.speed,
            "heading": sample.heading,
            "accuracy": sample.accuracy,
            "source": sample.source,
            "status": sample.status.value,
            "load_id": sample.load_id,
        })
    return buffer.getvalue()


@storage_bound
async def export_tracking_data(db: AsyncSession, trip_id: int, format: str = "json"):
    """
    Export a trip's samples (and, for json, its events) oldest first.

    Returns:
        dict for "json", CSV text for "csv"

    Raises:
        ValueError: unsupported format
    """
    format = (format or "").lower()
    if format not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {format}")

    await get_trip(db, trip_id)
    samples = list((await db.execute(
        select(LocationSample).where(LocationSample.trip_id == trip_id)
        .order_by(LocationSample.recorded_at, LocationSample.id)
    )).scalars().all())

    if format == "csv":
        return _samples_to_csv(samples)

    events = (await db.execute(
        select(TrackingEvent).where(TrackingEvent.trip_id == trip_id)
        .order_by(TrackingEvent.timestamp, TrackingEvent.id)
    )).scalars().all()

    return {
        "trip_id": trip_id,
        "tracking_records": [LocationSampleResponse.model_validate(s).model_dump(mode="json") for s in samples],
        "tracking_events": [TrackingEventResponse.model_validate(e).model_dump(mode="json") for e in events],
        "exported_at": utcnow().isoformat(),
    }
