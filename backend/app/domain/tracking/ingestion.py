"""
Location ingestion.

validate -> sanitize -> append sample -> refresh the trip's cached
position -> recompute ETA, all in one transaction.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ResourceNotFoundError, TrackingError
from backend.app.core.reliability import storage_bound
from backend.app.core.timeutils import utcnow, ensure_utc
from backend.app.domain.tracking.eta import recompute_eta
from backend.app.domain.tracking.events import log_tracking_event
from backend.app.domain.tracking.queries import get_trip, get_load, get_recent_samples
from backend.app.domain.tracking.validation import validate_location, sanitize_location
from backend.app.models.location_sample import LocationSample
from backend.app.models.tracking_event import TrackingEventType
from backend.app.models.trip import Trip
from backend.app.models.trip_enums import SampleStatus
from backend.app.schemas.tracking import LocationUpdate, LocationIngestResponse, OfflineSyncResponse

logger = logging.getLogger("shipment_tracking")


async def update_cached_location(db: AsyncSession, trip_id: int, sample: LocationSample) -> bool:
    """
    Move the trip's cached position to ``sample`` if it is newer.

    Ordered by sample time, not arrival: a late-arriving older sample
    never overwrites a newer cached position.
    """
    result = await db.execute(
        update(Trip)
        .where(
            Trip.id == trip_id,
            or_(
                Trip.last_location_update.is_(None),
                Trip.last_location_update < sample.recorded_at
            )
        )
        .values(
            current_latitude=sample.latitude,
            current_longitude=sample.longitude,
            last_location_update=sample.recorded_at
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


@storage_bound
async def ingest_location(
    db: AsyncSession,
    trip_id: int,
    location: LocationUpdate,
    now: Optional[datetime] = None
) -> LocationIngestResponse:
    """
    Ingest one location sample for a trip.

    Raises:
        LocationValidationError: sample out of range (nothing written)
        ResourceNotFoundError: unknown trip, or load not on this trip
        TransientTrackingError: storage failure or deadline exceeded
    """
    validate_location(trip_id, location)
    clean = sanitize_location(location)
    now = now or utcnow()

    trip = await get_trip(db, trip_id)
    if clean.load_id is not None:
        load = await get_load(db, clean.load_id)
        if load.trip_id != trip_id:
            raise ResourceNotFoundError("Load", clean.load_id)

    sample = LocationSample(
        trip_id=trip_id,
        load_id=clean.load_id,
        latitude=clean.latitude,
        longitude=clean.longitude,
        altitude=clean.altitude,
        speed=clean.speed,
        heading=clean.heading,
        accuracy=clean.accuracy,
        source=clean.source,
        status=SampleStatus.ACTIVE,
        recorded_at=ensure_utc(clean.recorded_at) or now
    )
    db.add(sample)
    await db.flush()

    cached = await update_cached_location(db, trip_id, sample)
    await db.refresh(trip)
    eta = await recompute_eta(db, trip, now=now)

    await db.commit()

    if not cached:
        logger.info(
            "Out-of-order sample stored without moving cached position",
            extra={"trip_id": trip_id, "sample_id": sample.id}
        )

    return LocationIngestResponse(
        trip_id=trip_id,
        sample_id=sample.id,
        cached_location_updated=cached,
        estimated_arrival=eta
    )


@storage_bound
async def get_current_location(db: AsyncSession, trip_id: int) -> LocationSample:
    """
    Most recent sample for a trip.

    Raises:
        ResourceNotFoundError: no samples recorded yet
    """
    samples = await get_recent_samples(db, trip_id, limit=1)
    if not samples:
        raise ResourceNotFoundError("Location for trip", trip_id)
    return samples[0]


async def sync_offline_data(
    db: AsyncSession,
    trip_id: int,
    locations: Iterable[LocationUpdate],
    now: Optional[datetime] = None
) -> OfflineSyncResponse:
    """
    Replay samples buffered on a device while it was offline.

    Each sample is ingested independently; failures are collected rather
    than aborting the batch. One OFFLINE_SYNC event summarizes the run.
    """
    await get_trip(db, trip_id)

    locations = list(locations)
    success_count = 0
    errors = []

    for location in locations:
        try:
            await ingest_location(db, trip_id, location, now=now)
            success_count += 1
        except TrackingError as exc:
            errors.append(str(exc))
        except ResourceNotFoundError as exc:
            errors.append(exc.message)

    await log_tracking_event(
        db,
        trip_id=trip_id,
        event_type=TrackingEventType.OFFLINE_SYNC,
        event_data={"total_records": len(locations), "success": success_count, "errors": len(errors)},
        description=f"Synced {success_count} offline location records"
    )

    logger.info(
        "Offline sync completed",
        extra={"trip_id": trip_id, "total": len(locations), "success": success_count, "errors": len(errors)}
    )
    return OfflineSyncResponse(
        trip_id=trip_id,
        total_records=len(locations),
        success_count=success_count,
        error_count=len(errors),
        errors=errors
    )
