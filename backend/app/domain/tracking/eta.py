"""
ETA estimation.

Straight-line distance to the destination divided by the recent average
speed. A point estimate only: no routing, traffic or confidence interval.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.reliability import storage_bound
from backend.app.core.timeutils import utcnow, ensure_utc
from backend.app.domain.tracking.geo import distance_km
from backend.app.domain.tracking.queries import get_trip, get_recent_samples, get_tracking_status
from backend.app.models.location_sample import LocationSample
from backend.app.models.trip import Trip

logger = logging.getLogger("shipment_tracking")


def average_speed_kmh(samples: Sequence[LocationSample]) -> float:
    """
    Average the speeds of the given samples.
    
    No speed readings -> default cruising speed (60 km/h).
    An average under 10 km/h is treated as city driving (30 km/h) so a
    momentarily stopped vehicle does not produce an absurd ETA.
    """
    speeds = [s.speed for s in samples if s.speed is not None]
    if not speeds:
        return settings.eta_default_speed_kmh
    
    avg_speed = sum(speeds) / len(speeds)
    if avg_speed < settings.eta_min_speed_kmh:
        return settings.eta_city_speed_kmh
    return avg_speed


async def recompute_eta(db: AsyncSession, trip: Trip, now: Optional[datetime] = None) -> datetime:
    """
    Recompute and stage the trip's estimated arrival (no commit).
    
    Without a cached position the stored estimate is returned untouched.
    """
    if trip.current_latitude is None or trip.current_longitude is None:
        return ensure_utc(trip.estimated_arrival)
    
    now = now or utcnow()
    remaining_km = distance_km(
        trip.current_latitude, trip.current_longitude,
        trip.destination_lat, trip.destination_lng
    )
    
    samples = await get_recent_samples(
        db, trip.id, limit=settings.eta_speed_window, with_speed=True
    )
    avg_speed = average_speed_kmh(samples)
    
    eta = now + timedelta(hours=remaining_km / avg_speed)
    trip.estimated_arrival = eta
    
    snapshot = await get_tracking_status(db, trip_id=trip.id)
    if snapshot is not None:
        snapshot.estimated_arrival = eta
    
    await db.flush()
    
    logger.debug(
        "ETA recomputed",
        extra={"trip_id": trip.id, "remaining_km": round(remaining_km, 2), "avg_speed_kmh": round(avg_speed, 1)}
    )
    return eta


@storage_bound
async def estimate_arrival(db: AsyncSession, trip_id: int, now: Optional[datetime] = None) -> datetime:
    """
    Estimate the arrival time of a trip and persist it onto the trip.
    
    Raises:
        ResourceNotFoundError: unknown trip
    """
    trip = await get_trip(db, trip_id)
    eta = await recompute_eta(db, trip, now=now)
    await db.commit()
    return eta
