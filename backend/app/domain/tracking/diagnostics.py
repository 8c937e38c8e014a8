"""
Read-only data-quality diagnostics over a trip's recent samples.

Anomalies are physically implausible driving (speed jumps, excessive or
impossible speed, silence). Consistency issues are structural defects in
the feed (samples arriving out of order, duplicate timestamps, location
jumps, staleness). Both return human-readable findings and write nothing.
"""

from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.reliability import storage_bound
from backend.app.core.timeutils import utcnow, ensure_utc
from backend.app.domain.tracking.geo import distance_km, implied_speed_kmh
from backend.app.domain.tracking.queries import get_trip, get_recent_samples
from backend.app.models.location_sample import LocationSample


def _hours_between(later: LocationSample, earlier: LocationSample) -> float:
    return (ensure_utc(later.recorded_at) - ensure_utc(earlier.recorded_at)).total_seconds() / 3600


def find_anomalies(samples: Sequence[LocationSample], now: datetime) -> List[str]:
    """
    Scan samples ordered newest-first.

    Each consecutive pair is checked for a speed jump over 50 km/h, a
    reported speed over 120 km/h and an implied speed over 200 km/h; the
    newest sample is checked for more than 4 hours of silence.
    """
    anomalies: List[str] = []
    # fewer than two samples: nothing to compare, staleness included
    if len(samples) < 2:
        return anomalies

    for current, previous in zip(samples, samples[1:]):
        if current.speed is not None and previous.speed is not None:
            speed_diff = abs(current.speed - previous.speed)
            if speed_diff > settings.anomaly_speed_jump_kmh:
                anomalies.append(f"Sudden speed change detected: {speed_diff:.1f} km/h difference")
            if current.speed > settings.anomaly_high_speed_kmh:
                anomalies.append(f"High speed detected: {current.speed:.1f} km/h")

        distance = distance_km(current.latitude, current.longitude, previous.latitude, previous.longitude)
        speed = implied_speed_kmh(distance, _hours_between(current, previous))
        if speed > settings.max_ground_speed_kmh:
            anomalies.append(f"Impossible speed detected: {speed:.1f} km/h between locations")

    hours_since_update = (now - ensure_utc(samples[0].recorded_at)).total_seconds() / 3600
    if hours_since_update > settings.anomaly_stale_hours:
        anomalies.append(f"No location updates for {hours_since_update:.1f} hours")

    return anomalies


def find_consistency_issues(samples: Sequence[LocationSample], now: datetime) -> List[str]:
    """
    Scan samples ordered by arrival, newest-first.

    A newer arrival carrying an older timestamp breaks ordering; equal
    timestamps are duplicates; an implied speed over 200 km/h is an
    unrealistic jump; more than 6 hours since the newest timestamp is stale.
    """
    issues: List[str] = []
    if len(samples) < 2:
        return issues

    for current, following in zip(samples, samples[1:]):
        current_at = ensure_utc(current.recorded_at)
        following_at = ensure_utc(following.recorded_at)

        if current_at < following_at:
            issues.append(f"Timestamp order inconsistency detected at record {current.id}")

        if current_at == following_at:
            issues.append(f"Duplicate timestamp detected: {current_at.isoformat()}")

        distance = distance_km(current.latitude, current.longitude, following.latitude, following.longitude)
        hours = _hours_between(current, following)
        speed = implied_speed_kmh(distance, hours)
        if speed > settings.max_ground_speed_kmh:
            issues.append(
                f"Unrealistic location jump detected: {distance:.1f} km in {hours:.2f} hours ({speed:.1f} km/h)"
            )

    latest = max(ensure_utc(s.recorded_at) for s in samples)
    hours_since_update = (now - latest).total_seconds() / 3600
    if hours_since_update > settings.consistency_stale_hours:
        issues.append(f"Stale tracking data: last update {hours_since_update:.1f} hours ago")

    return issues


@storage_bound
async def detect_anomalies(db: AsyncSession, trip_id: int, now: Optional[datetime] = None) -> List[str]:
    """Driving anomalies over the trip's most recent samples (by recorded time)."""
    await get_trip(db, trip_id)
    samples = await get_recent_samples(db, trip_id, limit=settings.diagnostics_window)
    return find_anomalies(samples, now or utcnow())


@storage_bound
async def validate_consistency(db: AsyncSession, trip_id: int, now: Optional[datetime] = None) -> List[str]:
    """Feed consistency issues over the trip's most recently stored samples."""
    await get_trip(db, trip_id)
    samples = await get_recent_samples(db, trip_id, limit=settings.diagnostics_window, by_arrival=True)
    return find_consistency_issues(samples, now or utcnow())
