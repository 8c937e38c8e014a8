"""
Data Quality Diagnostics Tests.

Anomalies (implausible driving) and consistency issues (defects in the
feed itself).
"""

import pytest
from datetime import timedelta

from backend.app.core.timeutils import utcnow
from backend.app.domain.tracking.diagnostics import (
    find_anomalies, find_consistency_issues, detect_anomalies, validate_consistency
)
from backend.app.domain.tracking.ingestion import ingest_location
from backend.app.models.location_sample import LocationSample
from backend.app.schemas.tracking import LocationUpdate


def _point(sample_id, lat, lng, recorded_at, speed=None):
    return LocationSample(id=sample_id, latitude=lat, longitude=lng, recorded_at=recorded_at, speed=speed)


def test_too_few_samples_yield_nothing():
    now = utcnow()
    single = [_point(1, 40.0, -74.0, now - timedelta(days=2))]
    assert find_anomalies(single, now) == []
    assert find_consistency_issues(single, now) == []
    assert find_anomalies([], now) == []


def test_teleport_is_flagged_by_both_checks():
    """About 100 km in one minute."""
    now = utcnow()
    samples = [
        _point(2, 40.9, -74.0, now),
        _point(1, 40.0, -74.0, now - timedelta(minutes=1)),
    ]

    anomalies = find_anomalies(samples, now)
    assert any(a.startswith("Impossible speed detected") for a in anomalies)

    issues = find_consistency_issues(samples, now)
    assert any(i.startswith("Unrealistic location jump detected") for i in issues)


def test_speed_jump_and_high_speed():
    now = utcnow()
    samples = [
        _point(2, 40.01, -74.0, now, speed=200),
        _point(1, 40.00, -74.0, now - timedelta(minutes=10), speed=60),
    ]

    anomalies = find_anomalies(samples, now)

    assert "Sudden speed change detected: 140.0 km/h difference" in anomalies
    assert "High speed detected: 200.0 km/h" in anomalies
    assert not any(a.startswith("Impossible speed") for a in anomalies)


def test_steady_driving_is_clean():
    now = utcnow()
    samples = [
        _point(3, 40.20, -74.0, now, speed=80),
        _point(2, 40.10, -74.0, now - timedelta(minutes=10), speed=78),
        _point(1, 40.00, -74.0, now - timedelta(minutes=20), speed=82),
    ]
    assert find_anomalies(samples, now) == []
    assert find_consistency_issues(samples, now) == []


def test_silence_thresholds():
    now = utcnow()
    samples = [
        _point(2, 40.0, -74.0, now - timedelta(hours=5)),
        _point(1, 40.0, -74.0, now - timedelta(hours=5, minutes=10)),
    ]

    assert "No location updates for 5.0 hours" in find_anomalies(samples, now)
    # Consistency staleness only starts at 6 hours
    assert not any(i.startswith("Stale tracking data") for i in find_consistency_issues(samples, now))

    later = now + timedelta(hours=2)
    assert "Stale tracking data: last update 7.0 hours ago" in find_consistency_issues(samples, later)


def test_out_of_order_arrival_and_duplicates():
    now = utcnow()
    # Newest arrival first; sample 3 arrived last but was recorded earliest
    samples = [
        _point(3, 40.0, -74.0, now - timedelta(minutes=30)),
        _point(2, 40.0, -74.0, now),
        _point(1, 40.0, -74.0, now),
    ]

    issues = find_consistency_issues(samples, now)

    assert "Timestamp order inconsistency detected at record 3" in issues
    assert f"Duplicate timestamp detected: {now.isoformat()}" in issues


@pytest.mark.asyncio
async def test_diagnostics_read_stored_samples(db_session, make_trip):
    trip = await make_trip()
    now = utcnow()

    await ingest_location(
        db_session, trip.id,
        LocationUpdate(latitude=40.0, longitude=-74.0, speed=60, recorded_at=now - timedelta(minutes=1)),
        now=now
    )
    await ingest_location(
        db_session, trip.id,
        LocationUpdate(latitude=40.9, longitude=-74.0, speed=200, recorded_at=now),
        now=now
    )

    anomalies = await detect_anomalies(db_session, trip.id, now=now)
    issues = await validate_consistency(db_session, trip.id, now=now)

    assert any(a.startswith("Impossible speed detected") for a in anomalies)
    assert any(a.startswith("Sudden speed change detected") for a in anomalies)
    assert any(i.startswith("Unrealistic location jump detected") for i in issues)


@pytest.mark.asyncio
async def test_late_arrival_is_detected_from_storage(db_session, make_trip):
    trip = await make_trip()
    now = utcnow()

    await ingest_location(db_session, trip.id, LocationUpdate(latitude=40.0, longitude=-74.0, recorded_at=now), now=now)
    await ingest_location(
        db_session, trip.id,
        LocationUpdate(latitude=40.0, longitude=-74.0, recorded_at=now - timedelta(minutes=5)),
        now=now
    )

    issues = await validate_consistency(db_session, trip.id, now=now)
    assert any(i.startswith("Timestamp order inconsistency") for i in issues)
