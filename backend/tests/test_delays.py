"""
Delay Detection Tests.

Severity classification and once-per-threshold alerting.
"""

import pytest
from datetime import timedelta
from sqlalchemy import select, func

from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.core.timeutils import utcnow
from backend.app.domain.tracking.delays import (
    classify_delay, compute_delay, check_delay, process_delay_alerts, alerted_thresholds
)
from backend.app.domain.tracking.queries import get_tracking_status
from backend.app.models.notification import Notification, NotificationType
from backend.app.models.tracking_event import TrackingEvent, TrackingEventType
from backend.app.models.trip import Trip
from backend.app.models.trip_enums import DelaySeverity, TripStatus
from backend.app.services.notification_service import NotificationSink


class FailingSink(NotificationSink):
    async def deliver(self, user_id, title, message, type, related_id):
        raise ConnectionError("push gateway unreachable")


class RecordingSink(NotificationSink):
    def __init__(self):
        self.delivered = []

    async def deliver(self, user_id, title, message, type, related_id):
        self.delivered.append((user_id, title, message, type, related_id))


async def _count_events(db, trip_id, event_type):
    result = await db.execute(
        select(func.count(TrackingEvent.id))
        .where(TrackingEvent.trip_id == trip_id, TrackingEvent.event_type == event_type)
    )
    return result.scalar_one()


@pytest.mark.parametrize("minutes, severity", [
    (0, DelaySeverity.LOW),
    (30, DelaySeverity.LOW),
    (31, DelaySeverity.MEDIUM),
    (60, DelaySeverity.MEDIUM),
    (61, DelaySeverity.HIGH),
    (120, DelaySeverity.HIGH),
    (121, DelaySeverity.CRITICAL),
    (600, DelaySeverity.CRITICAL),
])
def test_severity_boundaries(minutes, severity):
    assert classify_delay(minutes) == severity


def test_on_time_trip_has_no_delay():
    now = utcnow()
    trip = Trip(estimated_arrival=now + timedelta(minutes=5))
    assert compute_delay(trip, now) is None

    trip.estimated_arrival = now
    assert compute_delay(trip, now) is None


def test_delay_is_whole_minutes_late():
    now = utcnow()
    trip = Trip(estimated_arrival=now - timedelta(minutes=45, seconds=59))
    delay = compute_delay(trip, now)
    assert delay.delay_minutes == 45
    assert delay.severity == "MEDIUM"
    assert delay.reason == "Behind schedule"


@pytest.mark.asyncio
async def test_check_delay_reads_stored_eta(db_session, make_trip):
    now = utcnow()
    trip = await make_trip(estimated_arrival=now - timedelta(minutes=90))
    delay = await check_delay(db_session, trip.id, now=now)
    assert delay.delay_minutes == 90
    assert delay.severity == "HIGH"

    with pytest.raises(ResourceNotFoundError):
        await check_delay(db_session, 4242)


@pytest.mark.asyncio
async def test_alert_fires_once_per_threshold(db_session, make_trip, make_load):
    now = utcnow()
    trip = await make_trip(estimated_arrival=now - timedelta(minutes=45))
    await make_load(trip, shipper_id=11)
    await make_load(trip, shipper_id=12)

    first = await process_delay_alerts(db_session, trip.id, now=now)
    assert first.alerted_threshold == 30
    assert first.notifications_sent == 2
    assert first.delay.delay_minutes == 45

    # Same delay level: nothing new to say
    second = await process_delay_alerts(db_session, trip.id, now=now + timedelta(minutes=1))
    assert second.alerted_threshold is None
    assert second.notifications_sent == 0
    assert second.delay.delay_minutes == 46

    notifications = (await db_session.execute(
        select(Notification).order_by(Notification.user_id)
    )).scalars().all()
    assert [n.user_id for n in notifications] == [11, 12]
    assert all(n.type == NotificationType.TRIP_DELAYED for n in notifications)
    assert all(n.related_id == trip.id for n in notifications)
    assert "delayed by 45 minutes" in notifications[0].message

    assert await _count_events(db_session, trip.id, TrackingEventType.DELAY) == 1
    assert await alerted_thresholds(db_session, trip.id) == [30]


@pytest.mark.asyncio
async def test_next_threshold_fires_as_delay_grows(db_session, make_trip, make_load):
    now = utcnow()
    trip = await make_trip(estimated_arrival=now - timedelta(minutes=45))
    await make_load(trip)

    await process_delay_alerts(db_session, trip.id, now=now)
    later = await process_delay_alerts(db_session, trip.id, now=now + timedelta(minutes=30))

    assert later.alerted_threshold == 60
    assert later.delay.delay_minutes == 75
    assert later.delay.severity == "HIGH"
    assert await alerted_thresholds(db_session, trip.id) == [30, 60]
    assert await _count_events(db_session, trip.id, TrackingEventType.DELAY) == 2


@pytest.mark.asyncio
async def test_thresholds_fire_lowest_first(db_session, make_trip):
    """A trip discovered 130 minutes late catches up one threshold per pass."""
    now = utcnow()
    trip = await make_trip(estimated_arrival=now - timedelta(minutes=130))

    fired = []
    for _ in range(4):
        result = await process_delay_alerts(db_session, trip.id, now=now)
        fired.append(result.alerted_threshold)

    assert fired == [30, 60, 120, None]


@pytest.mark.asyncio
async def test_on_time_trip_is_not_alerted(db_session, make_trip, make_load):
    now = utcnow()
    trip = await make_trip(estimated_arrival=now + timedelta(hours=2))
    await make_load(trip)

    result = await process_delay_alerts(db_session, trip.id, now=now)

    assert result.delay is None
    assert result.alerted_threshold is None
    assert await alerted_thresholds(db_session, trip.id) == []


@pytest.mark.asyncio
async def test_delay_marks_snapshot_not_trip(db_session, make_trip):
    now = utcnow()
    trip = await make_trip(status=TripStatus.IN_TRANSIT, estimated_arrival=now - timedelta(minutes=35))

    await process_delay_alerts(db_session, trip.id, now=now)

    snapshot = await get_tracking_status(db_session, trip_id=trip.id)
    assert snapshot.current_status == "DELAYED"
    assert snapshot.delay_minutes == 35
    assert snapshot.delay_reason == "Behind schedule"
    assert snapshot.completion_percent == 50

    await db_session.refresh(trip)
    assert trip.status == TripStatus.IN_TRANSIT


@pytest.mark.asyncio
async def test_failing_sink_does_not_block_alert(db_session, make_trip, make_load):
    now = utcnow()
    trip = await make_trip(estimated_arrival=now - timedelta(minutes=40))
    await make_load(trip)

    result = await process_delay_alerts(db_session, trip.id, sink=FailingSink(), now=now)

    assert result.alerted_threshold == 30
    assert result.notifications_sent == 0
    assert await _count_events(db_session, trip.id, TrackingEventType.DELAY) == 1


@pytest.mark.asyncio
async def test_custom_sink_receives_alert(db_session, make_trip, make_load):
    now = utcnow()
    trip = await make_trip(estimated_arrival=now - timedelta(minutes=40))
    load = await make_load(trip, shipper_id=77)
    sink = RecordingSink()

    await process_delay_alerts(db_session, trip.id, sink=sink, now=now)

    assert len(sink.delivered) == 1
    user_id, title, _, type, related_id = sink.delivered[0]
    assert user_id == load.shipper_id
    assert title == "Shipment Delayed"
    assert type == "TRIP_DELAYED"
    assert related_id == trip.id
