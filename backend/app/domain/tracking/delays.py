"""
Delay detection and alerting.

Severity boundaries are upper-inclusive and applied the same way
everywhere: <=30 LOW, 31-60 MEDIUM, 61-120 HIGH, >120 CRITICAL.

Each alert threshold fires at most once per trip. The claim is an insert
into delay_alerts guarded by a unique (trip_id, threshold_minutes)
constraint, so concurrent checks for the same trip cannot both alert.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.reliability import storage_bound
from backend.app.core.timeutils import utcnow, ensure_utc
from backend.app.domain.tracking.events import record_event
from backend.app.domain.tracking.queries import get_trip, get_or_create_tracking_status
from backend.app.domain.tracking.status_machine import completion_percent
from backend.app.models.delay_alert import DelayAlert
from backend.app.models.load import Load
from backend.app.models.notification import NotificationType
from backend.app.models.tracking_event import TrackingEventType
from backend.app.models.trip import Trip
from backend.app.models.trip_enums import TripStatus, DelaySeverity
from backend.app.schemas.tracking import DelayInfo, DelayAlertResult
from backend.app.services.notification_service import NotificationSink, DatabaseNotificationSink

logger = logging.getLogger("shipment_tracking")

DEFAULT_DELAY_REASON = "Behind schedule"


def classify_delay(delay_minutes: int) -> DelaySeverity:
    """Map minutes late to a severity (upper bounds inclusive)."""
    if delay_minutes > 120:
        return DelaySeverity.CRITICAL
    if delay_minutes > 60:
        return DelaySeverity.HIGH
    if delay_minutes > 30:
        return DelaySeverity.MEDIUM
    return DelaySeverity.LOW


def compute_delay(trip: Trip, now: datetime) -> Optional[DelayInfo]:
    """Whole minutes elapsed past the trip's estimated arrival, or None if on time."""
    eta = ensure_utc(trip.estimated_arrival)
    if eta is None or not now > eta:
        return None
    delay_minutes = int((now - eta).total_seconds() // 60)
    return DelayInfo(
        delay_minutes=delay_minutes,
        reason=DEFAULT_DELAY_REASON,
        severity=classify_delay(delay_minutes).value
    )


@storage_bound
async def check_delay(db: AsyncSession, trip_id: int, now: Optional[datetime] = None) -> Optional[DelayInfo]:
    """
    Check whether a trip is running late.

    Raises:
        ResourceNotFoundError: unknown trip
    """
    trip = await get_trip(db, trip_id)
    return compute_delay(trip, now or utcnow())


async def _claim_threshold(db: AsyncSession, trip_id: int, threshold: int, delay_minutes: int, now: datetime) -> bool:
    """Insert the (trip, threshold) marker; False if it already exists."""
    try:
        async with db.begin_nested():
            db.add(DelayAlert(
                trip_id=trip_id,
                threshold_minutes=threshold,
                delay_minutes=delay_minutes,
                alerted_at=now
            ))
    except IntegrityError:
        return False
    return True


async def alerted_thresholds(db: AsyncSession, trip_id: int) -> list[int]:
    """Thresholds that already fired for a trip, ascending."""
    result = await db.execute(
        select(DelayAlert.threshold_minutes)
        .where(DelayAlert.trip_id == trip_id)
        .order_by(DelayAlert.threshold_minutes)
    )
    return list(result.scalars().all())


async def _update_delay_status(db: AsyncSession, trip_id: int, delay: DelayInfo, now: datetime) -> None:
    delayed = TripStatus.DELAYED.value
    snapshot, created = await get_or_create_tracking_status(
        db,
        trip_id,
        current_status=delayed,
        status_changed_at=now,
        delay_minutes=delay.delay_minutes,
        delay_reason=delay.reason,
        completion_percent=completion_percent(delayed),
    )
    if created:
        return
    snapshot.delay_minutes = delay.delay_minutes
    snapshot.delay_reason = delay.reason
    if snapshot.current_status != delayed:
        snapshot.previous_status = snapshot.current_status
        snapshot.current_status = delayed
        snapshot.status_changed_at = now
        snapshot.completion_percent = completion_percent(delayed)
    await db.flush()


@storage_bound
async def process_delay_alerts(
    db: AsyncSession,
    trip_id: int,
    sink: Optional[NotificationSink] = None,
    now: Optional[datetime] = None
) -> DelayAlertResult:
    """
    Alert shippers when a trip's delay reaches a new threshold.

    Flow:
    1. Re-check the delay; nothing to do when on time
    2. Walk thresholds ascending and claim the first reached one that has
       not alerted yet
    3. Notify each load's shipper, append a DELAY event and mark the
       trip's snapshot DELAYED with the delay figures

    Calling this repeatedly at the same delay level alerts once.
    """
    now = now or utcnow()
    trip = await get_trip(db, trip_id)
    delay = compute_delay(trip, now)

    if delay is None:
        return DelayAlertResult(trip_id=trip_id, delay=None, alerted_threshold=None, notifications_sent=0)

    fired = None
    for threshold in sorted(settings.delay_alert_thresholds):
        if delay.delay_minutes < threshold:
            break
        if await _claim_threshold(db, trip_id, threshold, delay.delay_minutes, now):
            fired = threshold
            break

    if fired is None:
        await db.commit()
        return DelayAlertResult(trip_id=trip_id, delay=delay, alerted_threshold=None, notifications_sent=0)

    sink = sink or DatabaseNotificationSink(db)
    loads_result = await db.execute(select(Load).where(Load.trip_id == trip_id).order_by(Load.id))
    sent = 0
    for load in loads_result.scalars().all():
        delivered = await sink.notify(
            user_id=load.shipper_id,
            title="Shipment Delayed",
            message=f"Your shipment is delayed by {delay.delay_minutes} minutes due to {delay.reason}",
            type=NotificationType.TRIP_DELAYED.value,
            related_id=trip_id
        )
        sent += int(delivered)

    await record_event(
        db,
        trip_id=trip_id,
        event_type=TrackingEventType.DELAY,
        event_data={
            "threshold_minutes": fired,
            "delay_minutes": delay.delay_minutes,
            "reason": delay.reason,
            "severity": delay.severity
        },
        description=f"Trip delayed by {delay.delay_minutes} minutes - {delay.reason}",
        latitude=trip.current_latitude,
        longitude=trip.current_longitude,
        timestamp=now
    )
    await _update_delay_status(db, trip_id, delay, now)
    await db.commit()

    logger.info(
        "Delay alert fired",
        extra={"trip_id": trip_id, "threshold_minutes": fired, "delay_minutes": delay.delay_minutes, "severity": delay.severity}
    )
    return DelayAlertResult(trip_id=trip_id, delay=delay, alerted_threshold=fired, notifications_sent=sent)
