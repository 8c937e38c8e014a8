"""
Retention sweep for tracking data.

Runs off the request path (scheduled job or ops endpoint). Location
samples older than the cutoff are deleted unconditionally; events are
deleted too except the critical types, which are kept indefinitely.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.reliability import storage_bound
from backend.app.core.timeutils import utcnow
from backend.app.domain.tracking.events import record_event
from backend.app.models.location_sample import LocationSample
from backend.app.models.tracking_event import TrackingEvent, TrackingEventType, CRITICAL_EVENT_TYPES
from backend.app.schemas.tracking import CleanupResponse

logger = logging.getLogger("shipment_tracking")


@storage_bound
async def cleanup_old_tracking_data(
    db: AsyncSession,
    retention_days: int,
    now: Optional[datetime] = None
) -> CleanupResponse:
    """
    Delete tracking data older than ``retention_days``.
    
    Appends one SYSTEM_CLEANUP event (no trip) with the counts.
    """
    if retention_days < 0:
        raise ValueError("retention_days must be non-negative")
    
    cutoff = (now or utcnow()) - timedelta(days=retention_days)
    
    samples_result = await db.execute(
        delete(LocationSample)
        .where(LocationSample.recorded_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    events_result = await db.execute(
        delete(TrackingEvent)
        .where(
            TrackingEvent.timestamp < cutoff,
            TrackingEvent.event_type.not_in(CRITICAL_EVENT_TYPES)
        )
        .execution_options(synchronize_session=False)
    )
    samples_deleted = samples_result.rowcount or 0
    events_deleted = events_result.rowcount or 0
    
    await record_event(
        db,
        trip_id=None,
        event_type=TrackingEventType.SYSTEM_CLEANUP,
        event_data={
            "retention_days": retention_days,
            "records_deleted": samples_deleted,
            "events_deleted": events_deleted
        },
        description=f"Cleaned up tracking data older than {retention_days} days"
    )
    await db.commit()
    
    logger.info(
        "Tracking retention sweep completed",
        extra={"retention_days": retention_days, "samples_deleted": samples_deleted, "events_deleted": events_deleted}
    )
    return CleanupResponse(
        retention_days=retention_days,
        samples_deleted=samples_deleted,
        events_deleted=events_deleted
    )
