"""
Retry and recovery for location ingestion.

retry_location_update() re-attempts transient failures with exponential
backoff (2^attempt seconds) and records every attempt in the event log.
Validation errors are not transient and propagate on the first attempt.

recover_from_error() dispatches a best-effort recovery action per error
class. Recovery failures raise RecoveryError so the caller still sees
that the original problem is unresolved.
"""

import asyncio
import json
import logging
from typing import Optional

from redis.exceptions import RedisError
from sqlalchemy import text, select, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core import redis_client as redis_client_module
from backend.app.core.exceptions import (
    RecoveryError, ResourceNotFoundError, TransientTrackingError, UpdateFailedAfterRetriesError
)
from backend.app.core.timeutils import utcnow
from backend.app.domain.tracking.events import log_tracking_event
from backend.app.domain.tracking.ingestion import ingest_location
from backend.app.domain.tracking.queries import get_trip
from backend.app.models.location_sample import LocationSample
from backend.app.models.tracking_event import TrackingEventType
from backend.app.models.trip_enums import LocationSource, SampleStatus
from backend.app.schemas.tracking import LocationUpdate, LocationIngestResponse

logger = logging.getLogger("shipment_tracking")


class RecoverableError:
    """Error classes recover_from_error() knows how to handle."""
    STALE_DATA = "STALE_DATA"
    INVALID_COORDINATES = "INVALID_COORDINATES"
    DATABASE_ERROR = "DATABASE_ERROR"


async def _log_best_effort(db: AsyncSession, trip_id: int, event_type: str, event_data: dict, description: str) -> None:
    try:
        await log_tracking_event(
            db, trip_id=trip_id, event_type=event_type,
            event_data=event_data, description=description
        )
    except (TransientTrackingError, SQLAlchemyError):
        logger.warning("Could not record %s event", event_type, extra={"trip_id": trip_id})


async def retry_location_update(
    db: AsyncSession,
    trip_id: int,
    location: LocationUpdate,
    max_retries: Optional[int] = None
) -> LocationIngestResponse:
    """
    Ingest a sample, retrying transient failures.

    Makes up to ``max_retries + 1`` attempts; attempt n (n >= 1) first
    waits 2^n seconds. This blocks the calling task for the backoff, so
    callers that need to stay responsive should schedule it in the
    background.

    Raises:
        LocationValidationError / ResourceNotFoundError: immediately
        UpdateFailedAfterRetriesError: every attempt failed
    """
    if max_retries is None:
        max_retries = settings.retry_max_attempts
    attempts = max_retries + 1
    last_error: Optional[TransientTrackingError] = None

    for attempt in range(attempts):
        if attempt > 0:
            await asyncio.sleep(settings.retry_backoff_base_seconds ** attempt)

        try:
            result = await ingest_location(db, trip_id, location)
        except TransientTrackingError as exc:
            last_error = exc
            logger.warning(
                "Location update attempt failed",
                extra={"trip_id": trip_id, "attempt": attempt + 1, "error_code": exc.error_code}
            )
            await _log_best_effort(
                db, trip_id, TrackingEventType.RETRY_ATTEMPT,
                {"attempt": attempt + 1, "error": str(exc)},
                f"Location update retry attempt {attempt + 1} failed"
            )
            continue

        if attempt > 0:
            await _log_best_effort(
                db, trip_id, TrackingEventType.RETRY_SUCCESS,
                {"attempt": attempt + 1, "max_retries": attempts},
                f"Location update succeeded after {attempt} retries"
            )
        return result

    await _log_best_effort(
        db, trip_id, TrackingEventType.RETRY_FAILED,
        {"max_retries": attempts, "final_error": str(last_error)},
        f"Location update failed after {attempts} attempts"
    )
    logger.error("Location update failed after retries", extra={"trip_id": trip_id, "attempts": attempts})
    raise UpdateFailedAfterRetriesError(attempts, str(last_error), trip_id=trip_id)


async def request_location_update(db: AsyncSession, trip_id: int, redis=None) -> None:
    """Ask the trip's device for a fresh sample via the Redis request channel."""
    redis = redis or redis_client_module.redis_client
    payload = {"trip_id": trip_id, "reason": "stale_data_recovery", "requested_at": utcnow().isoformat()}
    try:
        await redis.publish(settings.location_request_channel, json.dumps(payload))
    except RedisError as exc:
        raise RecoveryError(
            "RECOVERY_FAILED", "Could not request a fresh location", trip_id=trip_id,
            details={"error": str(exc)}
        ) from exc

    await log_tracking_event(
        db,
        trip_id=trip_id,
        event_type=TrackingEventType.LOCATION_UPDATE_REQUESTED,
        event_data={"reason": "stale_data_recovery"},
        description="Requested fresh location update due to stale data"
    )


async def use_last_known_location(db: AsyncSession, trip_id: int) -> LocationIngestResponse:
    """Re-ingest the newest ACTIVE sample's position as an ESTIMATED sample."""
    result = await db.execute(
        select(LocationSample)
        .where(LocationSample.trip_id == trip_id, LocationSample.status == SampleStatus.ACTIVE)
        .order_by(desc(LocationSample.recorded_at), desc(LocationSample.id))
        .limit(1)
    )
    last_good = result.scalar_one_or_none()
    if last_good is None:
        raise RecoveryError(
            "RECOVERY_FAILED", "No known-good location to fall back to", trip_id=trip_id
        )

    estimated = LocationUpdate(
        latitude=last_good.latitude,
        longitude=last_good.longitude,
        source=LocationSource.ESTIMATED.value,
        load_id=last_good.load_id
    )
    return await ingest_location(db, trip_id, estimated)


async def retry_database_operation(db: AsyncSession, trip_id: int) -> None:
    """
    Check store connectivity and record a DATABASE_RETRY event.

    No compensating action is taken; a failed check is raised as a
    transient error for the caller's retry policy.
    """
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        await db.rollback()
        raise TransientTrackingError(f"Database still unavailable: {exc}", trip_id=trip_id) from exc

    await log_tracking_event(
        db,
        trip_id=trip_id,
        event_type=TrackingEventType.DATABASE_RETRY,
        event_data={"reason": "connection_recovery"},
        description="Database reachable again, caller may retry"
    )


async def recover_from_error(db: AsyncSession, trip_id: int, error_type: str, redis=None):
    """
    Dispatch a recovery action for ``error_type``.

    STALE_DATA requests a fresh sample, INVALID_COORDINATES falls back to
    the last known-good position, DATABASE_ERROR checks connectivity.

    Raises:
        RecoveryError: unknown error type or the action failed
        ResourceNotFoundError: unknown trip
    """
    await get_trip(db, trip_id)
    error_type = (error_type or "").strip().upper()
    logger.info("Recovery requested", extra={"trip_id": trip_id, "error_type": error_type})

    if error_type == RecoverableError.STALE_DATA:
        return await request_location_update(db, trip_id, redis=redis)
    if error_type == RecoverableError.INVALID_COORDINATES:
        try:
            return await use_last_known_location(db, trip_id)
        except (TransientTrackingError, ResourceNotFoundError) as exc:
            raise RecoveryError("RECOVERY_FAILED", "Fallback to last known location failed", trip_id=trip_id) from exc
    if error_type == RecoverableError.DATABASE_ERROR:
        return await retry_database_operation(db, trip_id)

    raise RecoveryError(
        "UNKNOWN_ERROR_TYPE", "Unknown error type, cannot recover", trip_id=trip_id,
        details={"error_type": error_type}
    )
