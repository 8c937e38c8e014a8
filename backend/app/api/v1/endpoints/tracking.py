"""
Shipment Tracking API Endpoints.

Thin HTTP surface over the tracking engine. Engine errors are rendered by
the global exception handlers; this module only maps requests to calls.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status, Path, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.redis_client import get_redis
from backend.app.db.session import get_db
from backend.app.domain.tracking import delays, diagnostics, eta, events, ingestion, recovery, reporting, retention
from backend.app.domain.tracking.queries import get_trip, get_tracking_status
from backend.app.domain.tracking.status_machine import transition_trip, transition_load
from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.schemas.tracking import (
    LocationUpdate, LocationIngestResponse, LocationSampleResponse,
    StatusUpdateRequest, TrackingStatusResponse, TrackingEventResponse, TrackingEventCreate,
    DelayAlertResult, ETAResponse, DiagnosticsResponse,
    OfflineSyncRequest, OfflineSyncResponse, RecoverRequest, CleanupResponse
)

trip_router = APIRouter(prefix="/tracking/trips", tags=["Tracking - Trips"])
load_router = APIRouter(prefix="/tracking/loads", tags=["Tracking - Loads"])
ops_router = APIRouter(prefix="/tracking/ops", tags=["Tracking - Ops"])


@trip_router.post("/{trip_id}/locations", response_model=LocationIngestResponse, status_code=status.HTTP_201_CREATED)
async def ingest_location(
    location: LocationUpdate,
    trip_id: int = Path(..., description="Trip ID"),
    retry: bool = Query(False, description="Retry transient storage failures with backoff"),
    max_retries: Optional[int] = Query(None, ge=0, description="Retry budget; implies retry"),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a location sample for a trip.

    Validates and sanitizes the sample, refreshes the trip's cached
    position (if the sample is newer) and recomputes the ETA. With
    ``retry`` or ``max_retries`` set, transient storage failures are
    retried with exponential backoff.
    """
    if retry or max_retries is not None:
        return await recovery.retry_location_update(db, trip_id, location, max_retries=max_retries)
    return await ingestion.ingest_location(db, trip_id, location)


@trip_router.get("/{trip_id}/location", response_model=LocationSampleResponse)
async def get_current_location(
    trip_id: int = Path(..., description="Trip ID"),
    db: AsyncSession = Depends(get_db)
):
    """Most recent location sample for a trip."""
    return await ingestion.get_current_location(db, trip_id)


@trip_router.get("/{trip_id}/history", response_model=List[LocationSampleResponse])
async def get_tracking_history(
    trip_id: int = Path(..., description="Trip ID"),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    source: Optional[str] = None,
    sample_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db)
):
    """Location history, newest first, with optional filters."""
    await get_trip(db, trip_id)
    return await reporting.get_tracking_history(
        db, trip_id,
        start_date=start_date, end_date=end_date,
        source=source, status=sample_status,
        limit=limit, offset=offset
    )


@trip_router.post("/{trip_id}/offline-sync", response_model=OfflineSyncResponse)
async def sync_offline_data(
    payload: OfflineSyncRequest,
    trip_id: int = Path(..., description="Trip ID"),
    db: AsyncSession = Depends(get_db)
):
    """Replay samples buffered while the device was offline."""
    return await ingestion.sync_offline_data(db, trip_id, payload.locations)


@trip_router.get("/{trip_id}/eta", response_model=ETAResponse)
async def estimate_arrival(
    trip_id: int = Path(..., description="Trip ID"),
    db: AsyncSession = Depends(get_db)
):
    """Recompute and return the estimated arrival."""
    estimated = await eta.estimate_arrival(db, trip_id)
    return ETAResponse(trip_id=trip_id, estimated_arrival=estimated)


@trip_router.get("/{trip_id}/status", response_model=TrackingStatusResponse)
async def get_trip_status(
    trip_id: int = Path(..., description="Trip ID"),
    db: AsyncSession = Depends(get_db)
):
    """Trip-level tracking status snapshot."""
    await get_trip(db, trip_id)
    snapshot = await get_tracking_status(db, trip_id=trip_id)
    if snapshot is None:
        raise ResourceNotFoundError("Tracking status for trip", trip_id)
    return snapshot


@trip_router.put("/{trip_id}/status", response_model=TrackingStatusResponse)
async def update_trip_status(
    payload: StatusUpdateRequest,
    trip_id: int = Path(..., description="Trip ID"),
    db: AsyncSession = Depends(get_db)
):
    """
    Move a trip to a new status.

    Returns 409 when the transition is not allowed from the current status
    or when another request changed the status first.
    """
    return await transition_trip(db, trip_id, payload.status)


@trip_router.get("/{trip_id}/delay")
async def check_delay(
    trip_id: int = Path(..., description="Trip ID"),
    db: AsyncSession = Depends(get_db)
):
    """Current delay of a trip, if any."""
    delay = await delays.check_delay(db, trip_id)
    return {"trip_id": trip_id, "delayed": delay is not None, "delay": delay}


@trip_router.post("/{trip_id}/delay-alerts", response_model=DelayAlertResult)
async def process_delay_alerts(
    trip_id: int = Path(..., description="Trip ID"),
    db: AsyncSession = Depends(get_db)
):
    """Notify shippers if the trip's delay reached a threshold not yet alerted."""
    return await delays.process_delay_alerts(db, trip_id)


@trip_router.get("/{trip_id}/anomalies", response_model=DiagnosticsResponse)
async def detect_anomalies(
    trip_id: int = Path(..., description="Trip ID"),
    db: AsyncSession = Depends(get_db)
):
    findings = await diagnostics.detect_anomalies(db, trip_id)
    return DiagnosticsResponse(trip_id=trip_id, issues=findings, count=len(findings))


@trip_router.get("/{trip_id}/consistency", response_model=DiagnosticsResponse)
async def validate_consistency(
    trip_id: int = Path(..., description="Trip ID"),
    db: AsyncSession = Depends(get_db)
):
    findings = await diagnostics.validate_consistency(db, trip_id)
    return DiagnosticsResponse(trip_id=trip_id, issues=findings, count=len(findings))


@trip_router.get("/{trip_id}/events", response_model=List[TrackingEventResponse])
async def get_tracking_events(
    trip_id: int = Path(..., description="Trip ID"),
    event_types: Optional[List[str]] = Query(None, alias="event_type"),
    load_id: Optional[int] = None,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    """Tracking events, newest first."""
    await get_trip(db, trip_id)
    return await events.get_tracking_events(db, trip_id, event_types=event_types, limit=limit, load_id=load_id)


@trip_router.post("/{trip_id}/events", response_model=TrackingEventResponse, status_code=status.HTTP_201_CREATED)
async def log_tracking_event(
    payload: TrackingEventCreate,
    trip_id: int = Path(..., description="Trip ID"),
    db: AsyncSession = Depends(get_db)
):
    """Append a tracking event (e.g. a manual MILESTONE) to a trip."""
    await get_trip(db, trip_id)
    return await events.log_tracking_event(
        db,
        trip_id=trip_id,
        event_type=payload.event_type.strip().upper(),
        event_data=payload.event_data,
        description=payload.description,
        load_id=payload.load_id,
        location=payload.location,
        latitude=payload.latitude,
        longitude=payload.longitude
    )


@trip_router.get("/{trip_id}/audit-trail")
async def get_audit_trail(
    trip_id: int = Path(..., description="Trip ID"),
    include_system_events: bool = False,
    db: AsyncSession = Depends(get_db)
):
    """Chronological timeline of samples, events and status snapshots."""
    return await reporting.get_audit_trail(db, trip_id, include_system_events=include_system_events)


@trip_router.get("/{trip_id}/statistics")
async def get_tracking_statistics(
    trip_id: int = Path(..., description="Trip ID"),
    db: AsyncSession = Depends(get_db)
):
    return await reporting.get_tracking_statistics(db, trip_id)


@trip_router.get("/{trip_id}/export")
async def export_tracking_data(
    trip_id: int = Path(..., description="Trip ID"),
    format: str = Query("json", description="json or csv"),
    db: AsyncSession = Depends(get_db)
):
    """Export samples (and events, for json) oldest first."""
    try:
        exported = await reporting.export_tracking_data(db, trip_id, format=format)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    if isinstance(exported, str):
        return PlainTextResponse(
            exported,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="trip_{trip_id}_tracking.csv"'}
        )
    return exported


@trip_router.post("/{trip_id}/recover")
async def recover_from_error(
    payload: RecoverRequest,
    trip_id: int = Path(..., description="Trip ID"),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis)
):
    """
    Run the recovery action for an error class.

    STALE_DATA, INVALID_COORDINATES or DATABASE_ERROR; anything else is 422.
    """
    result = await recovery.recover_from_error(db, trip_id, payload.error_type, redis=redis)
    return {
        "trip_id": trip_id,
        "error_type": payload.error_type.strip().upper(),
        "recovered": True,
        "result": result,
    }


@load_router.put("/{load_id}/status", response_model=TrackingStatusResponse)
async def update_load_status(
    payload: StatusUpdateRequest,
    load_id: int = Path(..., description="Load ID"),
    db: AsyncSession = Depends(get_db)
):
    """Move a load along the load status graph."""
    return await transition_load(db, load_id, payload.status)


@load_router.get("/{load_id}/status", response_model=TrackingStatusResponse)
async def get_load_status(
    load_id: int = Path(..., description="Load ID"),
    db: AsyncSession = Depends(get_db)
):
    snapshot = await get_tracking_status(db, load_id=load_id)
    if snapshot is None:
        raise ResourceNotFoundError("Tracking status for load", load_id)
    return snapshot


@ops_router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_old_tracking_data(
    retention_days: Optional[int] = Query(None, ge=0, description="Defaults to the configured retention"),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete samples and non-critical events older than the retention window.

    Intended for a scheduler, not the request path.
    """
    days = retention_days if retention_days is not None else settings.retention_days
    return await retention.cleanup_old_tracking_data(db, days)
