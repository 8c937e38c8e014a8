"""
Shipment tracking schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict, Any
from backend.app.models.trip_enums import SampleStatus


class LocationUpdate(BaseModel):
    """
    Inbound location sample.
    
    Ranges are checked by the engine (not here) so that every violation
    surfaces as a typed tracking error carrying the offending value.
    """
    latitude: float
    longitude: float
    altitude: Optional[float] = None  # meters
    speed: Optional[float] = None  # km/h
    heading: Optional[float] = None  # degrees
    accuracy: Optional[float] = None  # meters
    source: str = "GPS"
    recorded_at: Optional[datetime] = None  # defaults to ingestion time
    load_id: Optional[int] = None


class LocationSampleResponse(BaseModel):
    """Stored location sample."""
    id: int
    trip_id: int
    load_id: Optional[int]
    latitude: float
    longitude: float
    altitude: Optional[float]
    speed: Optional[float]
    heading: Optional[float]
    accuracy: Optional[float]
    source: str
    status: SampleStatus
    recorded_at: datetime
    
    class Config:
        from_attributes = True


class LocationIngestResponse(BaseModel):
    """Response after ingesting a location sample."""
    trip_id: int
    sample_id: int
    cached_location_updated: bool
    estimated_arrival: Optional[datetime]


class StatusUpdateRequest(BaseModel):
    """Request body for a status change."""
    status: str = Field(..., min_length=1)


class TrackingStatusResponse(BaseModel):
    """Derived status snapshot."""
    trip_id: int
    load_id: Optional[int]
    current_status: str
    previous_status: Optional[str]
    status_changed_at: datetime
    estimated_arrival: Optional[datetime]
    delay_minutes: Optional[int]
    delay_reason: Optional[str]
    next_milestone: Optional[str]
    completion_percent: float
    
    class Config:
        from_attributes = True


class TrackingEventResponse(BaseModel):
    """Tracking event record."""
    id: int
    trip_id: Optional[int]
    load_id: Optional[int]
    event_type: str
    event_data: Optional[Dict[str, Any]]
    location: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    timestamp: datetime
    description: Optional[str]
    
    class Config:
        from_attributes = True


class DelayInfo(BaseModel):
    """Lateness of a trip against its estimated arrival."""
    delay_minutes: int
    reason: str
    severity: str  # LOW, MEDIUM, HIGH, CRITICAL


class DelayAlertResult(BaseModel):
    """Outcome of one delay-alert pass."""
    trip_id: int
    delay: Optional[DelayInfo]
    alerted_threshold: Optional[int]
    notifications_sent: int


class ETAResponse(BaseModel):
    trip_id: int
    estimated_arrival: datetime


class DiagnosticsResponse(BaseModel):
    """Anomaly or consistency findings."""
    trip_id: int
    issues: List[str]
    count: int


class OfflineSyncResponse(BaseModel):
    """Response after replaying buffered samples."""
    trip_id: int
    total_records: int
    success_count: int
    error_count: int
    errors: List[str]


class RecoverRequest(BaseModel):
    error_type: str = Field(..., min_length=1)


class CleanupResponse(BaseModel):
    retention_days: int
    samples_deleted: int
    events_deleted: int


class OfflineSyncRequest(BaseModel):
    """Samples buffered on a device while it had no connectivity."""
    locations: List[LocationUpdate]


class TrackingEventCreate(BaseModel):
    """Request body for logging a tracking event by hand."""
    event_type: str = Field(..., min_length=1, max_length=50)
    load_id: Optional[int] = None
    event_data: Optional[Dict[str, Any]] = None
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    description: Optional[str] = None
