"""
Tracking Event database model.

Append-only audit and alerting records for trips and loads.
"""

from sqlalchemy import Column, Integer, Float, String, Text, DateTime, JSON, Index
from backend.app.db.session import Base


class TrackingEventType:
    """Standardized tracking event type constants."""
    STATUS_CHANGE = "STATUS_CHANGE"
    LOAD_STATUS_CHANGE = "LOAD_STATUS_CHANGE"
    DEPARTURE = "DEPARTURE"
    ARRIVAL = "ARRIVAL"
    DELAY = "DELAY"
    EXCEPTION = "EXCEPTION"
    ETA_UPDATE = "ETA_UPDATE"
    MILESTONE = "MILESTONE"
    OFFLINE_SYNC = "OFFLINE_SYNC"
    
    # Retry / recovery
    RETRY_ATTEMPT = "RETRY_ATTEMPT"
    RETRY_SUCCESS = "RETRY_SUCCESS"
    RETRY_FAILED = "RETRY_FAILED"
    LOCATION_UPDATE_REQUESTED = "LOCATION_UPDATE_REQUESTED"
    DATABASE_RETRY = "DATABASE_RETRY"
    
    # System
    SYSTEM_CLEANUP = "SYSTEM_CLEANUP"
    SYSTEM_UPDATE = "SYSTEM_UPDATE"
    AUTO_CALCULATION = "AUTO_CALCULATION"


# Retained by the retention sweep regardless of age
CRITICAL_EVENT_TYPES = (
    TrackingEventType.DEPARTURE,
    TrackingEventType.ARRIVAL,
    TrackingEventType.DELAY,
    TrackingEventType.EXCEPTION,
)

# Hidden from audit trails unless explicitly requested
SYSTEM_EVENT_TYPES = (
    TrackingEventType.SYSTEM_UPDATE,
    TrackingEventType.AUTO_CALCULATION,
)


class TrackingEvent(Base):
    """
    Tracking event model.
    
    trip_id is NULL only for engine-wide events such as SYSTEM_CLEANUP.
    """
    __tablename__ = "tracking_events"
    __table_args__ = (
        Index("ix_tracking_events_trip_type", "trip_id", "event_type"),
    )
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    trip_id = Column(Integer, nullable=True, index=True)
    load_id = Column(Integer, nullable=True, index=True)
    
    event_type = Column(String(50), nullable=False, index=True)
    event_data = Column(JSON, nullable=True)
    
    # Where it happened (optional)
    location = Column(String(255), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    description = Column(Text, nullable=True)
    
    def __repr__(self):
        return f"<TrackingEvent(id={self.id}, trip_id={self.trip_id}, type='{self.event_type}')>"
