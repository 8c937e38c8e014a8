"""
Location Sample database model.

Stores the GPS breadcrumb trail for live trip tracking. Rows are
append-only; only the retention sweep deletes them.
"""

from sqlalchemy import Column, Integer, Float, String, ForeignKey, DateTime, Enum, Index
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.trip_enums import SampleStatus


class LocationSample(Base):
    """
    Location Sample model.
    
    One GPS-style observation for a trip, optionally narrowed to a load.
    Queried most-recent-first by recorded_at.
    """
    __tablename__ = "location_samples"
    __table_args__ = (
        Index("ix_location_samples_trip_recorded", "trip_id", "recorded_at"),
    )
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    # References
    trip_id = Column(Integer, ForeignKey('trips.id'), nullable=False, index=True)
    load_id = Column(Integer, ForeignKey('loads.id'), nullable=True, index=True)
    
    # GPS coordinates
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    altitude = Column(Float, nullable=True)  # meters
    speed = Column(Float, nullable=True)  # km/h
    heading = Column(Float, nullable=True)  # degrees, 0-359
    accuracy = Column(Float, nullable=True)  # meters
    
    source = Column(String(20), nullable=False, default="GPS")
    status = Column(Enum(SampleStatus), default=SampleStatus.ACTIVE, nullable=False, index=True)
    
    # Timing
    recorded_at = Column(DateTime(timezone=True), nullable=False, index=True)  # When GPS was recorded
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)  # When inserted to DB
    
    def __repr__(self):
        return f"<LocationSample(trip_id={self.trip_id}, lat={self.latitude}, lng={self.longitude})>"
