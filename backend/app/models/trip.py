"""
Trip database model.

Trips are owned by trip management; the tracking engine only writes the
cached position, the estimated arrival and the status.
"""

from sqlalchemy import Column, Integer, Float, String, DateTime, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.trip_enums import TripStatus


class Trip(Base):
    """
    Trip model.
    
    A scheduled movement of a vehicle between an origin and a destination,
    carrying zero or more loads.
    
    current_latitude/current_longitude/last_location_update are a read cache
    of the newest LocationSample; location_samples stays the source of truth.
    """
    __tablename__ = "trips"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    # Ownership (carrier / fleet owner)
    carrier_id = Column(Integer, nullable=True, index=True)
    reference = Column(String(64), nullable=True, unique=True)
    
    # Route endpoints
    origin_lat = Column(Float, nullable=False)
    origin_lng = Column(Float, nullable=False)
    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)
    
    # Schedule
    departure_date = Column(DateTime(timezone=True), nullable=True)
    estimated_arrival = Column(DateTime(timezone=True), nullable=False)
    
    # Status
    status = Column(Enum(TripStatus), default=TripStatus.PLANNED, nullable=False, index=True)
    
    # Cached position (written by the tracking engine only)
    current_latitude = Column(Float, nullable=True)
    current_longitude = Column(Float, nullable=True)
    last_location_update = Column(DateTime(timezone=True), nullable=True)
    
    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<Trip(id={self.id}, status='{self.status.value}')>"
