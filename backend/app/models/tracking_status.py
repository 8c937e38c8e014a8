"""
Tracking Status database model.

The single derived-status snapshot for a trip, and independently one per
load. Created lazily and mutated in place afterwards.
"""

from sqlalchemy import Column, Integer, Float, String, ForeignKey, DateTime, Index, text
from sqlalchemy.sql import func
from backend.app.db.session import Base


class TrackingStatus(Base):
    """
    Tracking status snapshot.
    
    Trip-level rows have load_id NULL; load-level rows carry both ids.
    At most one row per trip (where load_id is NULL) and one per load.
    """
    __tablename__ = "tracking_statuses"
    __table_args__ = (
        Index(
            "uq_tracking_statuses_trip",
            "trip_id",
            unique=True,
            sqlite_where=text("load_id IS NULL"),
            postgresql_where=text("load_id IS NULL"),
        ),
    )
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    trip_id = Column(Integer, ForeignKey('trips.id'), nullable=False, index=True)
    load_id = Column(Integer, ForeignKey('loads.id'), nullable=True, unique=True)
    
    current_status = Column(String(32), nullable=False)
    previous_status = Column(String(32), nullable=True)
    status_changed_at = Column(DateTime(timezone=True), nullable=False)
    
    estimated_arrival = Column(DateTime(timezone=True), nullable=True)
    delay_minutes = Column(Integer, nullable=True)
    delay_reason = Column(String(255), nullable=True)
    next_milestone = Column(String(64), nullable=True)
    completion_percent = Column(Float, nullable=False, default=0.0)
    
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<TrackingStatus(trip_id={self.trip_id}, load_id={self.load_id}, current='{self.current_status}')>"
