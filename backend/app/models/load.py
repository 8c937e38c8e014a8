"""
Load database model.

A single shipment booked onto a trip. The tracking engine reads the shipper
to address delay alerts and drives the load-level status machine.
"""

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.trip_enums import LoadStatus


class Load(Base):
    __tablename__ = "loads"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    trip_id = Column(Integer, ForeignKey('trips.id'), nullable=False, index=True)
    shipper_id = Column(Integer, nullable=False, index=True)
    booking_reference = Column(String(64), nullable=True, unique=True)
    
    status = Column(Enum(LoadStatus), default=LoadStatus.BOOKED, nullable=False, index=True)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<Load(id={self.id}, trip_id={self.trip_id}, status='{self.status.value}')>"
