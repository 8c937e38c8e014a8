"""
Delay Alert database model.

One row per (trip, threshold) that has already alerted. The unique
constraint is what keeps concurrent delay checks from alerting twice.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, UniqueConstraint
from backend.app.db.session import Base


class DelayAlert(Base):
    __tablename__ = "delay_alerts"
    __table_args__ = (
        UniqueConstraint("trip_id", "threshold_minutes", name="uq_delay_alert_trip_threshold"),
    )
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey('trips.id'), nullable=False, index=True)
    threshold_minutes = Column(Integer, nullable=False)
    delay_minutes = Column(Integer, nullable=False)
    alerted_at = Column(DateTime(timezone=True), nullable=False)
    
    def __repr__(self):
        return f"<DelayAlert(trip_id={self.trip_id}, threshold={self.threshold_minutes})>"
