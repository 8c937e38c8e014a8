"""
Notification Database Model.

Backs the default notification sink: alerts land here for delivery by the
notification subsystem.
"""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, JSON, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
import enum


class NotificationType(str, enum.Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    TRIP_DELAYED = "TRIP_DELAYED"
    ETA_CHANGED = "ETA_CHANGED"
    MILESTONE = "MILESTONE"


class Notification(Base):
    """
    In-App Notification.
    Stores messages for users.
    """
    __tablename__ = "notifications"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    # Recipient
    user_id = Column(Integer, nullable=False, index=True)
    
    # Content
    type = Column(Enum(NotificationType), default=NotificationType.INFO, nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    related_id = Column(Integer, nullable=True, index=True)  # trip id for tracking alerts
    metadata_payload = Column(JSON, nullable=True)
    
    # State
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    
    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<Notification(id={self.id}, user={self.user_id}, title='{self.title}')>"
