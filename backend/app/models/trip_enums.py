"""
Trip, load and tracking enumerations.
"""

import enum


class TripStatus(str, enum.Enum):
    """Trip status enumeration."""
    PLANNED = "PLANNED"  # Scheduled, not yet started
    ACTIVE = "ACTIVE"  # Vehicle dispatched
    AT_PICKUP = "AT_PICKUP"  # Loading at origin
    IN_TRANSIT = "IN_TRANSIT"  # Moving towards destination
    AT_DELIVERY = "AT_DELIVERY"  # Unloading at destination
    DELAYED = "DELAYED"  # Behind schedule while moving
    COMPLETED = "COMPLETED"  # Terminal
    CANCELLED = "CANCELLED"  # Terminal


class LoadStatus(str, enum.Enum):
    """Load (shipment) status enumeration."""
    BOOKED = "BOOKED"
    PICKUP_SCHEDULED = "PICKUP_SCHEDULED"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"  # Terminal
    EXCEPTION = "EXCEPTION"  # Damaged, refused, held at customs...


class LocationSource(str, enum.Enum):
    """Where a location sample came from."""
    GPS = "GPS"
    MANUAL = "MANUAL"
    ESTIMATED = "ESTIMATED"  # Synthesized by recovery
    NETWORK = "NETWORK"
    PASSIVE = "PASSIVE"


class SampleStatus(str, enum.Enum):
    """Lifecycle status of a location sample."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class DelaySeverity(str, enum.Enum):
    """Lateness classification."""
    LOW = "LOW"  # <= 30 min
    MEDIUM = "MEDIUM"  # 31-60 min
    HIGH = "HIGH"  # 61-120 min
    CRITICAL = "CRITICAL"  # > 120 min
