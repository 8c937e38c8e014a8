"""
Location sample validation and sanitization.

validate_location() rejects out-of-range samples with a typed error;
sanitize_location() rounds to storage precision and normalizes the source.
"""

import logging
from typing import Optional

from backend.app.core.exceptions import LocationValidationError
from backend.app.domain.tracking.geo import is_valid_coordinate
from backend.app.models.trip_enums import LocationSource
from backend.app.schemas.tracking import LocationUpdate

logger = logging.getLogger("shipment_tracking")

VALID_SOURCES = frozenset(source.value for source in LocationSource)

ALTITUDE_RANGE = (-500.0, 10000.0)  # meters
SPEED_RANGE = (0.0, 300.0)  # km/h
ACCURACY_RANGE = (0.0, 1000.0)  # meters


def _out_of_range(value: Optional[float], bounds: tuple) -> bool:
    low, high = bounds
    return value is not None and not (low <= value <= high)


def validate_location(trip_id: Optional[int], location: LocationUpdate) -> None:
    """
    Check a sample against the accepted ranges.
    
    Raises:
        LocationValidationError: first violated rule, in the order
            coordinates, altitude, speed, heading, accuracy, source.
    """
    error = None
    if not is_valid_coordinate(location.latitude, location.longitude):
        error = LocationValidationError(
            "INVALID_COORDINATES",
            "Invalid GPS coordinates",
            field="coordinates",
            value={"latitude": location.latitude, "longitude": location.longitude},
            trip_id=trip_id
        )
    elif _out_of_range(location.altitude, ALTITUDE_RANGE):
        error = LocationValidationError(
            "INVALID_ALTITUDE", "Altitude out of reasonable range",
            field="altitude", value=location.altitude, trip_id=trip_id
        )
    elif _out_of_range(location.speed, SPEED_RANGE):
        error = LocationValidationError(
            "INVALID_SPEED", "Speed out of reasonable range",
            field="speed", value=location.speed, trip_id=trip_id
        )
    elif location.heading is not None and not (0 <= location.heading < 360):
        error = LocationValidationError(
            "INVALID_HEADING", "Heading must be between 0 and 359 degrees",
            field="heading", value=location.heading, trip_id=trip_id
        )
    elif _out_of_range(location.accuracy, ACCURACY_RANGE):
        error = LocationValidationError(
            "INVALID_ACCURACY", "GPS accuracy out of reasonable range",
            field="accuracy", value=location.accuracy, trip_id=trip_id
        )
    elif (location.source or "").strip().upper() not in VALID_SOURCES:
        error = LocationValidationError(
            "INVALID_SOURCE", "Invalid location source",
            field="source", value=location.source, trip_id=trip_id
        )
    
    if error is not None:
        logger.warning(
            "Location sample rejected",
            extra={"trip_id": trip_id, "error_code": error.error_code, "value": error.value}
        )
        raise error


def _round_optional(value: Optional[float], digits: int) -> Optional[float]:
    if value is None:
        return None
    return round(value, digits)


def sanitize_location(location: LocationUpdate) -> LocationUpdate:
    """
    Return a normalized copy of the sample.
    
    - latitude/longitude: 6 decimals (~0.1 m)
    - altitude, speed, accuracy: 1 decimal
    - heading: whole degrees, 360 wraps to 0
    - source: upper-case
    
    Idempotent: sanitizing a sanitized sample changes nothing.
    """
    heading = location.heading
    if heading is not None:
        heading = float(round(heading)) % 360
    
    return location.model_copy(update={
        "latitude": round(location.latitude, 6),
        "longitude": round(location.longitude, 6),
        "altitude": _round_optional(location.altitude, 1),
        "speed": _round_optional(location.speed, 1),
        "heading": heading,
        "accuracy": _round_optional(location.accuracy, 1),
        "source": (location.source or "").strip().upper(),
    })
