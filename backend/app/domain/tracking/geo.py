"""
Geospatial math for tracking.

Pure functions; callers validate coordinates before measuring.
"""

import math

# Radius of Earth in kilometers
EARTH_RADIUS_KM = 6371.0


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle (Haversine) distance between two points.
    
    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)
    
    Returns:
        Distance in kilometers. NaN in, NaN out.
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2) - math.radians(lon1)
    
    a = math.sin(dlat / 2)**2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2)**2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    
    return EARTH_RADIUS_KM * c


def is_valid_coordinate(lat: float, lng: float) -> bool:
    """Latitude within [-90, 90] and longitude within [-180, 180]."""
    return -90 <= lat <= 90 and -180 <= lng <= 180


def implied_speed_kmh(distance: float, hours: float) -> float:
    """Average speed needed to cover ``distance`` km in ``hours``; 0 for non-positive spans."""
    if hours <= 0:
        return 0.0
    return distance / hours
