"""
Geographic utilities for the convoy sync engine.

Includes:
- Great-circle distance (haversine)
- Bounding boxes for framing two positions
"""

import math
from typing import Tuple

from .config import EARTH_RADIUS_KM


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points.

    Args:
        lat1, lon1: First point in degrees
        lat2, lon2: Second point in degrees

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def bounding_box(lat1: float, lon1: float, lat2: float, lon2: float) -> Tuple[Tuple[float, float], Tuple[float, float]]:
    """
    Smallest box containing both points.

    Returns:
        ((south, west), (north, east))
    """
    return (min(lat1, lat2), min(lon1, lon2)), (max(lat1, lat2), max(lon1, lon2))
