"""
Distance calculation using the Haversine formula.

Assumption
----------
Great-circle distance is the canonical distance for driver filtering,
ranking and fare estimation.  A routing service may refine the pickup to
drop-off estimate (see ``RouteDistanceProvider``), but nothing depends on
one being reachable.

Complexity: O(1) per call.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .entities import GeoPoint

EARTH_RADIUS_KM = 6_371.0

_KM_QUANTUM = Decimal("0.01")


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def round_km(value: float) -> float:
    """Round a distance to 10 m, half away from zero."""
    return float(Decimal(repr(value)).quantize(_KM_QUANTUM, rounding=ROUND_HALF_UP))


def distance_km(origin: GeoPoint, destination: GeoPoint) -> float:
    """Canonical point-to-point distance, rounded to two decimals."""
    return round_km(
        haversine_km(
            origin.latitude, origin.longitude,
            destination.latitude, destination.longitude,
        )
    )
