"""
Nearest-Driver Matching
=======================

1. **Spatial Pre-filter** -- the registry narrows the driver set to H3
   hexagons around the pickup (``search_cells``).  This is a superset of
   the answer and may be skipped entirely by registries without an index.
2. **Eligibility Filter** -- approved, online, location enabled, accepting
   bookings, matching vehicle class.
3. **Radius Filter** -- the unrounded haversine distance must not exceed
   the search radius; candidates report it rounded to 10 m.
4. **Ranking** -- ascending distance, ties broken by driver id so the
   order never depends on registry iteration order.

Complexity
----------
Let D = drivers returned by the registry.

* Filtering:  O(D)
* Ranking:    O(D log D)

Snapshots may be stale by the time a driver answers; the acceptance
transition re-validates eligibility.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional

import h3

from .distance import haversine_km, round_km
from .entities import DriverSnapshot, GeoPoint
from .enums import VehicleClass
from .errors import ValidationError
from .ports import DriverRegistry


@dataclass(frozen=True)
class DriverCandidate:
    driver_id: int
    distance_km: float


def driver_h3_cell(point: GeoPoint, resolution: int = 6) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(point.latitude, point.longitude, resolution)


def search_cells(center: GeoPoint, radius_km: float, resolution: int = 6) -> set[str]:
    """
    H3 cells that cover every point within *radius_km* of *center*.

    Neighbouring hexagon centres are at least 1.5 edge lengths apart along
    a ring, so ``radius / (1.5 x edge)`` rings reach the radius; three extra
    rings absorb the cell's own extent and H3's edge-length distortion.
    """
    edge_km = h3.average_hexagon_edge_length(resolution, unit="km")
    k = math.ceil(radius_km / (1.5 * edge_km)) + 3
    return set(h3.grid_disk(driver_h3_cell(center, resolution), k))


def rank_candidates(
    pickup: GeoPoint,
    vehicle_class: VehicleClass,
    radius_km: float,
    drivers: Iterable[DriverSnapshot],
) -> list[DriverCandidate]:
    candidates = []
    for driver in drivers:
        if not driver.can_accept(vehicle_class):
            continue
        dist = haversine_km(
            pickup.latitude, pickup.longitude,
            driver.location.latitude, driver.location.longitude,
        )
        if dist <= radius_km:
            candidates.append(DriverCandidate(driver.driver_id, round_km(dist)))

    candidates.sort(key=lambda c: (c.distance_km, c.driver_id))
    return candidates


class DriverMatcher:
    """Finds and ranks drivers that can take a booking."""

    async def find_candidates(
        self,
        pickup: GeoPoint,
        vehicle_class: VehicleClass,
        radius_km: float,
        registry: DriverRegistry,
    ) -> list[DriverCandidate]:
        drivers = await registry.list_eligible(
            vehicle_class, near=pickup, radius_km=radius_km
        )
        return rank_candidates(pickup, vehicle_class, radius_km, drivers)


def resolve_search_radius(
    requested: Optional[float],
    *,
    default_km: float,
    min_km: float,
    max_km: float,
) -> float:
    """Apply the configured default / bounds to a caller-supplied radius."""
    if requested is None:
        return min(default_km, max_km)
    if not min_km <= requested <= max_km:
        raise ValidationError(
            f"Search radius must be between {min_km} and {max_km} km, got {requested}"
        )
    return float(requested)
