"""Unit tests for distance, driver ranking and search-radius resolution."""

import math

import h3
import pytest

from src.domain.distance import EARTH_RADIUS_KM, distance_km, haversine_km, round_km
from src.domain.entities import DriverSnapshot, GeoPoint
from src.domain.enums import ApprovalStatus, VehicleClass
from src.domain.errors import ValidationError
from src.domain.matching import (
    DriverMatcher,
    driver_h3_cell,
    rank_candidates,
    resolve_search_radius,
    search_cells,
)

PICKUP = GeoPoint(25.2948, 51.5310)


def _driver(driver_id: int, lat_offset: float = 0.0, **overrides) -> DriverSnapshot:
    values = dict(
        driver_id=driver_id,
        vehicle_class=VehicleClass.SEDAN,
        location=GeoPoint(PICKUP.latitude + lat_offset, PICKUP.longitude),
        approval_status=ApprovalStatus.APPROVED,
        is_online=True,
        is_location_enabled=True,
        is_accepting_bookings=True,
    )
    values.update(overrides)
    return DriverSnapshot(**values)


class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_km(25.0, 51.0, 25.0, 51.0) == 0.0

    def test_one_degree_of_latitude(self):
        # 2 * pi * 6371 / 360
        assert haversine_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.19, abs=0.01)

    def test_symmetric(self):
        d1 = haversine_km(25.0, 51.0, 26.0, 52.0)
        d2 = haversine_km(26.0, 52.0, 25.0, 51.0)
        assert abs(d1 - d2) < 1e-9

    def test_canonical_distance_is_rounded(self):
        d = distance_km(PICKUP, GeoPoint(25.2609, 51.6138))
        assert d == round(d, 2)
        assert 8.0 < d < 10.0

    def test_round_km_half_up(self):
        assert round_km(1.005) == 1.01
        assert round_km(2.344) == 2.34


class TestRankCandidates:
    def test_filters_ineligible_drivers(self):
        drivers = [
            _driver(1, 0.01),
            _driver(2, 0.01, approval_status=ApprovalStatus.PENDING),
            _driver(3, 0.01, is_online=False),
            _driver(4, 0.01, is_location_enabled=False),
            _driver(5, 0.01, is_accepting_bookings=False),
            _driver(6, 0.01, vehicle_class=VehicleClass.TRUCK),
            _driver(7, 0.01, location=None),
        ]
        ranked = rank_candidates(PICKUP, VehicleClass.SEDAN, 10, drivers)
        assert [c.driver_id for c in ranked] == [1]

    def test_excludes_drivers_outside_radius(self):
        near, far = _driver(1, 0.05), _driver(2, 0.2)  # ~5.6 km, ~22 km
        ranked = rank_candidates(PICKUP, VehicleClass.SEDAN, 10, [near, far])
        assert [c.driver_id for c in ranked] == [1]

    def test_orders_by_distance(self):
        drivers = [_driver(1, 0.05), _driver(2, 0.01), _driver(3, 0.03)]
        ranked = rank_candidates(PICKUP, VehicleClass.SEDAN, 10, drivers)
        assert [c.driver_id for c in ranked] == [2, 3, 1]
        assert ranked[0].distance_km < ranked[1].distance_km < ranked[2].distance_km

    def test_ties_broken_by_driver_id(self):
        drivers = [_driver(9, 0.02), _driver(4, 0.02), _driver(7, 0.02)]
        ranked = rank_candidates(PICKUP, VehicleClass.SEDAN, 10, drivers)
        assert [c.driver_id for c in ranked] == [4, 7, 9]

    def test_boundary_distance_is_included(self):
        driver = _driver(1, 0.02)
        exact = haversine_km(
            PICKUP.latitude, PICKUP.longitude,
            driver.location.latitude, driver.location.longitude,
        )
        assert rank_candidates(PICKUP, VehicleClass.SEDAN, exact, [driver])

    def test_radius_compares_unrounded_distance(self):
        # Both round to 10.00 km; only the one inside the radius qualifies.
        outside = _driver(1, math.degrees(10.004 / EARTH_RADIUS_KM))
        inside = _driver(2, math.degrees(9.996 / EARTH_RADIUS_KM))
        ranked = rank_candidates(PICKUP, VehicleClass.SEDAN, 10, [outside, inside])
        assert [c.driver_id for c in ranked] == [2]
        assert ranked[0].distance_km == 10.0

    def test_empty_when_nobody_qualifies(self):
        assert rank_candidates(PICKUP, VehicleClass.SEDAN, 10, []) == []


class _ListRegistry:
    def __init__(self, drivers):
        self.drivers = drivers
        self.calls = []

    async def list_eligible(self, vehicle_class, near=None, radius_km=None):
        self.calls.append((vehicle_class, near, radius_km))
        return self.drivers

    async def get_driver(self, driver_id):
        raise NotImplementedError


class TestDriverMatcher:
    @pytest.mark.asyncio
    async def test_uses_registry_and_re_filters(self):
        # A registry without a spatial index returns everyone; the matcher still filters.
        registry = _ListRegistry([_driver(1, 0.01), _driver(2, 0.5)])
        ranked = await DriverMatcher().find_candidates(PICKUP, VehicleClass.SEDAN, 10, registry)
        assert [c.driver_id for c in ranked] == [1]
        assert registry.calls == [(VehicleClass.SEDAN, PICKUP, 10)]


class TestSearchCells:
    def test_contains_pickup_cell(self):
        assert driver_h3_cell(PICKUP) in search_cells(PICKUP, 10)

    def test_covers_points_at_the_radius(self):
        cells = search_cells(PICKUP, 10)
        for lat_offset, lng_offset in [(0.089, 0), (-0.089, 0), (0, 0.099), (0, -0.099)]:
            point = GeoPoint(PICKUP.latitude + lat_offset, PICKUP.longitude + lng_offset)
            assert distance_km(PICKUP, point) <= 10
            assert driver_h3_cell(point) in cells

    def test_grows_with_radius(self):
        assert len(search_cells(PICKUP, 50)) > len(search_cells(PICKUP, 5))

    def test_cells_are_valid(self):
        assert all(h3.is_valid_cell(c) for c in search_cells(PICKUP, 2))


class TestResolveSearchRadius:
    bounds = dict(default_km=10.0, min_km=1.0, max_km=50.0)

    def test_none_uses_default(self):
        assert resolve_search_radius(None, **self.bounds) == 10.0

    def test_default_clamped_to_max(self):
        assert resolve_search_radius(None, default_km=80, min_km=1, max_km=50) == 50

    def test_explicit_value_in_range(self):
        assert resolve_search_radius(25, **self.bounds) == 25.0

    @pytest.mark.parametrize("radius", [0.5, 50.1, 0])
    def test_out_of_range_rejected(self, radius):
        with pytest.raises(ValidationError):
            resolve_search_radius(radius, **self.bounds)
