"""
Tests for the coordinate helpers used by scoring, alerts and rerouting.
"""

import pytest

from safepath.models.domain import Coordinate
from safepath.services import geomath

from helpers import ORIGIN, east, north, northbound_polyline


class TestDistance:

    def test_zero_for_identical_points(self):
        assert geomath.distance(ORIGIN, ORIGIN) == 0.0

    def test_symmetric(self):
        a = Coordinate(40.7128, -74.0060)
        b = Coordinate(34.0522, -118.2437)
        assert geomath.distance(a, b) == pytest.approx(geomath.distance(b, a))

    def test_new_york_to_los_angeles(self):
        a = Coordinate(40.7128, -74.0060)
        b = Coordinate(34.0522, -118.2437)
        assert geomath.distance(a, b) == pytest.approx(3_936_000, rel=0.01)

    def test_meridian_offset(self):
        assert geomath.distance(ORIGIN, north(750)) == pytest.approx(750, abs=0.01)


class TestNearestPointOnPolyline:

    def test_returns_closest_vertex(self):
        line = northbound_polyline(1000, spacing_m=250)
        nearest = geomath.nearest_point_on_polyline(east(30, north(510)), line)
        assert nearest == line[2]

    def test_tie_resolves_to_first_vertex(self):
        line = [Coordinate(0.0, 0.0), Coordinate(0.0, 2.0)]
        midway = Coordinate(0.0, 1.0)
        assert geomath.nearest_point_on_polyline(midway, line) == line[0]

    def test_empty_polyline_rejected(self):
        with pytest.raises(ValueError):
            geomath.nearest_point_on_polyline(ORIGIN, [])

    def test_min_distance_uses_vertices_only(self):
        line = [north(0), north(1000)]
        # Projection onto the edge would be ~0 m; the nearest vertex is 500 m away
        assert geomath.min_distance_to_polyline(north(500), line) == pytest.approx(500, abs=0.01)


class TestCorridorAndPolygons:

    def test_within_corridor(self):
        line = northbound_polyline(2000)
        assert geomath.within_corridor(east(300, north(1000)), line, 500)
        assert not geomath.within_corridor(east(800, north(1000)), line, 500)

    def test_point_in_polygon(self):
        square = [
            Coordinate(0.0, 0.0), Coordinate(0.0, 1.0),
            Coordinate(1.0, 1.0), Coordinate(1.0, 0.0),
        ]
        assert geomath.point_in_polygon(Coordinate(0.5, 0.5), square)
        assert not geomath.point_in_polygon(Coordinate(1.5, 0.5), square)

    def test_degenerate_polygon_contains_nothing(self):
        assert not geomath.point_in_polygon(ORIGIN, [ORIGIN, north(10)])

    def test_polyline_intersects_polygon(self):
        square = [
            Coordinate(39.99, -74.01), Coordinate(39.99, -73.99),
            Coordinate(40.01, -73.99), Coordinate(40.01, -74.01),
        ]
        assert geomath.polyline_intersects_polygon(northbound_polyline(500), square)
        assert not geomath.polyline_intersects_polygon([north(5000), north(6000)], square)


class TestPolylineWalking:

    def test_length(self):
        assert geomath.polyline_length(northbound_polyline(2350)) == pytest.approx(2350, abs=0.01)

    def test_point_along(self):
        point = geomath.point_along_polyline(northbound_polyline(2000), 1234)
        assert geomath.distance(ORIGIN, point) == pytest.approx(1234, abs=0.05)

    def test_point_past_end_clamps(self):
        line = northbound_polyline(500)
        assert geomath.point_along_polyline(line, 10_000) == line[-1]

    def test_bounding_box_padding(self):
        min_lat, min_lng, max_lat, max_lng = geomath.bounding_box([ORIGIN, north(1000)], padding_meters=500)
        assert min_lat < ORIGIN.latitude < max_lat
        assert min_lng < ORIGIN.longitude < max_lng
        assert geomath.bounding_box([]) is None
