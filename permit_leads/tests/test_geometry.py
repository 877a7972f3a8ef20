"""Tests for permit_leads/geometry.py.

Covers haversine distances, point-in-polygon ray casting, coordinate
validation and the SpatialGrid bucket index.
"""

import math
import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[2]))

from permit_leads.config import DFW_POLYGON
from permit_leads.geometry import (
    # Constants
    EARTH_RADIUS_MILES,
    MILES_PER_DEGREE_LAT,
    # Classes
    SpatialGrid,
    # Functions
    distance_miles,
    distance_miles_array,
    is_valid_coordinate,
    point_in_polygon,
    polygon_centroid,
)


UNIT_SQUARE = [(0.0, 0.0), (0.0, 1.0), (1.0, 1.0), (1.0, 0.0)]

# L-shaped polygon: a notch is cut out of the (lat > 1, lon > 1) quadrant.
L_SHAPE = [(0.0, 0.0), (0.0, 4.0), (1.0, 4.0), (1.0, 1.0), (4.0, 1.0), (4.0, 0.0)]


# ============================================================================
# Test distance_miles
# ============================================================================


class TestDistanceMiles:
    """Test haversine distance in miles."""

    def test_zero_distance_to_self(self):
        """A point is zero miles from itself."""
        assert distance_miles(32.7767, -96.797, 32.7767, -96.797) == 0.0

    def test_symmetric(self):
        """distance(a, b) equals distance(b, a)."""
        pairs = [
            ((32.7767, -96.797), (32.7555, -97.3308)),
            ((33.0198, -96.6989), (32.8140, -96.9489)),
            ((-33.8688, 151.2093), (51.5074, -0.1278)),
        ]
        for (lat1, lon1), (lat2, lon2) in pairs:
            assert distance_miles(lat1, lon1, lat2, lon2) == distance_miles(lat2, lon2, lat1, lon1)

    def test_dallas_to_fort_worth(self):
        """Downtown Dallas to downtown Fort Worth is roughly 31 miles."""
        distance = distance_miles(32.7767, -96.797, 32.7555, -97.3308)
        assert 30.0 < distance < 32.0

    def test_one_degree_of_latitude(self):
        """One degree along a meridian matches the per-degree constant."""
        assert distance_miles(0.0, 10.0, 1.0, 10.0) == pytest.approx(MILES_PER_DEGREE_LAT)

    def test_uses_3959_mile_radius(self):
        """Half the circumference along the equator uses the 3959 mile radius."""
        assert distance_miles(0.0, 0.0, 0.0, 180.0) == pytest.approx(math.pi * EARTH_RADIUS_MILES)

    def test_triangle_inequality(self):
        """d(a, c) <= d(a, b) + d(b, c)."""
        a = (32.7767, -96.797)
        b = (33.0198, -96.6989)
        c = (32.7555, -97.3308)
        ab = distance_miles(*a, *b)
        bc = distance_miles(*b, *c)
        ac = distance_miles(*a, *c)
        assert ac <= ab + bc + 1e-9

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), -float("inf")])
    def test_non_finite_coordinates_are_unreachable(self, bad):
        """Non-finite input yields an infinite distance rather than NaN."""
        assert distance_miles(bad, -96.8, 32.8, -96.8) == math.inf
        assert distance_miles(32.8, -96.8, 32.8, bad) == math.inf

    def test_array_version_matches_scalar(self):
        """Vectorised distances agree with the scalar implementation."""
        lats = np.array([32.7555, 33.0198, 32.7767])
        lons = np.array([-97.3308, -96.6989, -96.797])
        distances = distance_miles_array(32.7767, -96.797, lats, lons)
        for index in range(3):
            expected = distance_miles(32.7767, -96.797, lats[index], lons[index])
            assert distances[index] == pytest.approx(expected, abs=1e-9)


# ============================================================================
# Test point_in_polygon
# ============================================================================


class TestPointInPolygon:
    """Test even-odd ray casting."""

    def test_point_inside_square(self):
        """Centre of a square is inside."""
        assert point_in_polygon(0.5, 0.5, UNIT_SQUARE) is True

    def test_point_outside_square(self):
        """Point beyond the square is outside."""
        assert point_in_polygon(1.5, 0.5, UNIT_SQUARE) is False
        assert point_in_polygon(0.5, -0.5, UNIT_SQUARE) is False

    def test_non_convex_arms_inside(self):
        """Both arms of an L shape are inside."""
        assert point_in_polygon(0.5, 3.0, L_SHAPE) is True
        assert point_in_polygon(3.0, 0.5, L_SHAPE) is True

    def test_non_convex_notch_outside(self):
        """The notch of an L shape is outside even though it is within the bounding box."""
        assert point_in_polygon(2.0, 2.0, L_SHAPE) is False

    def test_degenerate_polygon(self):
        """Fewer than three vertices never contains anything."""
        assert point_in_polygon(0.0, 0.0, [(0.0, 0.0), (1.0, 1.0)]) is False
        assert point_in_polygon(0.0, 0.0, []) is False

    def test_non_finite_point(self):
        """NaN coordinates are outside."""
        assert point_in_polygon(float("nan"), 0.5, UNIT_SQUARE) is False

    def test_dfw_centroid_inside(self):
        """The centroid of the region polygon is inside the region."""
        lat, lon = polygon_centroid(DFW_POLYGON)
        assert point_in_polygon(lat, lon, DFW_POLYGON) is True

    def test_downtown_dallas_inside(self):
        """Downtown Dallas is inside the default region."""
        assert point_in_polygon(32.7767, -96.797, DFW_POLYGON) is True

    def test_hundred_miles_beyond_vertex_outside(self):
        """A point 100 miles north of the northernmost vertex is outside."""
        lat, lon = max(DFW_POLYGON)
        far_lat = lat + 100.0 / MILES_PER_DEGREE_LAT
        assert distance_miles(lat, lon, far_lat, lon) == pytest.approx(100.0)
        assert point_in_polygon(far_lat, lon, DFW_POLYGON) is False


# ============================================================================
# Test helpers
# ============================================================================


class TestCoordinateHelpers:
    """Test coordinate validation and centroid helpers."""

    def test_valid_coordinate(self):
        """A Dallas coordinate is valid."""
        assert is_valid_coordinate(32.7767, -96.797) is True

    @pytest.mark.parametrize(
        "lat, lon",
        [
            (None, -96.8),
            (32.8, None),
            (0.0, 0.0),
            (float("nan"), -96.8),
            (32.8, float("inf")),
            (95.0, -96.8),
            (32.8, -200.0),
            ("abc", -96.8),
        ],
    )
    def test_invalid_coordinates(self, lat, lon):
        """Missing, null-island, non-finite and out-of-range values are rejected."""
        assert is_valid_coordinate(lat, lon) is False

    def test_square_centroid(self):
        """The centroid of a square is its centre."""
        square = [(0.0, 0.0), (0.0, 2.0), (2.0, 2.0), (2.0, 0.0)]
        lat, lon = polygon_centroid(square)
        assert lat == pytest.approx(1.0)
        assert lon == pytest.approx(1.0)

    def test_empty_polygon_centroid_raises(self):
        """An empty polygon has no centroid."""
        with pytest.raises(ValueError):
            polygon_centroid([])


# ============================================================================
# Test SpatialGrid
# ============================================================================


class TestSpatialGrid:
    """Test the bucket index used for radius queries."""

    def test_rejects_non_positive_cell(self):
        """Grid cells must have positive size."""
        with pytest.raises(ValueError):
            SpatialGrid(0)

    def test_query_returns_nearby_points(self):
        """Points within the radius are always among the candidates."""
        points = [(32.7767, -96.797), (32.7800, -96.800), (32.7555, -97.3308)]
        grid = SpatialGrid.from_points(points, cell_size_miles=1.0)
        candidates = set(grid.query(32.7767, -96.797, 1.0))
        assert {0, 1} <= candidates
        assert 2 not in candidates

    def test_query_covers_longitude_convergence(self):
        """At high latitude a one-mile east-west neighbour is still found."""
        lat = 60.0
        lon_step = 0.9 / (MILES_PER_DEGREE_LAT * math.cos(math.radians(lat)))
        points = [(lat, 10.0), (lat, 10.0 + lon_step)]
        assert distance_miles(*points[0], *points[1]) < 1.0
        grid = SpatialGrid.from_points(points, cell_size_miles=1.0)
        assert set(grid.query(lat, 10.0, 1.0)) == {0, 1}
