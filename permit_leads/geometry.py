"""Geometry kernel shared by the classifier, clustering and hotspot stages.

Distances are great-circle miles on a sphere of radius 3959 miles.  Every
helper is stateless and tolerates non-finite input: distances involving a
NaN/inf coordinate are ``math.inf`` and such points are never inside a region.
"""

from __future__ import annotations

import math
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

EARTH_RADIUS_MILES = 3959.0
MILES_PER_DEGREE_LAT = EARTH_RADIUS_MILES * math.pi / 180.0

Polygon = Sequence[Tuple[float, float]]


def is_valid_coordinate(lat: Optional[float], lon: Optional[float]) -> bool:
    """True when both values are present, finite, in range and not the (0, 0) null island."""

    if lat is None or lon is None:
        return False
    try:
        lat = float(lat)
        lon = float(lon)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False
    if lat == 0.0 and lon == 0.0:
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def distance_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return the haversine distance in miles between two points."""

    if not all(math.isfinite(value) for value in (lat1, lon1, lat2, lon2)):
        return math.inf
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * math.asin(min(1.0, math.sqrt(a)))


def distance_miles_array(lat: float, lon: float, lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
    """Vectorised :func:`distance_miles` from one point to many."""

    lat_rad = math.radians(lat)
    lats_rad = np.radians(lats)
    dlat = lats_rad - lat_rad
    dlon = np.radians(lons - lon)
    a = np.sin(dlat / 2) ** 2 + math.cos(lat_rad) * np.cos(lats_rad) * np.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * np.arcsin(np.minimum(1.0, np.sqrt(a)))


def point_in_polygon(lat: float, lon: float, polygon: Polygon) -> bool:
    """Even-odd ray casting with latitude as Y and longitude as X.

    The closing edge from the last vertex back to the first is implicit.
    Points lying exactly on an edge may resolve either way.
    """

    if len(polygon) < 3:
        return False
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False

    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        lat_i, lon_i = polygon[i]
        lat_j, lon_j = polygon[j]
        if (lon_i > lon) != (lon_j > lon):
            crossing_lat = (lat_j - lat_i) * (lon - lon_i) / (lon_j - lon_i) + lat_i
            if lat < crossing_lat:
                inside = not inside
        j = i
    return inside


def polygon_centroid(polygon: Polygon) -> Tuple[float, float]:
    """Area-weighted centroid (lat, lon) of a simple polygon."""

    if not polygon:
        raise ValueError("polygon has no vertices")
    area = 0.0
    cx = 0.0
    cy = 0.0
    count = len(polygon)
    for i in range(count):
        y0, x0 = polygon[i]
        y1, x1 = polygon[(i + 1) % count]
        cross = x0 * y1 - x1 * y0
        area += cross
        cx += (x0 + x1) * cross
        cy += (y0 + y1) * cross
    if area == 0:
        lats = [lat for lat, _ in polygon]
        lons = [lon for _, lon in polygon]
        return sum(lats) / count, sum(lons) / count
    area *= 0.5
    return cy / (6 * area), cx / (6 * area)


class SpatialGrid:
    """Bucket index of point positions for radius queries.

    Cells are square in degrees; ``query`` widens the longitude search to
    account for meridians converging away from the equator.  Callers still
    filter candidates by exact distance.
    """

    def __init__(self, cell_size_miles: float) -> None:
        if cell_size_miles <= 0:
            raise ValueError("cell_size_miles must be positive")
        self.cell_size_deg = cell_size_miles / MILES_PER_DEGREE_LAT
        self._cells: Dict[Tuple[int, int], List[int]] = defaultdict(list)

    def _index_lat(self, lat: float) -> int:
        return int(math.floor((lat + 90.0) / self.cell_size_deg))

    def _index_lon(self, lon: float) -> int:
        return int(math.floor((lon + 180.0) / self.cell_size_deg))

    def add_point(self, index: int, lat: float, lon: float) -> None:
        key = (self._index_lat(lat), self._index_lon(lon))
        self._cells[key].append(index)

    @classmethod
    def from_points(cls, points: Sequence[Tuple[float, float]], cell_size_miles: float) -> "SpatialGrid":
        grid = cls(cell_size_miles)
        for index, (lat, lon) in enumerate(points):
            grid.add_point(index, lat, lon)
        return grid

    def query(self, lat: float, lon: float, radius_miles: float) -> Iterable[int]:
        radius_deg = radius_miles / MILES_PER_DEGREE_LAT
        lat_steps = int(math.ceil(radius_deg / self.cell_size_deg))
        edge_lat = min(89.999, abs(lat) + radius_deg)
        cos_lat = max(math.cos(math.radians(edge_lat)), 1e-6)
        max_lon_steps = int(math.ceil(360.0 / self.cell_size_deg))
        lon_steps = min(max_lon_steps, int(math.ceil(radius_deg / (cos_lat * self.cell_size_deg))) + 1)

        base_lat = self._index_lat(lat)
        base_lon = self._index_lon(lon)
        for lat_offset in range(-lat_steps, lat_steps + 1):
            for lon_offset in range(-lon_steps, lon_steps + 1):
                cell = (base_lat + lat_offset, base_lon + lon_offset)
                yield from self._cells.get(cell, ())


__all__ = [
    "EARTH_RADIUS_MILES",
    "MILES_PER_DEGREE_LAT",
    "SpatialGrid",
    "distance_miles",
    "distance_miles_array",
    "is_valid_coordinate",
    "point_in_polygon",
    "polygon_centroid",
]
