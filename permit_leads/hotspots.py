"""Kernel density hotspots over a lat/lon grid.

A Gaussian kernel ``exp(-0.5 * (d / bandwidth) ** 2)`` is summed at every grid
cell over the leads within one bandwidth of it.  The sum is normalised by the
total lead count, so one isolated lead in a busy dataset contributes at most
``100 / n`` and only genuinely dense areas clear ``min_intensity``.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, List

import numpy as np

from .clustering import points_from_records
from .config import KDE_BANDWIDTH_MILES, KDE_GRID_SIZE_MILES, KDE_MIN_INTENSITY
from .geometry import MILES_PER_DEGREE_LAT, SpatialGrid, distance_miles_array
from .models import Hotspot, LeadRecord

logger = logging.getLogger(__name__)


def _grid_axis(start: float, stop: float, step: float) -> np.ndarray:
    count = int(math.floor((stop - start) / step + 1e-9)) + 1
    return start + step * np.arange(count)


def detect_hotspots(
    records: Iterable[LeadRecord],
    grid_size_miles: float = KDE_GRID_SIZE_MILES,
    bandwidth_miles: float = KDE_BANDWIDTH_MILES,
    min_intensity: float = KDE_MIN_INTENSITY,
) -> List[Hotspot]:
    """Return hotspots sorted by intensity, strongest first."""

    points = points_from_records(records)
    if not points:
        return []

    lats = np.array([p.lat for p in points], dtype=float)
    lons = np.array([p.lon for p in points], dtype=float)
    valuations = np.array([p.record.valuation for p in points], dtype=float)
    total = len(points)

    min_lat, max_lat = float(lats.min()), float(lats.max())
    min_lon, max_lon = float(lons.min()), float(lons.max())
    mid_lat = (min_lat + max_lat) / 2
    lat_step = grid_size_miles / MILES_PER_DEGREE_LAT
    lon_step = grid_size_miles / (MILES_PER_DEGREE_LAT * max(math.cos(math.radians(mid_lat)), 1e-6))

    grid = SpatialGrid.from_points(list(zip(lats.tolist(), lons.tolist())), bandwidth_miles)
    hotspots: List[Hotspot] = []

    for cell_lat in _grid_axis(min_lat, max_lat, lat_step):
        for cell_lon in _grid_axis(min_lon, max_lon, lon_step):
            candidates = np.fromiter(
                grid.query(float(cell_lat), float(cell_lon), bandwidth_miles), dtype=int
            )
            if candidates.size == 0:
                continue
            distances = distance_miles_array(
                float(cell_lat), float(cell_lon), lats[candidates], lons[candidates]
            )
            within = distances <= bandwidth_miles
            lead_count = int(within.sum())
            if lead_count == 0:
                continue

            kernel = np.exp(-0.5 * (distances[within] / bandwidth_miles) ** 2)
            intensity = min(100.0, float(kernel.sum()) / total * 100.0)
            if intensity < min_intensity:
                continue

            hotspots.append(
                Hotspot(
                    id=f"hotspot_{cell_lat:.4f}_{cell_lon:.4f}",
                    center=(float(cell_lat), float(cell_lon)),
                    intensity=int(round(intensity)),
                    lead_count=lead_count,
                    avg_valuation=float(valuations[candidates][within].sum()) / lead_count,
                    radius_miles=bandwidth_miles,
                )
            )

    hotspots.sort(key=lambda h: (-h.intensity, h.id))
    logger.info("Kernel density found %d hotspots across %d geocoded leads", len(hotspots), total)
    return hotspots


__all__ = ["detect_hotspots"]
