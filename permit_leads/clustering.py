"""DBSCAN clustering of geocoded leads.

Per-point state lives in a parallel array indexed like the input points, so
the records themselves are never mutated.  Core points and their mutual
reachability do not depend on input order; border points reachable from more
than one cluster are settled on the cluster of their nearest core neighbour
(ties on the smaller record id), which makes membership order-independent as
well.
"""

from __future__ import annotations

import logging
import math
from collections import Counter, deque
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import DBSCAN_EPSILON_MILES, DBSCAN_MIN_POINTS
from .geometry import SpatialGrid, distance_miles, is_valid_coordinate
from .models import Cluster, LeadRecord

logger = logging.getLogger(__name__)

# Density reported for clusters whose members all sit on (or within a hair of) one point.
DENSITY_CAP = 1_000_000.0
MAX_TOP_CATEGORIES = 3


@dataclass
class ClusterPoint:
    id: str
    lat: float
    lon: float
    record: LeadRecord


@dataclass
class _PointState:
    visited: bool = False
    cluster: Optional[int] = None
    core: bool = False


def points_from_records(records: Iterable[LeadRecord]) -> List[ClusterPoint]:
    """Geocoded records only; everything else can never join a cluster."""

    return [
        ClusterPoint(id=record.id, lat=float(record.latitude), lon=float(record.longitude), record=record)
        for record in records
        if is_valid_coordinate(record.latitude, record.longitude)
    ]


class _NeighbourIndex:
    def __init__(self, points: Sequence[ClusterPoint], epsilon_miles: float) -> None:
        self._points = points
        self._epsilon = epsilon_miles
        self._grid = SpatialGrid.from_points([(p.lat, p.lon) for p in points], epsilon_miles)

    def neighbours(self, index: int) -> List[int]:
        """Indices within epsilon of ``index``, the point itself included."""

        point = self._points[index]
        result = []
        for candidate in self._grid.query(point.lat, point.lon, self._epsilon):
            other = self._points[candidate]
            if distance_miles(point.lat, point.lon, other.lat, other.lon) <= self._epsilon:
                result.append(candidate)
        return result


def dbscan(
    points: Sequence[ClusterPoint],
    epsilon_miles: float = DBSCAN_EPSILON_MILES,
    min_points: int = DBSCAN_MIN_POINTS,
) -> List[Optional[int]]:
    """Return a cluster label per point (``None`` for noise)."""

    if min_points < 1:
        raise ValueError("min_points must be at least 1")
    index = _NeighbourIndex(points, epsilon_miles)
    state = [_PointState() for _ in points]
    next_cluster = 0

    for start in range(len(points)):
        if state[start].visited:
            continue
        state[start].visited = True
        neighbours = index.neighbours(start)
        if len(neighbours) < min_points:
            continue

        cluster_id = next_cluster
        next_cluster += 1
        state[start].core = True
        state[start].cluster = cluster_id

        queue = deque(neighbours)
        while queue:
            current = queue.popleft()
            current_state = state[current]
            if not current_state.visited:
                current_state.visited = True
                current_neighbours = index.neighbours(current)
                if len(current_neighbours) >= min_points:
                    current_state.core = True
                    queue.extend(current_neighbours)
            if current_state.cluster is None:
                current_state.cluster = cluster_id

    _settle_border_points(points, state, index)

    # Settling can pull shared border points away; a cluster left below min_points becomes noise.
    sizes = Counter(entry.cluster for entry in state if entry.cluster is not None)
    return [
        entry.cluster if entry.cluster is not None and sizes[entry.cluster] >= min_points else None
        for entry in state
    ]


def _settle_border_points(
    points: Sequence[ClusterPoint],
    state: List[_PointState],
    index: _NeighbourIndex,
) -> None:
    for position, entry in enumerate(state):
        if entry.core or entry.cluster is None:
            continue
        best: Optional[Tuple[float, str, int]] = None
        point = points[position]
        for neighbour in index.neighbours(position):
            if not state[neighbour].core:
                continue
            other = points[neighbour]
            key = (distance_miles(point.lat, point.lon, other.lat, other.lon), other.id, neighbour)
            if best is None or key < best:
                best = key
        if best is not None:
            entry.cluster = state[best[2]].cluster


def _centroid(points: Sequence[ClusterPoint]) -> Tuple[float, float]:
    return (
        sum(p.lat for p in points) / len(points),
        sum(p.lon for p in points) / len(points),
    )


def _top_categories(points: Sequence[ClusterPoint]) -> List[str]:
    counts = Counter(p.record.ai_category for p in points if p.record.ai_category)
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [category for category, _ in ranked[:MAX_TOP_CATEGORIES]]


def summarize_cluster(cluster_id: str, members: Sequence[ClusterPoint]) -> Cluster:
    centroid = _centroid(members)
    radius = max(distance_miles(centroid[0], centroid[1], p.lat, p.lon) for p in members)
    area = math.pi * radius * radius
    density = DENSITY_CAP if area == 0 else min(DENSITY_CAP, len(members) / area)

    scores = [p.record.lead_score for p in members if p.record.lead_score is not None]
    return Cluster(
        id=cluster_id,
        centroid=centroid,
        member_ids=frozenset(p.id for p in members),
        radius_miles=radius,
        density=density,
        average_score=sum(scores) / len(scores) if scores else 0.0,
        total_valuation=sum(p.record.valuation for p in members),
        top_categories=_top_categories(members),
    )


def cluster_leads(
    records: Iterable[LeadRecord],
    epsilon_miles: float = DBSCAN_EPSILON_MILES,
    min_points: int = DBSCAN_MIN_POINTS,
) -> List[Cluster]:
    """Cluster geocoded records; best average score first."""

    points = points_from_records(records)
    if not points:
        return []

    labels = dbscan(points, epsilon_miles, min_points)
    grouped: Dict[int, List[ClusterPoint]] = {}
    for point, label in zip(points, labels):
        if label is not None:
            grouped.setdefault(label, []).append(point)

    summaries = [summarize_cluster("", members) for members in grouped.values()]
    summaries.sort(key=lambda c: (-c.average_score, min(c.member_ids)))
    for position, cluster in enumerate(summaries):
        cluster.id = f"cluster_{position}"

    logger.info(
        "DBSCAN grouped %d of %d geocoded leads into %d clusters",
        sum(c.size for c in summaries),
        len(points),
        len(summaries),
    )
    return summaries


def assign_cluster_ids(records: Iterable[LeadRecord], clusters: Sequence[Cluster]) -> List[LeadRecord]:
    """Copy records with ``cluster_id`` set from ``clusters`` (cleared for everyone else)."""

    membership = {member: cluster.id for cluster in clusters for member in cluster.member_ids}
    return [record.model_copy(update={"cluster_id": membership.get(record.id)}) for record in records]


def filter_clusters(
    clusters: Iterable[Cluster],
    min_score: Optional[float] = None,
    min_valuation: Optional[float] = None,
    max_radius_miles: Optional[float] = None,
) -> List[Cluster]:
    selected = []
    for cluster in clusters:
        if min_score is not None and cluster.average_score < min_score:
            continue
        if min_valuation is not None and cluster.total_valuation < min_valuation:
            continue
        if max_radius_miles is not None and cluster.radius_miles > max_radius_miles:
            continue
        selected.append(cluster)
    return selected


def get_cluster_leads(cluster: Cluster, records: Iterable[LeadRecord]) -> List[LeadRecord]:
    return [record for record in records if record.id in cluster.member_ids]


__all__ = [
    "ClusterPoint",
    "DENSITY_CAP",
    "assign_cluster_ids",
    "cluster_leads",
    "dbscan",
    "filter_clusters",
    "get_cluster_leads",
    "points_from_records",
    "summarize_cluster",
]
