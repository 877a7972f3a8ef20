"""Cross-source duplicate detection and merging.

Records at the same physical address often arrive from several sources (a
building permit, a certificate of occupancy and a utility hookup for the same
site).  Pairs are linked when their normalised addresses are similar enough
and they share a city; linked components are collapsed with union-find so
that A~B and B~C always produce a single merged record.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .addresses import normalize_address, similarity
from .config import DEDUP_SIMILARITY_THRESHOLD
from .models import LeadRecord

logger = logging.getLogger(__name__)

# Optional fields a merged record inherits from other constituents when the primary lacks them.
_FILLABLE_FIELDS = (
    "ai_confidence",
    "ai_category",
    "contractor_quality_score",
    "ml_probability_score",
    "applicant",
    "description",
    "permit_type",
    "land_use",
    "project_stage",
    "applied_date",
)


@dataclass
class DeduplicationStats:
    original_count: int
    deduped_count: int
    duplicates_removed: int
    multi_signal_leads: int
    deduplication_rate: float


class _UnionFind:
    def __init__(self, size: int) -> None:
        self._parent = list(range(size))
        self._rank = [0] * size

    def find(self, item: int) -> int:
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, a: int, b: int) -> None:
        root_a = self.find(a)
        root_b = self.find(b)
        if root_a == root_b:
            return
        if self._rank[root_a] < self._rank[root_b]:
            root_a, root_b = root_b, root_a
        self._parent[root_b] = root_a
        if self._rank[root_a] == self._rank[root_b]:
            self._rank[root_a] += 1


def _city_key(record: LeadRecord) -> Optional[str]:
    if not record.city or not record.city.strip():
        return None
    return " ".join(record.city.split()).casefold()


def _normalized(record: LeadRecord) -> str:
    return record.normalized_address or normalize_address(record.address)


def are_duplicates(
    first: LeadRecord,
    second: LeadRecord,
    threshold: float = DEDUP_SIMILARITY_THRESHOLD,
) -> bool:
    """True when two distinct records describe the same site."""

    if first.id == second.id:
        return False
    city = _city_key(first)
    if city is None or city != _city_key(second):
        return False
    return similarity(_normalized(first), _normalized(second)) >= threshold


def merge_order_key(record: LeadRecord) -> Tuple[float, date, str]:
    """Sort key placing the record that wins a merge first.

    Highest valuation wins, then the earliest applied date (undated records
    last), then the lexically smallest id so the result never depends on
    input order.
    """

    applied = record.applied_date or date.max
    return (-record.valuation, applied, record.id)


def merge_records(records: Sequence[LeadRecord]) -> LeadRecord:
    """Collapse one group of duplicates into a single record."""

    if not records:
        raise ValueError("cannot merge an empty group")
    ordered = sorted(records, key=merge_order_key)
    primary = ordered[0]
    if len(ordered) == 1:
        return primary

    updates: Dict[str, object] = {}
    for name in _FILLABLE_FIELDS:
        if getattr(primary, name) is None:
            for other in ordered[1:]:
                value = getattr(other, name)
                if value is not None:
                    updates[name] = value
                    break

    # Coordinates only travel as a pair.
    if not primary.has_coordinates:
        for other in ordered[1:]:
            if other.has_coordinates:
                updates["latitude"] = other.latitude
                updates["longitude"] = other.longitude
                break

    if not primary.enrichment_verified and any(other.enrichment_verified for other in ordered[1:]):
        updates["enrichment_verified"] = True

    source_ids = frozenset().union(*(record.source_ids for record in ordered))
    data_sources: List[str] = []
    for record in ordered:
        if record.data_source and record.data_source not in data_sources:
            data_sources.append(record.data_source)

    merged_ids = list(primary.merged_ids)
    for other in ordered[1:]:
        for absorbed in (other.id, *other.merged_ids):
            if absorbed not in merged_ids:
                merged_ids.append(absorbed)

    updates.update(
        {
            "source_ids": source_ids,
            "data_source": " + ".join(data_sources) if data_sources else primary.data_source,
            "merged_ids": tuple(sorted(merged_ids)),
            "normalized_address": _normalized(primary),
        }
    )
    return primary.model_copy(update=updates)


def find_duplicate_groups(
    records: Sequence[LeadRecord],
    threshold: float = DEDUP_SIMILARITY_THRESHOLD,
) -> List[List[int]]:
    """Return index groups (connected components of the duplicate graph)."""

    union_find = _UnionFind(len(records))
    by_city: Dict[str, List[int]] = defaultdict(list)
    for index, record in enumerate(records):
        city = _city_key(record)
        if city is not None:
            by_city[city].append(index)

    normalized = [_normalized(record) for record in records]
    for indices in by_city.values():
        for offset, i in enumerate(indices):
            for j in indices[offset + 1:]:
                if records[i].id == records[j].id:
                    continue
                if union_find.find(i) == union_find.find(j):
                    continue
                if similarity(normalized[i], normalized[j]) >= threshold:
                    union_find.union(i, j)

    components: Dict[int, List[int]] = defaultdict(list)
    for index in range(len(records)):
        components[union_find.find(index)].append(index)
    return list(components.values())


def deduplicate_records(
    records: Iterable[LeadRecord],
    threshold: float = DEDUP_SIMILARITY_THRESHOLD,
) -> List[LeadRecord]:
    """Merge duplicate records; the input sequence is left untouched.

    Output order follows each group's winning record under
    :func:`merge_order_key`, so permuted input yields the same list.
    """

    records = list(records)
    groups = find_duplicate_groups(records, threshold)
    merged: List[LeadRecord] = []
    for group in groups:
        members = [records[index] for index in group]
        if len(members) > 1:
            logger.debug(
                "Merging %d duplicates at %r: %s",
                len(members),
                _normalized(members[0]),
                ", ".join(sorted(member.id for member in members)),
            )
        merged.append(merge_records(members))

    merged.sort(key=merge_order_key)
    logger.info(
        "Deduplication removed %d duplicates (%d -> %d)",
        len(records) - len(merged),
        len(records),
        len(merged),
    )
    return merged


def get_deduplication_stats(
    original: Sequence[LeadRecord], deduped: Sequence[LeadRecord]
) -> DeduplicationStats:
    removed = len(original) - len(deduped)
    multi_signal = sum(1 for record in deduped if record.source_count > 1)
    rate = (removed / len(original) * 100.0) if original else 0.0
    return DeduplicationStats(
        original_count=len(original),
        deduped_count=len(deduped),
        duplicates_removed=removed,
        multi_signal_leads=multi_signal,
        deduplication_rate=rate,
    )


__all__ = [
    "DeduplicationStats",
    "are_duplicates",
    "deduplicate_records",
    "find_duplicate_groups",
    "get_deduplication_stats",
    "merge_order_key",
    "merge_records",
]
