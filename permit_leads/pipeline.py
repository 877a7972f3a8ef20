"""End-to-end lead pipeline.

raw records -> address normalisation -> deduplication -> quality pass ->
scoring -> high-quality pass -> {clustering, hotspots}

A run is a pure transformation of the records handed to :meth:`LeadPipeline.run`;
inputs are never mutated and every derived field is recomputed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, List, Mapping, Optional, Union

from .addresses import normalize_address
from .clustering import assign_cluster_ids, cluster_leads
from .config import PipelineConfig
from .deduplication import DeduplicationStats, deduplicate_records, get_deduplication_stats
from .hotspots import detect_hotspots
from .models import Cluster, Hotspot, LeadRecord
from .quality import QualityStats, apply_quality_filters, evaluate_high_quality, get_quality_stats
from .scoring import score_record

logger = logging.getLogger(__name__)

RecordInput = Union[LeadRecord, Mapping[str, Any]]


@dataclass
class PipelineResult:
    leads: List[LeadRecord]
    clusters: List[Cluster]
    hotspots: List[Hotspot]
    dedup_stats: DeduplicationStats
    quality_stats: QualityStats


class LeadPipeline:
    """Runs the batch stages with one validated configuration.

    Configuration problems surface as ``pydantic.ValidationError`` from the
    constructor, never mid-run.
    """

    def __init__(self, config: Optional[PipelineConfig] = None, **overrides: Any) -> None:
        if config is not None and overrides:
            config = PipelineConfig(**{**config.model_dump(), **overrides})
        self.config = config or PipelineConfig(**overrides)

    def run(self, records: Iterable[RecordInput], today: Optional[date] = None) -> PipelineResult:
        today = today or date.today()
        config = self.config

        raw = [_as_record(item) for item in records]
        normalized = [
            record.model_copy(update={"normalized_address": normalize_address(record.address)})
            for record in raw
        ]
        logger.info("Pipeline run started with %d records", len(normalized))

        deduped = deduplicate_records(normalized, config.dedup_similarity_threshold)
        dedup_stats = get_deduplication_stats(normalized, deduped)

        classified = [apply_quality_filters(record, today, config) for record in deduped]
        logger.info(
            "Quality pass: %d actionable, %d recent",
            sum(1 for record in classified if record.is_actionable),
            sum(1 for record in classified if record.is_recent),
        )

        scored = [
            score_record(
                record,
                today,
                config.score_weights,
                config.multi_signal_bonus,
                config.recency_days_default,
            )
            for record in classified
        ]
        evaluated = [evaluate_high_quality(record, config.min_lead_score) for record in scored]

        clusters = cluster_leads(evaluated, config.dbscan_epsilon_miles, config.dbscan_min_points)
        hotspots = detect_hotspots(
            evaluated,
            config.kde_grid_size_miles,
            config.kde_bandwidth_miles,
            config.kde_min_intensity,
        )
        leads = assign_cluster_ids(evaluated, clusters)
        leads.sort(key=lambda record: (-(record.lead_score or 0), record.id))

        quality_stats = get_quality_stats(leads, config)
        logger.info(
            "Pipeline run finished: %d leads, %d high quality, %d clusters, %d hotspots",
            len(leads),
            quality_stats.high_quality,
            len(clusters),
            len(hotspots),
        )
        return PipelineResult(
            leads=leads,
            clusters=clusters,
            hotspots=hotspots,
            dedup_stats=dedup_stats,
            quality_stats=quality_stats,
        )


def _as_record(item: RecordInput) -> LeadRecord:
    if isinstance(item, LeadRecord):
        return item
    return LeadRecord.from_payload(item)


def run_pipeline(
    records: Iterable[RecordInput],
    config: Optional[PipelineConfig] = None,
    today: Optional[date] = None,
) -> PipelineResult:
    return LeadPipeline(config).run(records, today=today)


__all__ = ["LeadPipeline", "PipelineResult", "run_pipeline"]
