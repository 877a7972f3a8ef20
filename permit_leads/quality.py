"""Quality gates deciding whether a lead is actionable.

Each flag is a pure predicate over one record and fails closed: a missing or
malformed field yields ``False`` rather than an exception.  Actionability is
the conjunction of all seven flags plus an allowed project stage.  Recency is
judged against a stage-specific window.

The high-quality view needs ``lead_score``, so it is evaluated in a second,
lighter pass (:func:`evaluate_high_quality`) after scoring.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from .config import PipelineConfig
from .geometry import is_valid_coordinate, point_in_polygon
from .models import LeadRecord, QualityFlags

INVALID_APPLICANTS = frozenset(
    {"unknown", "n/a", "na", "not available", "tbd", "none", "test", "null"}
)
INVALID_ADDRESSES = frozenset(
    {"address not listed", "not available", "n/a", "na", "unknown", "tbd", "none", "null"}
)
MIN_APPLICANT_LENGTH = 3
MIN_ADDRESS_LENGTH = 5

_DEFAULT_CONFIG = PipelineConfig()


@dataclass
class QualityStats:
    total: int
    actionable: int
    recent: int
    high_quality: int
    pass_rate: float
    failures: Dict[str, int] = field(default_factory=dict)


def has_valid_coordinates(record: LeadRecord) -> bool:
    return is_valid_coordinate(record.latitude, record.longitude)


def meets_valuation_threshold(record: LeadRecord, config: PipelineConfig = _DEFAULT_CONFIG) -> bool:
    valuation = record.valuation
    if valuation is None or not math.isfinite(valuation):
        return False
    return valuation >= config.min_valuation


def has_supported_type(record: LeadRecord, config: PipelineConfig = _DEFAULT_CONFIG) -> bool:
    return bool(record.permit_type) and record.permit_type in config.supported_types


def is_supported_land_use(record: LeadRecord, config: PipelineConfig = _DEFAULT_CONFIG) -> bool:
    if record.land_use is None:
        return False
    return record.land_use.value in config.supported_land_use


def _is_meaningful(value: Optional[str], min_length: int, placeholders: frozenset) -> bool:
    if not value:
        return False
    cleaned = value.strip()
    if len(cleaned) < min_length:
        return False
    return cleaned.lower() not in placeholders


def has_valid_applicant(record: LeadRecord) -> bool:
    return _is_meaningful(record.applicant, MIN_APPLICANT_LENGTH, INVALID_APPLICANTS)


def has_valid_address(record: LeadRecord) -> bool:
    return _is_meaningful(record.address, MIN_ADDRESS_LENGTH, INVALID_ADDRESSES)


def is_within_region(record: LeadRecord, config: PipelineConfig = _DEFAULT_CONFIG) -> bool:
    if not has_valid_coordinates(record):
        return False
    return point_in_polygon(record.latitude, record.longitude, config.region_polygon)


def is_stage_allowed(record: LeadRecord, config: PipelineConfig = _DEFAULT_CONFIG) -> bool:
    if record.project_stage is None:
        return False
    return record.project_stage.value in config.allowed_stages


def recency_window_days(record: LeadRecord, config: PipelineConfig = _DEFAULT_CONFIG) -> int:
    stage = record.project_stage.value if record.project_stage else None
    return config.recency_window(stage)


def days_since_applied(record: LeadRecord, today: date) -> Optional[int]:
    if record.applied_date is None:
        return None
    return (today - record.applied_date).days


def is_recent(record: LeadRecord, today: date, config: PipelineConfig = _DEFAULT_CONFIG) -> bool:
    days = days_since_applied(record, today)
    if days is None:
        return False
    return days <= recency_window_days(record, config)


def build_quality_flags(record: LeadRecord, config: PipelineConfig = _DEFAULT_CONFIG) -> QualityFlags:
    return QualityFlags(
        geocoded=has_valid_coordinates(record),
        value_above_threshold=meets_valuation_threshold(record, config),
        type_supported=has_supported_type(record, config),
        land_use_supported=is_supported_land_use(record, config),
        business_verified=has_valid_applicant(record),
        within_region=is_within_region(record, config),
        address_valid=has_valid_address(record),
    )


def apply_quality_filters(
    record: LeadRecord,
    today: date,
    config: PipelineConfig = _DEFAULT_CONFIG,
) -> LeadRecord:
    """First pass: flags, actionability and recency.  Returns a new record."""

    flags = build_quality_flags(record, config)
    return record.model_copy(
        update={
            "quality_flags": flags,
            "is_actionable": flags.all_passed() and is_stage_allowed(record, config),
            "recency_window_days": recency_window_days(record, config),
            "is_recent": is_recent(record, today, config),
        }
    )


def evaluate_high_quality(record: LeadRecord, min_lead_score: Optional[float] = None) -> LeadRecord:
    """Second pass, after scoring: actionable + score threshold (+ recent)."""

    threshold = _DEFAULT_CONFIG.min_lead_score if min_lead_score is None else min_lead_score
    score = record.lead_score if record.lead_score is not None else 0
    candidate = record.is_actionable and score >= threshold
    return record.model_copy(
        update={
            "high_quality_candidate": candidate,
            "is_high_quality": candidate and record.is_recent,
        }
    )


def filter_high_quality_leads(
    records: Iterable[LeadRecord], min_lead_score: Optional[float] = None
) -> List[LeadRecord]:
    evaluated = (evaluate_high_quality(record, min_lead_score) for record in records)
    return [record for record in evaluated if record.is_high_quality]


def get_quality_stats(
    records: Sequence[LeadRecord], config: PipelineConfig = _DEFAULT_CONFIG
) -> QualityStats:
    """Pass counts and per-gate failure counts for reporting."""

    total = len(records)
    high_quality = len(filter_high_quality_leads(records, config.min_lead_score))
    failures = {
        "valuation": sum(1 for r in records if not meets_valuation_threshold(r, config)),
        "address": sum(1 for r in records if not has_valid_address(r)),
        "applicant": sum(1 for r in records if not has_valid_applicant(r)),
        "land_use": sum(1 for r in records if not is_supported_land_use(r, config)),
        "region": sum(1 for r in records if not is_within_region(r, config)),
        "geocoded": sum(1 for r in records if not has_valid_coordinates(r)),
        "type_supported": sum(1 for r in records if not has_supported_type(r, config)),
        "stage": sum(1 for r in records if not is_stage_allowed(r, config)),
        "lead_score": sum(1 for r in records if (r.lead_score or 0) < config.min_lead_score),
    }
    return QualityStats(
        total=total,
        actionable=sum(1 for r in records if r.is_actionable),
        recent=sum(1 for r in records if r.is_recent),
        high_quality=high_quality,
        pass_rate=round(high_quality / total * 100, 1) if total else 0.0,
        failures=failures,
    )


__all__ = [
    "INVALID_ADDRESSES",
    "INVALID_APPLICANTS",
    "QualityStats",
    "apply_quality_filters",
    "build_quality_flags",
    "days_since_applied",
    "evaluate_high_quality",
    "filter_high_quality_leads",
    "get_quality_stats",
    "has_supported_type",
    "has_valid_address",
    "has_valid_applicant",
    "has_valid_coordinates",
    "is_recent",
    "is_stage_allowed",
    "is_supported_land_use",
    "is_within_region",
    "meets_valuation_threshold",
    "recency_window_days",
]
