"""Composite lead scoring.

Every term is clamped to ``[0, weight]`` before the terms are summed, so no
single factor can contribute more than its weight.  The total is clamped to
0-100 and rounded.

========================  ==================================  ========
Term                      Raw input                           Default
========================  ==================================  ========
valuation                 valuation / $1,000,000              30
confidence                AI confidence, 0-100                30
recency                   days left in the recency window     10
enrichment                identity verified (flat)            5
contractor                contractor quality, 0-100           15
probability               ML project probability, 0-100       10
========================  ==================================  ========
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import MULTI_SIGNAL_BONUS, RECENCY_THRESHOLD_DAYS, ScoreWeights
from .models import LeadRecord

VALUATION_SCALE = 1_000_000.0
HIGH_QUALITY_SCORE_THRESHOLD = 70
SCORE_DROP_ALERT_POINTS = 15
PROBABILITY_DROP_ALERT_POINTS = 20
STALE_AFTER_DAYS = 120
STALE_SCORE_CEILING = 50

_DEFAULT_WEIGHTS = ScoreWeights()


def clamp(value: float, minimum: float, maximum: float) -> float:
    if math.isnan(value):
        return minimum
    return max(minimum, min(maximum, value))


def _signal(value: Optional[float]) -> float:
    if value is None or not math.isfinite(value):
        return 0.0
    return value


def _recency_inputs(record: LeadRecord, today: date, default_window: int) -> Tuple[int, float]:
    window = record.recency_window_days or default_window
    if record.applied_date is None:
        # Undated records score as stale.
        return window, float(window * 2)
    return window, float((today - record.applied_date).days)


def score_breakdown(
    record: LeadRecord,
    today: date,
    weights: Optional[ScoreWeights] = None,
    default_window: int = RECENCY_THRESHOLD_DAYS,
) -> Dict[str, float]:
    """Return each clamped term keyed by weight name.

    ``default_window`` is the recency window for records the quality pass
    has not classified yet.
    """

    w = weights or _DEFAULT_WEIGHTS
    window, days = _recency_inputs(record, today, default_window)

    return {
        "valuation": clamp(_signal(record.valuation) / VALUATION_SCALE * w.valuation, 0, w.valuation),
        "confidence": clamp(_signal(record.ai_confidence) * (w.confidence / 100), 0, w.confidence),
        "recency": clamp((window - days) / window * w.recency, 0, w.recency),
        "enrichment": w.enrichment if record.enrichment_verified else 0.0,
        "contractor": clamp(
            _signal(record.contractor_quality_score) * (w.contractor / 100), 0, w.contractor
        ),
        "probability": clamp(
            _signal(record.ml_probability_score) * (w.probability / 100), 0, w.probability
        ),
    }


def compute_lead_score(
    record: LeadRecord,
    today: date,
    weights: Optional[ScoreWeights] = None,
    default_window: int = RECENCY_THRESHOLD_DAYS,
) -> int:
    """Composite 0-100 score for one record."""

    raw = sum(score_breakdown(record, today, weights, default_window).values())
    return int(round(clamp(raw, 0, 100)))


def compute_lead_score_custom(
    record: LeadRecord,
    today: date,
    weights: Optional[Dict[str, float]] = None,
) -> int:
    """Score with caller overrides for any subset of the default weights."""

    return compute_lead_score(record, today, ScoreWeights.with_overrides(weights))


def apply_multi_signal_bonus(score: int, source_count: int, bonus: int = MULTI_SIGNAL_BONUS) -> int:
    """Add ``bonus`` points per corroborating source beyond the first, capped at 100."""

    extra_sources = max(0, source_count - 1)
    return int(min(100, max(0, score) + bonus * extra_sources))


def score_record(
    record: LeadRecord,
    today: date,
    weights: Optional[ScoreWeights] = None,
    bonus: int = MULTI_SIGNAL_BONUS,
    default_window: int = RECENCY_THRESHOLD_DAYS,
) -> LeadRecord:
    score = compute_lead_score(record, today, weights, default_window)
    return record.model_copy(
        update={"lead_score": apply_multi_signal_bonus(score, record.source_count, bonus)}
    )


def get_high_quality_leads(
    records: Iterable[LeadRecord], score_threshold: float = HIGH_QUALITY_SCORE_THRESHOLD
) -> List[LeadRecord]:
    """Records at or above ``score_threshold``, best first."""

    selected = [record for record in records if (record.lead_score or 0) >= score_threshold]
    return sorted(selected, key=lambda record: (-(record.lead_score or 0), record.id))


# ============================================================================
# RUN-OVER-RUN ALERTS
# ============================================================================


@dataclass
class LeadAlert:
    lead: LeadRecord
    alert_type: str
    message: str
    old_value: Optional[float] = None
    new_value: Optional[float] = None


def detect_lead_alerts(
    previous: Sequence[LeadRecord],
    current: Sequence[LeadRecord],
    today: date,
) -> List[LeadAlert]:
    """Compare two runs and flag leads whose outlook deteriorated."""

    alerts: List[LeadAlert] = []
    previous_by_id = {record.id: record for record in previous}

    for lead in current:
        old = previous_by_id.get(lead.id)
        if old is None:
            continue

        old_score = old.lead_score or 0
        new_score = lead.lead_score or 0
        if old_score - new_score >= SCORE_DROP_ALERT_POINTS:
            alerts.append(
                LeadAlert(
                    lead=lead,
                    alert_type="score_drop",
                    old_value=old_score,
                    new_value=new_score,
                    message=f"Lead score dropped from {old_score} to {new_score}",
                )
            )

        old_probability = _signal(old.ml_probability_score)
        new_probability = _signal(lead.ml_probability_score)
        if old_probability - new_probability >= PROBABILITY_DROP_ALERT_POINTS:
            alerts.append(
                LeadAlert(
                    lead=lead,
                    alert_type="probability_drop",
                    old_value=old_probability,
                    new_value=new_probability,
                    message=(
                        f"Project probability dropped from {old_probability:.0f}% "
                        f"to {new_probability:.0f}%"
                    ),
                )
            )

        if lead.applied_date is not None:
            age = (today - lead.applied_date).days
            if age > STALE_AFTER_DAYS and new_score < STALE_SCORE_CEILING:
                alerts.append(
                    LeadAlert(
                        lead=lead,
                        alert_type="stale",
                        message=f"Lead is {age} days old with low score ({new_score})",
                    )
                )

    return alerts


# ============================================================================
# RUN SUMMARY
# ============================================================================

MEDIUM_QUALITY_SCORE_THRESHOLD = 40
TOP_LEADS_LIMIT = 10
# (label, inclusive upper bound) buckets for the score histogram.
SCORE_BUCKETS = (("0-20", 20), ("21-40", 40), ("41-60", 60), ("61-80", 80), ("81-100", 100))


@dataclass
class ScoringReport:
    """Summary of one scoring run for dashboards and job logs."""

    report_date: date
    total_leads: int
    average_score: float
    high_quality_count: int
    medium_quality_count: int
    low_quality_count: int
    score_distribution: Dict[str, int] = field(default_factory=dict)
    top_leads: List[LeadRecord] = field(default_factory=list)
    alerts: List[LeadAlert] = field(default_factory=list)


def _bucket(score: int) -> str:
    for label, upper in SCORE_BUCKETS:
        if score <= upper:
            return label
    return SCORE_BUCKETS[-1][0]


def generate_scoring_report(
    leads: Sequence[LeadRecord],
    today: date,
    previous: Optional[Sequence[LeadRecord]] = None,
) -> ScoringReport:
    """Tier counts, score histogram, top leads and (given a previous run) alerts.

    Unscored leads count as 0.
    """

    scores = [lead.lead_score or 0 for lead in leads]
    distribution = {label: 0 for label, _ in SCORE_BUCKETS}
    for score in scores:
        distribution[_bucket(score)] += 1

    return ScoringReport(
        report_date=today,
        total_leads=len(leads),
        average_score=sum(scores) / len(scores) if scores else 0.0,
        high_quality_count=sum(1 for s in scores if s >= HIGH_QUALITY_SCORE_THRESHOLD),
        medium_quality_count=sum(
            1 for s in scores if MEDIUM_QUALITY_SCORE_THRESHOLD <= s < HIGH_QUALITY_SCORE_THRESHOLD
        ),
        low_quality_count=sum(1 for s in scores if s < MEDIUM_QUALITY_SCORE_THRESHOLD),
        score_distribution=distribution,
        top_leads=get_high_quality_leads(leads)[:TOP_LEADS_LIMIT],
        alerts=detect_lead_alerts(previous, leads, today) if previous is not None else [],
    )


__all__ = [
    "HIGH_QUALITY_SCORE_THRESHOLD",
    "LeadAlert",
    "ScoringReport",
    "VALUATION_SCALE",
    "apply_multi_signal_bonus",
    "clamp",
    "compute_lead_score",
    "compute_lead_score_custom",
    "detect_lead_alerts",
    "generate_scoring_report",
    "get_high_quality_leads",
    "score_breakdown",
    "score_record",
]
