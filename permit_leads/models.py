"""Data models for the lead pipeline."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ProjectStage(str, Enum):
    CONCEPT = "CONCEPT"
    PRE_PERMIT = "PRE_PERMIT"
    PERMIT_APPLIED = "PERMIT_APPLIED"
    PERMIT_ISSUED = "PERMIT_ISSUED"
    UNDER_CONSTRUCTION = "UNDER_CONSTRUCTION"
    FINAL_INSPECTION = "FINAL_INSPECTION"
    OCCUPANCY_PENDING = "OCCUPANCY_PENDING"
    PRE_OPENING = "PRE_OPENING"
    COMPLETE = "COMPLETE"


class LandUse(str, Enum):
    COMMERCIAL = "COMMERCIAL"
    RESIDENTIAL = "RESIDENTIAL"
    MIXED = "MIXED"
    UNKNOWN = "UNKNOWN"


# ============================================================================
# LEAD RECORDS
# ============================================================================


class QualityFlags(BaseModel):
    """The seven quality gates evaluated for every record."""

    model_config = ConfigDict(frozen=True)

    geocoded: bool = False
    value_above_threshold: bool = False
    type_supported: bool = False
    land_use_supported: bool = False
    business_verified: bool = False
    within_region: bool = False
    address_valid: bool = False

    def all_passed(self) -> bool:
        return all(self.model_dump().values())

    def failed(self) -> List[str]:
        return [name for name, passed in self.model_dump().items() if not passed]


def _coerce_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _coerce_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            pass
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    return None


def _coerce_enum(enum_cls, value: Any):
    if value is None:
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().upper())
    except ValueError:
        return None


class LeadRecord(BaseModel):
    """Canonical unit flowing through the pipeline.

    Descriptive and numeric fields come from upstream ingestion; the derived
    fields (flags, recency, score, cluster) are recomputed on every run.
    Field validators coerce malformed values instead of rejecting them so a
    bad source row narrows actionability rather than aborting a run.
    """

    id: str
    source_ids: FrozenSet[str] = frozenset()
    data_source: Optional[str] = None
    merged_ids: Tuple[str, ...] = ()

    address: Optional[str] = None
    normalized_address: Optional[str] = None
    city: Optional[str] = None
    applicant: Optional[str] = None
    description: Optional[str] = None
    permit_type: Optional[str] = None
    land_use: Optional[LandUse] = None
    project_stage: Optional[ProjectStage] = None

    valuation: float = 0.0
    applied_date: Optional[date] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    ai_confidence: Optional[float] = None
    ai_category: Optional[str] = None
    contractor_quality_score: Optional[float] = None
    ml_probability_score: Optional[float] = None
    enrichment_verified: bool = False

    quality_flags: QualityFlags = Field(default_factory=QualityFlags)
    is_actionable: bool = False
    is_recent: bool = False
    recency_window_days: Optional[int] = None
    high_quality_candidate: bool = False
    is_high_quality: bool = False
    lead_score: Optional[int] = None
    cluster_id: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _require_id(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            raise ValueError("lead record id is required")
        return str(value).strip()

    @field_validator("source_ids", mode="before")
    @classmethod
    def _coerce_source_ids(cls, value: Any) -> FrozenSet[str]:
        if not value:
            return frozenset()
        if isinstance(value, str):
            return frozenset({value})
        return frozenset(str(item) for item in value if item)

    @field_validator(
        "address", "city", "applicant", "description", "permit_type", "ai_category", "data_source",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return None

    @field_validator("land_use", mode="before")
    @classmethod
    def _coerce_land_use(cls, value: Any) -> Optional[LandUse]:
        return _coerce_enum(LandUse, value)

    @field_validator("project_stage", mode="before")
    @classmethod
    def _coerce_stage(cls, value: Any) -> Optional[ProjectStage]:
        return _coerce_enum(ProjectStage, value)

    @field_validator("valuation", mode="before")
    @classmethod
    def _coerce_valuation(cls, value: Any) -> float:
        number = _coerce_float(value)
        if number is None or number < 0:
            return 0.0
        return number

    @field_validator("applied_date", mode="before")
    @classmethod
    def _coerce_applied_date(cls, value: Any) -> Optional[date]:
        return _coerce_date(value)

    @field_validator(
        "latitude", "longitude", "ai_confidence", "contractor_quality_score", "ml_probability_score",
        mode="before",
    )
    @classmethod
    def _coerce_optional_float(cls, value: Any) -> Optional[float]:
        return _coerce_float(value)

    @field_validator("enrichment_verified", mode="before")
    @classmethod
    def _coerce_verified(cls, value: Any) -> bool:
        return value is True

    @field_validator("lead_score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> Optional[int]:
        number = _coerce_float(value)
        if number is None:
            return None
        return int(round(max(0.0, min(100.0, number))))

    @model_validator(mode="after")
    def _default_source_ids(self) -> "LeadRecord":
        # A record that has never been merged is its own single source.
        if not self.source_ids:
            self.source_ids = frozenset({self.id})
        return self

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def source_count(self) -> int:
        return max(1, len(self.source_ids))

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "LeadRecord":
        """Build a record from a heterogeneous upstream dictionary.

        Accepts snake_case or camelCase keys, ``lat``/``lng`` aliases and the
        nested ``aiAnalysis``/``enrichmentData``/``prediction`` blocks emitted
        by the collaborators.  Only a missing id raises.
        """

        ai_analysis = _nested(payload, "aiAnalysis", "ai_analysis")
        enrichment = _nested(payload, "enrichmentData", "enrichment_data")
        prediction = _nested(payload, "prediction")

        ai_confidence = _first(payload, "ai_confidence", "aiConfidence")
        if ai_confidence is None:
            ai_confidence = ai_analysis.get("confidenceScore")
        ml_probability = _first(payload, "ml_probability_score", "mlProbabilityScore")
        if ml_probability is None:
            ml_probability = prediction.get("probabilityScore")
        verified = _first(payload, "enrichment_verified", "enrichmentVerified")
        if verified is None:
            verified = enrichment.get("verified")

        fields: Dict[str, Any] = {
            "id": _first(payload, "id", "permitNumber", "permit_number"),
            "source_ids": _first(payload, "source_ids", "sourceIds"),
            "data_source": _first(payload, "data_source", "dataSource"),
            "address": payload.get("address"),
            "city": payload.get("city"),
            "applicant": payload.get("applicant"),
            "description": payload.get("description"),
            "permit_type": _first(payload, "permit_type", "permitType"),
            "land_use": _first(payload, "land_use", "landUse"),
            "project_stage": _first(payload, "project_stage", "projectStage", "stage"),
            "valuation": payload.get("valuation"),
            "applied_date": _first(payload, "applied_date", "appliedDate"),
            "latitude": _first(payload, "latitude", "lat"),
            "longitude": _first(payload, "longitude", "lon", "lng"),
            "ai_confidence": ai_confidence,
            "ai_category": _first(payload, "ai_category", "aiCategory") or ai_analysis.get("category"),
            "contractor_quality_score": _first(
                payload, "contractor_quality_score", "contractorQualityScore"
            ),
            "ml_probability_score": ml_probability,
            "enrichment_verified": verified,
        }
        return cls(**fields)


def _first(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def _nested(payload: Mapping[str, Any], *keys: str) -> Mapping[str, Any]:
    value = _first(payload, *keys)
    return value if isinstance(value, Mapping) else {}


# ============================================================================
# DERIVED VIEWS
# ============================================================================


@dataclass
class Cluster:
    """Density-based group of leads, rebuilt on every run."""

    id: str
    centroid: Tuple[float, float]
    member_ids: FrozenSet[str]
    radius_miles: float
    density: float
    average_score: float
    total_valuation: float
    top_categories: List[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.member_ids)


@dataclass
class Hotspot:
    """Grid cell whose kernel density clears the intensity threshold."""

    id: str
    center: Tuple[float, float]
    intensity: int
    lead_count: int
    avg_valuation: float
    radius_miles: float


__all__ = [
    "Cluster",
    "Hotspot",
    "LandUse",
    "LeadRecord",
    "ProjectStage",
    "QualityFlags",
]
