from __future__ import annotations

import math
from functools import lru_cache
from typing import Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_VALUATION_THRESHOLD = 10_000.0
RECENCY_THRESHOLD_DAYS = 30
MIN_LEAD_SCORE_HIGH_QUALITY = 60
MULTI_SIGNAL_BONUS = 10

DEDUP_SIMILARITY_THRESHOLD = 85
DBSCAN_EPSILON_MILES = 1.0
DBSCAN_MIN_POINTS = 3
KDE_GRID_SIZE_MILES = 0.5
KDE_BANDWIDTH_MILES = 1.0
KDE_MIN_INTENSITY = 30.0

SUPPORTED_PERMIT_TYPES: FrozenSet[str] = frozenset(
    {
        "Commercial Remodel",
        "Certificate of Occupancy",
        "New Construction",
        "Utility Hookup",
        "Zoning Case",
        "Fire Alarm",
    }
)

SUPPORTED_LAND_USE: FrozenSet[str] = frozenset({"COMMERCIAL", "MIXED"})

ALLOWED_STAGES: FrozenSet[str] = frozenset(
    {
        "PRE_PERMIT",
        "PERMIT_APPLIED",
        "PERMIT_ISSUED",
        "UNDER_CONSTRUCTION",
        "FINAL_INSPECTION",
        "OCCUPANCY_PENDING",
        "PRE_OPENING",
    }
)

STAGE_RECENCY_LIMITS: Dict[str, int] = {
    "PRE_PERMIT": 30,
    "PERMIT_APPLIED": 30,
    "PERMIT_ISSUED": 60,
    "UNDER_CONSTRUCTION": 120,
    "FINAL_INSPECTION": 60,
    "OCCUPANCY_PENDING": 45,
    "PRE_OPENING": 45,
}

# Rough outline of the Dallas-Fort Worth metro, (lat, lon) vertices.
DFW_POLYGON: List[Tuple[float, float]] = [
    (33.30, -97.90),
    (33.40, -97.20),
    (33.35, -96.60),
    (33.00, -96.30),
    (32.60, -96.30),
    (32.35, -96.60),
    (32.30, -97.20),
    (32.45, -97.80),
    (32.90, -98.00),
]

DEFAULT_SCORE_WEIGHTS: Dict[str, float] = {
    "valuation": 30.0,
    "confidence": 30.0,
    "recency": 10.0,
    "enrichment": 5.0,
    "contractor": 15.0,
    "probability": 10.0,
}


class ScoreWeights(BaseModel):
    """Maximum points each scoring term may contribute."""

    valuation: float = Field(default=DEFAULT_SCORE_WEIGHTS["valuation"], ge=0)
    confidence: float = Field(default=DEFAULT_SCORE_WEIGHTS["confidence"], ge=0)
    recency: float = Field(default=DEFAULT_SCORE_WEIGHTS["recency"], ge=0)
    enrichment: float = Field(default=DEFAULT_SCORE_WEIGHTS["enrichment"], ge=0)
    contractor: float = Field(default=DEFAULT_SCORE_WEIGHTS["contractor"], ge=0)
    probability: float = Field(default=DEFAULT_SCORE_WEIGHTS["probability"], ge=0)

    model_config = {"frozen": True}

    @classmethod
    def with_overrides(cls, overrides: Optional[Dict[str, float]] = None) -> "ScoreWeights":
        merged = dict(DEFAULT_SCORE_WEIGHTS)
        merged.update(overrides or {})
        return cls(**merged)


class PipelineConfig(BaseModel):
    """Validated configuration for one pipeline instance.

    Invalid values raise ``pydantic.ValidationError`` when the model is built,
    so a misconfigured pipeline never starts a run.
    """

    min_valuation: float = Field(default=MIN_VALUATION_THRESHOLD, ge=0)
    recency_days_default: int = Field(default=RECENCY_THRESHOLD_DAYS, gt=0)
    recency_days_by_stage: Dict[str, int] = Field(
        default_factory=lambda: dict(STAGE_RECENCY_LIMITS)
    )
    allowed_stages: FrozenSet[str] = ALLOWED_STAGES
    supported_types: FrozenSet[str] = SUPPORTED_PERMIT_TYPES
    supported_land_use: FrozenSet[str] = SUPPORTED_LAND_USE
    region_polygon: List[Tuple[float, float]] = Field(
        default_factory=lambda: list(DFW_POLYGON)
    )
    dedup_similarity_threshold: float = Field(default=DEDUP_SIMILARITY_THRESHOLD, ge=0, le=100)
    dbscan_epsilon_miles: float = Field(default=DBSCAN_EPSILON_MILES, gt=0)
    dbscan_min_points: int = Field(default=DBSCAN_MIN_POINTS, ge=1)
    kde_grid_size_miles: float = Field(default=KDE_GRID_SIZE_MILES, gt=0)
    kde_bandwidth_miles: float = Field(default=KDE_BANDWIDTH_MILES, gt=0)
    kde_min_intensity: float = Field(default=KDE_MIN_INTENSITY, ge=0, le=100)
    min_lead_score: float = Field(default=MIN_LEAD_SCORE_HIGH_QUALITY, ge=0, le=100)
    multi_signal_bonus: int = Field(default=MULTI_SIGNAL_BONUS, ge=0, le=100)
    score_weights: ScoreWeights = Field(default_factory=ScoreWeights)

    model_config = {"frozen": True}

    @field_validator("region_polygon")
    @classmethod
    def _check_polygon(cls, polygon: List[Tuple[float, float]]) -> List[Tuple[float, float]]:
        if len(polygon) < 3:
            raise ValueError("region_polygon needs at least 3 vertices")
        for lat, lon in polygon:
            if not (math.isfinite(lat) and math.isfinite(lon)):
                raise ValueError(f"region_polygon vertex ({lat}, {lon}) is not finite")
            if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
                raise ValueError(f"region_polygon vertex ({lat}, {lon}) is out of range")
        return polygon

    @field_validator("recency_days_by_stage")
    @classmethod
    def _check_stage_windows(cls, windows: Dict[str, int]) -> Dict[str, int]:
        for stage, days in windows.items():
            if days <= 0:
                raise ValueError(f"recency window for {stage} must be positive, got {days}")
        return windows

    @field_validator("score_weights", mode="before")
    @classmethod
    def _merge_weight_overrides(cls, value):
        # Partial dicts override individual defaults.
        if isinstance(value, dict):
            return ScoreWeights.with_overrides(value)
        return value

    def recency_window(self, stage: Optional[str]) -> int:
        if stage and stage in self.recency_days_by_stage:
            return self.recency_days_by_stage[stage]
        return self.recency_days_default

    @classmethod
    def from_settings(cls, settings: Optional["Settings"] = None) -> "PipelineConfig":
        settings = settings or get_settings()
        overrides = {
            key: value
            for key, value in settings.model_dump().items()
            if key in cls.model_fields and value is not None
        }
        return cls(**overrides)


class Settings(BaseSettings):
    """Environment overrides, read from ``PERMIT_LEADS_*`` variables or ``.env``."""

    min_valuation: Optional[float] = None
    recency_days_default: Optional[int] = None
    dedup_similarity_threshold: Optional[float] = None
    dbscan_epsilon_miles: Optional[float] = None
    dbscan_min_points: Optional[int] = None
    kde_grid_size_miles: Optional[float] = None
    kde_bandwidth_miles: Optional[float] = None
    kde_min_intensity: Optional[float] = None
    min_lead_score: Optional[float] = None
    log_level: str = "INFO"
    log_format: str = "text"

    model_config = SettingsConfigDict(
        env_prefix="PERMIT_LEADS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


__all__ = [
    "ALLOWED_STAGES",
    "DBSCAN_EPSILON_MILES",
    "DBSCAN_MIN_POINTS",
    "DEDUP_SIMILARITY_THRESHOLD",
    "DEFAULT_SCORE_WEIGHTS",
    "DFW_POLYGON",
    "KDE_BANDWIDTH_MILES",
    "KDE_GRID_SIZE_MILES",
    "KDE_MIN_INTENSITY",
    "MIN_LEAD_SCORE_HIGH_QUALITY",
    "MIN_VALUATION_THRESHOLD",
    "MULTI_SIGNAL_BONUS",
    "PipelineConfig",
    "RECENCY_THRESHOLD_DAYS",
    "STAGE_RECENCY_LIMITS",
    "SUPPORTED_LAND_USE",
    "SUPPORTED_PERMIT_TYPES",
    "ScoreWeights",
    "Settings",
    "get_settings",
]
