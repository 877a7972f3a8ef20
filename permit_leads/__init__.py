"""
Commercial permit lead pipeline.

Deduplicates, classifies, scores and spatially groups permit-like records
from many public data sources into ranked sales leads.
"""

from .config import PipelineConfig, ScoreWeights, get_settings
from .models import Cluster, Hotspot, LandUse, LeadRecord, ProjectStage, QualityFlags
from .pipeline import LeadPipeline, PipelineResult, run_pipeline

__all__ = [
    "Cluster",
    "Hotspot",
    "LandUse",
    "LeadPipeline",
    "LeadRecord",
    "PipelineConfig",
    "PipelineResult",
    "ProjectStage",
    "QualityFlags",
    "ScoreWeights",
    "get_settings",
    "run_pipeline",
]
