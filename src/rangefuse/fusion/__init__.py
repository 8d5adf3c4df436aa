"""Surfel map and the fusion engine that grows it."""

from .config import SurfelFusionConfig
from .engine import FusionSummary, SurfelFusion
from .surfel_map import Surfel, SurfelMap

__all__ = ["FusionSummary", "Surfel", "SurfelFusion", "SurfelFusionConfig", "SurfelMap"]
