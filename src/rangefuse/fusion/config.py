"""Configuration for surfel fusion."""

from typing import Optional

from pydantic import BaseModel, Field


class SurfelFusionConfig(BaseModel):
    search_radius_factor: float = Field(
        1.0, gt=0, description="Candidate search radius as a multiple of the sample radius"
    )
    max_normal_angle_deg: float = Field(
        30.0, gt=0, le=180, description="Candidates whose normal differs by more are incompatible"
    )
    max_compatibility_score: float = Field(
        2.0, ge=0, description="Merge only when (d/R)^2 + (angle/max_angle)^2 stays below this"
    )
    confidence_increment: float = Field(1.0, gt=0, description="Confidence added per observation")
    use_sample_weights: bool = Field(
        False, description="Use per-sample weights as the confidence increment when the frame has them"
    )
    focal_length: Optional[float] = Field(
        None, gt=0, description="Mean focal length in pixels; enables the depth-based radius rule"
    )
    spacing_radius_factor: float = Field(
        1.0, gt=0, description="Radius as a multiple of the nearest-sample spacing (no focal length)"
    )
    default_radius: float = Field(0.01, gt=0, description="Fallback radius for isolated samples")
    num_workers: Optional[int] = Field(None, ge=1, description="Worker threads (None = executor default)")
    chunk_size: int = Field(1024, ge=1, description="Samples per parallel work item")
