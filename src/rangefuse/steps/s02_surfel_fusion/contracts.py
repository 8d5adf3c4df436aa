"""I/O contracts for Step 02: surfel fusion."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class SurfelFusionInput(BaseModel):
    frames_dir: Path = Field(..., description="Directory of .npz frames")
    trajectory_path: Path = Field(..., description="trajectory.json with one pose per frame")


class SurfelFusionOutput(BaseModel):
    surfels_path: Path = Field(..., description="Path to surfels.npz")
    metadata_path: Path = Field(..., description="Path to metadata.json")
    num_surfels: int = Field(..., description="Number of surfels in the map")
    num_integrated_frames: int = Field(..., description="Frames fused into the map")
    ply_path: Optional[Path] = Field(None, description="Path to surfels.ply (if exported)")
