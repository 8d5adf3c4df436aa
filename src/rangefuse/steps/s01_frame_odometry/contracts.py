"""I/O contracts for Step 01: frame-to-frame ICP odometry."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class FrameOdometryInput(BaseModel):
    frames_dir: Path = Field(..., description="Directory of .npz frames (points, normals, colors, ...)")
    ground_truth_path: Optional[Path] = Field(
        None, description="Optional trajectory.json with reference poses for error metrics"
    )


class FrameOdometryOutput(BaseModel):
    frames_dir: Path = Field(..., description="Directory the frames were read from")
    trajectory_path: Path = Field(..., description="Path to trajectory.json")
    metadata_path: Path = Field(..., description="Path to metadata.json")
    num_frames: int = Field(..., description="Number of frames in the trajectory")
    num_converged: int = Field(..., description="Alignments whose finest level converged")
