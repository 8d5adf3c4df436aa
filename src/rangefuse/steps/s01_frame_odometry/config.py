"""Configuration for Step 01: frame-to-frame ICP odometry."""

from typing import Literal, Optional

from pydantic import BaseModel, Field

from rangefuse.icp.config import MultiscaleIcpConfig


class FrameOdometryConfig(BaseModel):
    frame_pattern: str = Field("*.npz", description="Glob for frame files inside frames_dir")
    num_levels: int = Field(3, ge=1, description="Pyramid levels per frame")
    pyramid_factor: int = Field(2, ge=2, description="Downsampling factor between levels")
    voxel_size: Optional[float] = Field(
        None, gt=0, description="Voxel edge of level 1 in scene units (None = stride sampling)"
    )
    initial_guess: Literal["identity", "previous_motion"] = Field(
        "previous_motion", description="Seed for each alignment"
    )
    on_failure: Literal["keep", "identity"] = Field(
        "keep", description="Pose policy when ICP does not converge: keep the estimate or assume no motion"
    )
    icp: MultiscaleIcpConfig = Field(default_factory=MultiscaleIcpConfig)
