"""Configuration for Step 02: surfel fusion."""

from pydantic import BaseModel, Field

from rangefuse.fusion.config import SurfelFusionConfig


class SurfelFusionStepConfig(BaseModel):
    skip_unconverged: bool = Field(
        False, description="Leave out frames whose odometry alignment did not converge"
    )
    export_ply: bool = Field(True, description="Also write surfels.ply for viewing")
    initial_capacity: int = Field(4096, ge=1, description="Initial surfel map capacity")
    fusion: SurfelFusionConfig = Field(default_factory=SurfelFusionConfig)
