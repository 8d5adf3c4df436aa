"""Configuration for the multiscale ICP solver."""

from typing import Literal, Optional

from pydantic import BaseModel, Field


class IcpLevelConfig(BaseModel):
    max_iterations: int = Field(15, ge=0, description="Iteration cap for this pyramid level")
    max_distance: float = Field(0.1, ge=0, description="Correspondence rejection distance (scene units)")
    max_normal_angle_deg: Optional[float] = Field(
        30.0, ge=0, description="Reject pairs whose normals differ by more (None = disabled)"
    )
    max_color_distance: Optional[float] = Field(
        None, ge=0, description="Reject pairs whose intensities differ by more, in [0, 1] (None = disabled)"
    )
    convergence_threshold: float = Field(
        1e-5, ge=0, description="Stop when the relative decrease of the mean squared residual falls below"
    )


def _default_levels() -> list[IcpLevelConfig]:
    # Index 0 is the finest level.
    return [
        IcpLevelConfig(max_iterations=10, max_distance=0.1),
        IcpLevelConfig(max_iterations=15, max_distance=0.2),
        IcpLevelConfig(max_iterations=20, max_distance=0.4),
    ]


class MultiscaleIcpConfig(BaseModel):
    levels: list[IcpLevelConfig] = Field(
        default_factory=_default_levels,
        min_length=1,
        description="Per-level settings, index 0 = finest; the last entry covers deeper levels",
    )
    residual: Literal["point_to_plane", "point_to_point"] = Field(
        "point_to_plane", description="Residual minimized at every level"
    )
    levenberg_marquardt: bool = Field(
        True, description="Damp steps and reject those that increase the residual"
    )
    initial_damping: float = Field(1e-4, ge=0, description="Initial LM damping (relative to diag(JtJ))")
    max_damping: float = Field(1e6, gt=0, description="Give up the level once damping exceeds this")
    regularization: float = Field(1e-9, ge=0, description="Diagonal term always added to JtJ")
    absolute_tolerance: float = Field(
        1e-14, ge=0, description="Mean squared residual treated as exact alignment"
    )
    min_correspondences: int = Field(6, ge=1, description="Fewer surviving matches ends the level")
    huber_delta: Optional[float] = Field(
        None, gt=0, description="Huber robust kernel threshold on |residual| (None = plain least squares)"
    )
    num_workers: Optional[int] = Field(None, ge=1, description="Worker threads (None = executor default)")
    chunk_size: int = Field(1024, ge=1, description="Points per parallel work item")

    def level(self, index: int) -> IcpLevelConfig:
        """Settings for pyramid level ``index``."""
        return self.levels[min(index, len(self.levels) - 1)]
