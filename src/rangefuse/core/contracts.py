"""Common Pydantic models shared across pipeline steps."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class StepMeta(BaseModel):
    """Metadata attached to every step output for reproducibility."""

    step_name: str
    elapsed_seconds: float = 0.0
    params: dict[str, Any] = Field(default_factory=dict)


class FramePose(BaseModel):
    """Sensor-to-world pose of one frame: 4x4 matrix stored as flat list (row-major)."""

    frame_name: str
    matrix_4x4: list[float] = Field(..., min_length=16, max_length=16)
    converged: bool = True
    levels: list[dict[str, Any]] = Field(default_factory=list)


class PipelineConfig(BaseModel):
    """Top-level pipeline configuration loaded from pipeline.yaml."""

    project_name: str = "rangefuse_project"
    data_root: Path = Path("./data")
    steps: list[StepEntry] = Field(default_factory=list)


class StepEntry(BaseModel):
    """One entry in the pipeline step list."""

    name: str
    module: str
    config_file: str
    depends_on: list[str] = Field(default_factory=list)
    enabled: bool = True
    inputs: dict[str, Any] = Field(default_factory=dict)


# Fix forward reference
PipelineConfig.model_rebuild()
