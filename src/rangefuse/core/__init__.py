"""rangefuse core: pipeline runner, base step, shared contracts, errors."""

from .step_base import BaseStep
from .contracts import FramePose, PipelineConfig, StepEntry, StepMeta
from .errors import ContractViolationError, DegenerateInputError, PyramidMismatchError, RangeFuseError
from .pipeline_runner import run_pipeline, load_pipeline_config
from .logging import setup_logging

__all__ = [
    "BaseStep",
    "ContractViolationError",
    "DegenerateInputError",
    "FramePose",
    "PipelineConfig",
    "PyramidMismatchError",
    "RangeFuseError",
    "StepEntry",
    "StepMeta",
    "run_pipeline",
    "load_pipeline_config",
    "setup_logging",
]
