"""Common shape of a rangefuse pipeline step (odometry, fusion).

A step reads artifacts under ``data_root``, writes its own under
``data_root/interim/<step>``, and describes both ends with pydantic models so
``run_pipeline`` can wire one step's output into the next step's input.
"""

from __future__ import annotations

import time
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Generic, TypeVar, ClassVar

from pydantic import BaseModel

from .contracts import StepMeta

InputT = TypeVar("InputT", bound=BaseModel)
OutputT = TypeVar("OutputT", bound=BaseModel)
ConfigT = TypeVar("ConfigT", bound=BaseModel)

logger = logging.getLogger(__name__)


class BaseStep(ABC, Generic[InputT, OutputT, ConfigT]):
    """One stage of the range-data pipeline.

    Concrete steps set ``name`` plus the three model classes below and
    implement ``validate_inputs`` (cheap existence checks, logged) and ``run``
    (the work). Callers go through ``execute``, which refuses invalid inputs
    and records a ``StepMeta`` in ``last_meta``.
    """

    name: ClassVar[str] = ""
    input_type: ClassVar[type[BaseModel]]
    output_type: ClassVar[type[BaseModel]]
    config_type: ClassVar[type[BaseModel]]

    def __init__(self, config: ConfigT, data_root: Path):
        self.config = config
        self.data_root = Path(data_root)
        self.last_meta: StepMeta | None = None

    @abstractmethod
    def run(self, inputs: InputT) -> OutputT:
        ...

    @abstractmethod
    def validate_inputs(self, inputs: InputT) -> bool:
        ...

    def execute(self, inputs: InputT) -> OutputT:
        """Validate, run and time the step; ``ValueError`` when validation fails."""
        step_name = self.name or type(self).__name__
        if not self.validate_inputs(inputs):
            raise ValueError(f"[{step_name}] Input validation failed")

        logger.info(f"[{step_name}] Starting...")
        t0 = time.perf_counter()
        result = self.run(inputs)
        elapsed = time.perf_counter() - t0
        self.last_meta = StepMeta(
            step_name=step_name, elapsed_seconds=elapsed, params=self.config.model_dump()
        )
        logger.info(f"[{step_name}] Done in {elapsed:.1f}s")
        return result

    @classmethod
    def get_input_schema(cls) -> dict:
        return cls.input_type.model_json_schema()

    @classmethod
    def get_output_schema(cls) -> dict:
        return cls.output_type.model_json_schema()

    @classmethod
    def get_config_schema(cls) -> dict:
        return cls.config_type.model_json_schema()
