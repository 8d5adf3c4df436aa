"""Step 02: fuse registered frames into a surfel map."""

from __future__ import annotations

import json
import logging
from typing import ClassVar

from rangefuse.core.step_base import BaseStep
from rangefuse.fusion.engine import FusionSummary, SurfelFusion
from rangefuse.fusion.surfel_map import SurfelMap
from rangefuse.geometry.transform import RigidTransform
from rangefuse.utils.io import load_frame, load_trajectory, save_surfel_map, write_surfels_ply
from .config import SurfelFusionStepConfig
from .contracts import SurfelFusionInput, SurfelFusionOutput

logger = logging.getLogger(__name__)


class SurfelFusionStep(BaseStep[SurfelFusionInput, SurfelFusionOutput, SurfelFusionStepConfig]):
    name: ClassVar[str] = "surfel_fusion"
    input_type: ClassVar = SurfelFusionInput
    output_type: ClassVar = SurfelFusionOutput
    config_type: ClassVar = SurfelFusionStepConfig

    def validate_inputs(self, inputs: SurfelFusionInput) -> bool:
        if not inputs.frames_dir.is_dir():
            logger.error(f"Frames directory not found: {inputs.frames_dir}")
            return False
        if not inputs.trajectory_path.exists():
            logger.error(f"Trajectory not found: {inputs.trajectory_path}")
            return False
        return True

    def run(self, inputs: SurfelFusionInput) -> SurfelFusionOutput:
        output_dir = self.data_root / "interim" / "s02_surfels"
        output_dir.mkdir(parents=True, exist_ok=True)

        poses = load_trajectory(inputs.trajectory_path)
        engine = SurfelFusion(self.config.fusion)
        surfel_map = SurfelMap(capacity=self.config.initial_capacity)

        totals = FusionSummary()
        integrated = 0
        for frame_index, pose in enumerate(poses):
            frame_path = inputs.frames_dir / f"{pose.frame_name}.npz"
            if not frame_path.exists():
                logger.warning(f"Frame file missing: {frame_path}")
                continue
            if self.config.skip_unconverged and not pose.converged:
                logger.info(f"Skipping {pose.frame_name}: alignment did not converge")
                continue

            frame = load_frame(frame_path)
            summary = engine.integrate(
                frame, RigidTransform.from_matrix(pose.matrix_4x4), surfel_map, frame_index
            )
            totals.num_added += summary.num_added
            totals.num_updated += summary.num_updated
            totals.num_skipped += summary.num_skipped
            integrated += 1

        logger.info(f"Integrated {integrated}/{len(poses)} frames into {len(surfel_map)} surfels")

        surfels_path = output_dir / "surfels.npz"
        save_surfel_map(surfels_path, surfel_map)

        ply_path = None
        if self.config.export_ply:
            ply_path = output_dir / "surfels.ply"
            write_surfels_ply(ply_path, surfel_map)

        metadata = {
            "trajectory_path": str(inputs.trajectory_path),
            "num_frames": len(poses),
            "num_integrated_frames": integrated,
            "num_surfels": len(surfel_map),
            **totals.to_dict(),
            "fusion": self.config.fusion.model_dump(),
        }
        metadata_path = output_dir / "metadata.json"
        with open(metadata_path, "w") as f:
            json.dump(metadata, f, indent=2)

        return SurfelFusionOutput(
            surfels_path=surfels_path,
            metadata_path=metadata_path,
            num_surfels=len(surfel_map),
            num_integrated_frames=integrated,
            ply_path=ply_path,
        )
