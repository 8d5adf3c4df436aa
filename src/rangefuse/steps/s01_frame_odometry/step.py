"""Step 01: frame-to-frame odometry with multiscale ICP."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import ClassVar

import numpy as np

from rangefuse.core.step_base import BaseStep
from rangefuse.geometry.pointcloud import PointCloudPyramid
from rangefuse.geometry.trajectory import Trajectory, mean_trajectory_error
from rangefuse.geometry.transform import RigidTransform
from rangefuse.icp.solver import MultiscaleIcp
from rangefuse.utils.io import list_frames, load_frame, load_trajectory, save_trajectory
from .config import FrameOdometryConfig
from .contracts import FrameOdometryInput, FrameOdometryOutput

logger = logging.getLogger(__name__)


class FrameOdometryStep(BaseStep[FrameOdometryInput, FrameOdometryOutput, FrameOdometryConfig]):
    """Align each frame to its predecessor and chain the motions into a trajectory.

    The first frame sits at the origin. Frame i is the ICP source and frame i-1
    the target, so each estimate maps frame i into frame i-1.
    """

    name: ClassVar[str] = "frame_odometry"
    input_type: ClassVar = FrameOdometryInput
    output_type: ClassVar = FrameOdometryOutput
    config_type: ClassVar = FrameOdometryConfig

    def validate_inputs(self, inputs: FrameOdometryInput) -> bool:
        if not inputs.frames_dir.is_dir():
            logger.error(f"Frames directory not found: {inputs.frames_dir}")
            return False
        if not list_frames(inputs.frames_dir, self.config.frame_pattern):
            logger.error(f"No frames matching '{self.config.frame_pattern}' in {inputs.frames_dir}")
            return False
        if inputs.ground_truth_path is not None and not inputs.ground_truth_path.exists():
            logger.error(f"Ground-truth trajectory not found: {inputs.ground_truth_path}")
            return False
        return True

    def _pyramid(self, path: Path) -> PointCloudPyramid:
        cloud = load_frame(path)
        return PointCloudPyramid.build(
            cloud,
            num_levels=self.config.num_levels,
            factor=self.config.pyramid_factor,
            voxel_size=self.config.voxel_size,
        )

    def run(self, inputs: FrameOdometryInput) -> FrameOdometryOutput:
        cfg = self.config
        output_dir = self.data_root / "interim" / "s01_odometry"
        output_dir.mkdir(parents=True, exist_ok=True)

        frame_paths = list_frames(inputs.frames_dir, cfg.frame_pattern)
        logger.info(f"Found {len(frame_paths)} frames in {inputs.frames_dir}")

        icp = MultiscaleIcp(cfg.icp)
        trajectory = Trajectory()
        converged_flags = [True]
        level_reports: list[list[dict]] = [[]]

        previous = self._pyramid(frame_paths[0])
        trajectory.accumulate(RigidTransform.identity(), frame_paths[0].stem)
        last_motion = RigidTransform.identity()

        for path in frame_paths[1:]:
            current = self._pyramid(path)
            guess = last_motion if cfg.initial_guess == "previous_motion" else RigidTransform.identity()
            result = icp.align(current, previous, guess)

            motion = result.transform
            if not result.converged:
                logger.warning(f"{path.name}: ICP did not converge (policy: {cfg.on_failure})")
                if cfg.on_failure == "identity":
                    motion = RigidTransform.identity()

            trajectory.accumulate(motion, path.stem)
            converged_flags.append(result.converged)
            level_reports.append([report.to_dict() for report in result.levels])
            last_motion = motion
            previous = current

        num_converged = sum(converged_flags[1:])
        logger.info(f"Odometry: {num_converged}/{len(frame_paths) - 1} alignments converged")

        poses = trajectory.to_frame_poses(converged_flags, level_reports)
        trajectory_path = output_dir / "trajectory.json"
        save_trajectory(trajectory_path, poses)

        metadata = {
            "frames_dir": str(inputs.frames_dir),
            "num_frames": len(frame_paths),
            "num_converged": num_converged,
            "num_levels": cfg.num_levels,
            "initial_guess": cfg.initial_guess,
            "on_failure": cfg.on_failure,
            "residual": cfg.icp.residual,
        }
        if inputs.ground_truth_path is not None:
            reference = Trajectory.from_frame_poses(load_trajectory(inputs.ground_truth_path))
            angle, translation = mean_trajectory_error(trajectory, reference.first_frame_at_origin())
            logger.info(
                f"Mean trajectory error: angle {np.degrees(angle):.2f}deg, translation {translation:.5f}"
            )
            metadata["mean_angle_error_deg"] = float(np.degrees(angle))
            metadata["mean_translation_error"] = translation

        metadata_path = output_dir / "metadata.json"
        with open(metadata_path, "w") as f:
            json.dump(metadata, f, indent=2)

        return FrameOdometryOutput(
            frames_dir=inputs.frames_dir,
            trajectory_path=trajectory_path,
            metadata_path=metadata_path,
            num_frames=len(frame_paths),
            num_converged=num_converged,
        )
