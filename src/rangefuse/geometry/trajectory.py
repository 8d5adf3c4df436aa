"""Camera trajectories: accumulated sensor-to-world poses and their error metrics."""

from __future__ import annotations

import logging
from typing import Iterator, Sequence

import numpy as np

from rangefuse.core.contracts import FramePose
from .transform import RigidTransform, transform_error

logger = logging.getLogger(__name__)


class Trajectory:
    """Ordered sensor-to-world poses, one per frame."""

    def __init__(self) -> None:
        self.camera_to_world: list[RigidTransform] = []
        self.names: list[str] = []

    def __len__(self) -> int:
        return len(self.camera_to_world)

    def __iter__(self) -> Iterator[tuple[str, RigidTransform]]:
        return iter(zip(self.names, self.camera_to_world))

    def push(self, camera_to_world: RigidTransform, name: str | None = None) -> None:
        self.camera_to_world.append(camera_to_world)
        self.names.append(name if name is not None else f"frame_{len(self.names):05d}")

    def accumulate(self, now_to_previous: RigidTransform, name: str | None = None) -> RigidTransform:
        """Append the pose reached by ``now_to_previous`` from the last pose.

        The first call on an empty trajectory places the frame at the origin.
        """
        if not self.camera_to_world:
            pose = RigidTransform.identity()
        else:
            pose = (self.camera_to_world[-1] @ now_to_previous).orthonormalized()
        self.push(pose, name)
        return pose

    def relative_transform(self, source: int, target: int) -> RigidTransform:
        """Transform mapping frame ``source`` coordinates into frame ``target``."""
        return self.camera_to_world[target].inverse() @ self.camera_to_world[source]

    def first_frame_at_origin(self) -> Trajectory:
        """Copy re-expressed so that the first pose is the identity."""
        result = Trajectory()
        if not self.camera_to_world:
            return result
        origin = self.camera_to_world[0].inverse()
        for name, pose in self:
            result.push(origin @ pose, name)
        return result

    # -- serialization --------------------------------------------------------

    def to_frame_poses(
        self,
        converged: Sequence[bool] | None = None,
        levels: Sequence[list[dict]] | None = None,
    ) -> list[FramePose]:
        return [
            FramePose(
                frame_name=name,
                matrix_4x4=pose.as_matrix().flatten().tolist(),
                converged=True if converged is None else bool(converged[i]),
                levels=[] if levels is None else list(levels[i]),
            )
            for i, (name, pose) in enumerate(self)
        ]

    @classmethod
    def from_frame_poses(cls, poses: Sequence[FramePose]) -> Trajectory:
        trajectory = cls()
        for pose in poses:
            trajectory.push(RigidTransform.from_matrix(pose.matrix_4x4), pose.frame_name)
        return trajectory


def mean_trajectory_error(predicted: Trajectory, reference: Trajectory) -> tuple[float, float]:
    """Mean rotation angle (radians) and translation error of consecutive relative motions."""
    if len(predicted) != len(reference):
        raise ValueError(
            f"Trajectories differ in length: {len(predicted)} vs {len(reference)}"
        )
    if len(predicted) < 2:
        return 0.0, 0.0

    errors = [
        transform_error(predicted.relative_transform(i, i - 1), reference.relative_transform(i, i - 1))
        for i in range(1, len(predicted))
    ]
    angles, translations = zip(*errors)
    return float(np.mean(angles)), float(np.mean(translations))
