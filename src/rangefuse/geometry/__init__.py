"""Rigid transforms, point clouds, point-cloud pyramids and trajectories."""

from .pointcloud import PointCloud, PointCloudPyramid
from .trajectory import Trajectory, mean_trajectory_error
from .transform import RigidTransform, transform_error

__all__ = [
    "PointCloud",
    "PointCloudPyramid",
    "RigidTransform",
    "Trajectory",
    "mean_trajectory_error",
    "transform_error",
]
