"""Shared pytest fixtures for rangefuse tests."""

import json
from pathlib import Path

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from rangefuse.geometry.pointcloud import PointCloud
from rangefuse.geometry.transform import RigidTransform


def make_surface(n: int = 30, extent: float = 1.0) -> PointCloud:
    """Smooth non-symmetric height field z = f(x, y) sampled on an n x n grid, with analytic normals."""
    xs = np.linspace(-extent, extent, n)
    x, y = np.meshgrid(xs, xs, indexing="ij")
    x, y = x.ravel(), y.ravel()
    z = 0.3 * np.sin(2 * x) + 0.2 * np.cos(3 * y) + 0.1 * x * y
    dz_dx = 0.6 * np.cos(2 * x) + 0.1 * y
    dz_dy = -0.6 * np.sin(3 * y) + 0.1 * x
    normals = np.column_stack([-dz_dx, -dz_dy, np.ones_like(x)])
    normals /= np.linalg.norm(normals, axis=1, keepdims=True)
    colors = np.column_stack([
        (x + extent) / (2 * extent) * 255,
        (y + extent) / (2 * extent) * 255,
        np.full_like(x, 128),
    ])
    return PointCloud(points=np.column_stack([x, y, z]), normals=normals, colors=colors)


def make_transform(rotvec_deg, translation) -> RigidTransform:
    rotation = Rotation.from_rotvec(np.radians(rotvec_deg)).as_matrix()
    return RigidTransform(rotation, np.asarray(translation, dtype=float))


@pytest.fixture
def data_root(tmp_path: Path) -> Path:
    """Create a temporary data root with standard directory structure."""
    for subdir in ["raw/frames", "interim/s01_odometry", "interim/s02_surfels", "processed"]:
        (tmp_path / subdir).mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture
def surface() -> PointCloud:
    return make_surface()


@pytest.fixture
def camera_poses() -> list[RigidTransform]:
    """Sensor-to-world poses of a slow sweep over the surface (first at the origin)."""
    return [
        RigidTransform.identity(),
        make_transform([1.0, -1.5, 2.0], [0.02, -0.01, 0.01]),
        make_transform([2.0, -2.5, 4.0], [0.04, -0.03, 0.02]),
        make_transform([3.5, -3.0, 5.5], [0.05, -0.05, 0.02]),
    ]


@pytest.fixture
def sample_frames_dir(data_root: Path, surface: PointCloud, camera_poses) -> Path:
    """Write the surface seen from each pose as sensor-frame .npz files."""
    frames_dir = data_root / "raw" / "frames"
    for i, pose in enumerate(camera_poses):
        frame = surface.transformed(pose.inverse())
        np.savez(
            frames_dir / f"frame_{i:05d}.npz",
            points=frame.points,
            normals=frame.normals,
            colors=frame.colors,
        )
    return frames_dir


@pytest.fixture
def ground_truth_json(data_root: Path, camera_poses) -> Path:
    """trajectory.json holding the true poses of ``sample_frames_dir``."""
    frames = [
        {"frame_name": f"frame_{i:05d}", "matrix_4x4": pose.as_matrix().flatten().tolist()}
        for i, pose in enumerate(camera_poses)
    ]
    path = data_root / "raw" / "ground_truth.json"
    with open(path, "w") as f:
        json.dump({"frames": frames}, f)
    return path


@pytest.fixture
def transform_from():
    """Factory: ``transform_from(rotvec_deg, translation) -> RigidTransform``."""
    return make_transform
