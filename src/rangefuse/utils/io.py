"""I/O utilities: .npz frames, surfel map archives, PLY export."""

from __future__ import annotations

import json
import logging
import struct
from pathlib import Path

import numpy as np

from rangefuse.core.contracts import FramePose
from rangefuse.core.errors import ContractViolationError
from rangefuse.fusion.surfel_map import SurfelMap
from rangefuse.geometry.pointcloud import PointCloud

logger = logging.getLogger(__name__)

_OPTIONAL_FRAME_FIELDS = ("normals", "colors", "intensities", "weights")


# ── Frames ───────────────────────────────────────────────────────────

def load_frame(path: Path) -> PointCloud:
    """Read a frame saved as .npz with ``points`` and optional per-sample arrays."""
    with np.load(path) as data:
        if "points" not in data.files:
            raise ContractViolationError(f"{path}: missing 'points' array")
        fields = {name: data[name] for name in _OPTIONAL_FRAME_FIELDS if name in data.files}
        return PointCloud(points=data["points"], **fields)


def save_frame(path: Path, cloud: PointCloud) -> None:
    """Write a point cloud as .npz (only the attributes it carries)."""
    arrays = {"points": cloud.points}
    for name in _OPTIONAL_FRAME_FIELDS:
        value = getattr(cloud, name)
        if value is not None:
            arrays[name] = value
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    np.savez(path, **arrays)


def list_frames(frames_dir: Path, pattern: str = "*.npz") -> list[Path]:
    """Frame files in ``frames_dir``, sorted by name."""
    return sorted(Path(frames_dir).glob(pattern))


# ── Surfel maps ──────────────────────────────────────────────────────

def save_surfel_map(path: Path, surfel_map: SurfelMap) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    np.savez_compressed(path, **surfel_map.as_arrays())


def load_surfel_map(path: Path) -> SurfelMap:
    with np.load(path) as data:
        return SurfelMap.from_arrays({name: data[name] for name in data.files})


def write_surfels_ply(path: Path, surfel_map: SurfelMap) -> None:
    """Write surfel positions, normals, colors, radii and confidences to a PLY file."""
    n = len(surfel_map)
    header = (
        "ply\n"
        "format binary_little_endian 1.0\n"
        f"element vertex {n}\n"
        "property float x\n"
        "property float y\n"
        "property float z\n"
        "property float nx\n"
        "property float ny\n"
        "property float nz\n"
        "property uchar red\n"
        "property uchar green\n"
        "property uchar blue\n"
        "property float radius\n"
        "property float confidence\n"
        "end_header\n"
    )
    positions = surfel_map.positions
    normals = surfel_map.normals
    colors = surfel_map.colors
    radii = surfel_map.radii
    confidences = surfel_map.confidences
    with open(path, "wb") as f:
        f.write(header.encode())
        for i in range(n):
            f.write(struct.pack("<3f", *positions[i]))
            f.write(struct.pack("<3f", *normals[i]))
            f.write(struct.pack("<3B", *colors[i]))
            f.write(struct.pack("<2f", radii[i], confidences[i]))
    logger.debug(f"Wrote {n} surfels to {path}")


# ── Trajectories ─────────────────────────────────────────────────────

def save_trajectory(path: Path, poses: list[FramePose]) -> None:
    with open(path, "w") as f:
        json.dump({"frames": [pose.model_dump() for pose in poses]}, f, indent=2)


def load_trajectory(path: Path) -> list[FramePose]:
    """Read the per-frame poses written by ``save_trajectory``."""
    with open(path) as f:
        data = json.load(f)
    return [FramePose(**item) for item in data["frames"]]
