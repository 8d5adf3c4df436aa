"""Point clouds and multiresolution point-cloud pyramids.

A ``PointCloud`` is immutable once built: every array is copied and marked
read-only. Pyramids keep level 0 at full resolution and shrink each following
level by a fixed factor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, Sequence

import numpy as np

from rangefuse.core.errors import ContractViolationError, DegenerateInputError
from .transform import RigidTransform

logger = logging.getLogger(__name__)

# ITU-R BT.601 luma weights
_LUMA = np.array([0.299, 0.587, 0.114])


def _frozen(array: np.ndarray | None, dtype, name: str, n: int | None, width: int | None):
    if array is None:
        return None
    out = np.array(array, dtype=dtype, copy=True)
    expected = (n,) if width is None else (n, width)
    if n is not None and out.shape != expected:
        raise ContractViolationError(f"{name}: expected shape {expected}, got {out.shape}")
    out.flags.writeable = False
    return out


@dataclass(frozen=True, eq=False)
class PointCloud:
    """Per-sample position with optional normal, color, intensity and weight."""

    points: np.ndarray  # (N, 3) float64
    normals: np.ndarray | None = None  # (N, 3) float64
    colors: np.ndarray | None = None  # (N, 3) uint8
    intensities: np.ndarray | None = None  # (N,) float64 in [0, 1]
    weights: np.ndarray | None = None  # (N,) float64

    def __post_init__(self) -> None:
        points = np.asarray(self.points, dtype=np.float64)
        if points.size == 0:
            points = points.reshape(0, 3)
        if points.ndim != 2 or points.shape[1] != 3:
            raise ContractViolationError(f"points: expected shape (N, 3), got {points.shape}")
        n = len(points)
        object.__setattr__(self, "points", _frozen(points, np.float64, "points", n, 3))
        object.__setattr__(self, "normals", _frozen(self.normals, np.float64, "normals", n, 3))
        if self.colors is not None:
            colors = np.clip(np.asarray(self.colors), 0, 255)
            object.__setattr__(self, "colors", _frozen(colors, np.uint8, "colors", n, 3))
        object.__setattr__(
            self, "intensities", _frozen(self.intensities, np.float64, "intensities", n, None)
        )
        object.__setattr__(self, "weights", _frozen(self.weights, np.float64, "weights", n, None))

    def __len__(self) -> int:
        return len(self.points)

    @property
    def is_empty(self) -> bool:
        return len(self.points) == 0

    @property
    def has_normals(self) -> bool:
        return self.normals is not None

    def select(self, indices: np.ndarray | slice) -> PointCloud:
        """Subset by integer indices, boolean mask or slice."""

        def pick(a):
            return None if a is None else a[indices]

        return PointCloud(
            points=self.points[indices],
            normals=pick(self.normals),
            colors=pick(self.colors),
            intensities=pick(self.intensities),
            weights=pick(self.weights),
        )

    def transformed(self, transform: RigidTransform) -> PointCloud:
        return PointCloud(
            points=transform.apply(self.points),
            normals=None if self.normals is None else transform.apply_normals(self.normals),
            colors=self.colors,
            intensities=self.intensities,
            weights=self.weights,
        )

    def finite_mask(self) -> np.ndarray:
        """Samples with finite positions and, when present, finite non-zero normals."""
        mask = np.all(np.isfinite(self.points), axis=1)
        if self.normals is not None:
            mask &= np.all(np.isfinite(self.normals), axis=1)
            with np.errstate(invalid="ignore"):
                mask &= np.linalg.norm(self.normals, axis=1) > 1e-12
        return mask

    def intensity_values(self) -> np.ndarray | None:
        """Explicit intensities, else luma derived from colors, else None."""
        if self.intensities is not None:
            return self.intensities
        if self.colors is not None:
            return (self.colors.astype(np.float64) @ _LUMA) / 255.0
        return None


def _voxel_downsample(cloud: PointCloud, voxel_size: float) -> PointCloud:
    """Keep, per occupied voxel, the sample closest to the voxel's mean."""
    finite = np.all(np.isfinite(cloud.points), axis=1)
    candidates = np.flatnonzero(finite)
    if len(candidates) == 0:
        return cloud.select(candidates)

    keys = np.floor(cloud.points[candidates] / voxel_size).astype(np.int64)
    _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    inverse = inverse.reshape(-1)
    num_voxels = len(counts)

    sums = np.zeros((num_voxels, 3))
    np.add.at(sums, inverse, cloud.points[candidates])
    means = sums / counts[:, None]
    dist = np.sum((cloud.points[candidates] - means[inverse]) ** 2, axis=1)

    # Sort by (voxel, distance, original index) and keep the first of each voxel
    order = np.lexsort((candidates, dist, inverse))
    first = np.ones(len(order), dtype=bool)
    first[1:] = inverse[order][1:] != inverse[order][:-1]
    keep = np.sort(candidates[order[first]])
    return cloud.select(keep)


class PointCloudPyramid:
    """Ordered levels; level 0 is full resolution, higher levels are coarser."""

    def __init__(self, levels: Sequence[PointCloud]):
        levels = tuple(levels)
        if not levels:
            raise ContractViolationError("A pyramid needs at least one level")
        self._levels = levels

    @classmethod
    def build(
        cls,
        cloud: PointCloud,
        num_levels: int = 3,
        factor: int = 2,
        voxel_size: float | None = None,
    ) -> PointCloudPyramid:
        """Downsample ``cloud`` into ``num_levels`` levels.

        With ``voxel_size`` level k (k >= 1) is a voxel grid of edge
        ``voxel_size * factor ** (k - 1)``; without it, level k keeps every
        ``factor ** k``-th sample.
        """
        if num_levels < 1:
            raise ContractViolationError(f"num_levels must be >= 1, got {num_levels}")
        if factor < 2:
            raise ContractViolationError(f"factor must be >= 2, got {factor}")
        if cloud.is_empty:
            raise DegenerateInputError("Cannot build a pyramid from an empty point cloud")

        levels = [cloud]
        for k in range(1, num_levels):
            if voxel_size is not None and voxel_size > 0:
                levels.append(_voxel_downsample(cloud, voxel_size * factor ** (k - 1)))
            else:
                levels.append(cloud.select(slice(None, None, factor ** k)))

        logger.debug(f"Pyramid sizes: {[len(level) for level in levels]}")
        return cls(levels)

    def __len__(self) -> int:
        return len(self._levels)

    def __getitem__(self, level: int) -> PointCloud:
        return self._levels[level]

    def __iter__(self) -> Iterator[PointCloud]:
        return iter(self._levels)

    def coarse_to_fine(self) -> Iterator[tuple[int, PointCloud]]:
        """Yield ``(level_index, cloud)`` from the coarsest level down to 0."""
        for level in range(len(self._levels) - 1, -1, -1):
            yield level, self._levels[level]
