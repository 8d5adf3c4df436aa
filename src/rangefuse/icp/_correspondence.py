"""Nearest-neighbor correspondence search with distance, normal and color gates."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from rangefuse.spatial.kdtree import KdTree
from .config import IcpLevelConfig

logger = logging.getLogger(__name__)


@dataclass
class Correspondences:
    source_index: np.ndarray  # (M,) int64
    target_index: np.ndarray  # (M,) int64
    squared_distance: np.ndarray  # (M,) float64

    def __len__(self) -> int:
        return len(self.source_index)

    @classmethod
    def empty(cls) -> Correspondences:
        return cls(np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64), np.zeros(0))


def angle_between_normals(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Row-wise angle in radians between (M, 3) direction arrays; NaN for zero vectors."""
    with np.errstate(invalid="ignore", divide="ignore"):
        cos = np.einsum("ij,ij->i", a, b) / (np.linalg.norm(a, axis=1) * np.linalg.norm(b, axis=1))
    return np.arccos(np.clip(cos, -1.0, 1.0))


def find_correspondences(
    source_points: np.ndarray,
    tree: KdTree,
    cfg: IcpLevelConfig,
    *,
    source_normals: np.ndarray | None = None,
    target_normals: np.ndarray | None = None,
    source_intensity: np.ndarray | None = None,
    target_intensity: np.ndarray | None = None,
    workers: int | None = None,
    chunk_size: int = 1024,
) -> Correspondences:
    """Match each (already transformed) source point to its nearest target point.

    Pairs farther than ``cfg.max_distance``, with normals more than
    ``cfg.max_normal_angle_deg`` apart, or with intensities more than
    ``cfg.max_color_distance`` apart are dropped. Non-finite source points
    never match.
    """
    candidates = np.flatnonzero(np.all(np.isfinite(source_points), axis=1))
    if len(candidates) == 0 or tree.is_empty:
        return Correspondences.empty()

    target_index, sq_dist = tree.nearest_batch(
        source_points[candidates], workers=workers, chunk_size=chunk_size
    )
    keep = sq_dist <= cfg.max_distance * cfg.max_distance
    if target_normals is not None:
        keep &= np.all(np.isfinite(target_normals[target_index]), axis=1)

    if (
        cfg.max_normal_angle_deg is not None
        and source_normals is not None
        and target_normals is not None
    ):
        angles = angle_between_normals(source_normals[candidates], target_normals[target_index])
        with np.errstate(invalid="ignore"):
            keep &= angles <= np.radians(cfg.max_normal_angle_deg)

    if (
        cfg.max_color_distance is not None
        and source_intensity is not None
        and target_intensity is not None
    ):
        diff = np.abs(source_intensity[candidates] - target_intensity[target_index])
        keep &= diff <= cfg.max_color_distance

    return Correspondences(candidates[keep], target_index[keep], sq_dist[keep])
