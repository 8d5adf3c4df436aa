"""Surfel fusion: merge a registered frame into a persistent surfel map.

For every sample of the frame:
1. Skip it when its position or normal is unusable.
2. Estimate its radius (depth rule with a focal length, sample spacing otherwise).
3. Look up map surfels within ``search_radius_factor * radius`` of the sample.
4. Score the compatible ones by ``(d / R)^2 + (angle / max_angle)^2``.
5. Merge into the best-scoring surfel, or insert a new surfel.

Candidate lookup runs in parallel against the index snapshot from the previous
pass. Merges and inserts then run sequentially in sample order, so two samples
landing on the same surfel compose deterministically. Surfels inserted during a
pass are not candidates until the next one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from rangefuse.core.errors import ContractViolationError
from rangefuse.geometry.pointcloud import PointCloud
from rangefuse.geometry.transform import RigidTransform
from rangefuse.spatial.kdtree import KdTree
from .config import SurfelFusionConfig
from .surfel_map import SurfelMap

logger = logging.getLogger(__name__)

_SQRT2 = np.sqrt(2.0)


@dataclass
class FusionSummary:
    num_added: int = 0
    num_updated: int = 0
    num_skipped: int = 0

    def to_dict(self) -> dict:
        return {
            "num_added": self.num_added,
            "num_updated": self.num_updated,
            "num_skipped": self.num_skipped,
        }


class SurfelFusion:
    """Integrates registered frames into a ``SurfelMap``."""

    def __init__(self, config: SurfelFusionConfig | None = None):
        self.config = config or SurfelFusionConfig()

    def integrate(
        self,
        frame: PointCloud,
        frame_to_map: RigidTransform,
        surfel_map: SurfelMap,
        frame_index: int | None = None,
    ) -> FusionSummary:
        """Fuse ``frame`` (in sensor coordinates) into ``surfel_map`` in place."""
        if frame.is_empty:
            logger.debug("Empty frame, map left untouched")
            return FusionSummary()
        if not frame.has_normals:
            raise ContractViolationError("Surfel fusion needs per-sample normals")

        cfg = self.config
        if frame_index is None:
            frame_index = surfel_map.frame_count

        valid = np.flatnonzero(frame.finite_mask())
        summary = FusionSummary(num_skipped=len(frame) - len(valid))
        if len(valid) == 0:
            logger.warning(f"Frame {frame_index}: no usable samples")
            self._finish_pass(surfel_map)
            return summary

        radii = self.sample_radii(frame, valid)
        points = frame_to_map.apply(frame.points[valid])
        normals = frame_to_map.apply_normals(frame.normals[valid])
        normals /= np.linalg.norm(normals, axis=1, keepdims=True)
        colors = None if frame.colors is None else frame.colors[valid].astype(np.float64)
        increments = self._increments(frame, valid)

        candidates = None
        if not surfel_map.index.is_empty:
            candidates = surfel_map.index.within_radius_batch(
                points,
                cfg.search_radius_factor * radii,
                workers=cfg.num_workers,
                chunk_size=cfg.chunk_size,
            )

        max_angle = np.radians(cfg.max_normal_angle_deg)
        for i in range(len(valid)):
            slot = None
            if candidates is not None:
                slot = self._best_candidate(
                    surfel_map, candidates[i][0], points[i], normals[i],
                    cfg.search_radius_factor * radii[i], max_angle,
                )
            color = None if colors is None else colors[i]
            if slot is None:
                surfel_map.add(
                    points[i], normals[i], radii[i], color,
                    confidence=increments[i], frame_index=frame_index,
                )
                summary.num_added += 1
            else:
                self._merge(surfel_map, slot, points[i], normals[i], radii[i], color,
                            increments[i], frame_index)
                summary.num_updated += 1

        self._finish_pass(surfel_map)
        logger.info(
            f"Frame {frame_index}: {summary.num_added} added, {summary.num_updated} updated, "
            f"{summary.num_skipped} skipped ({len(surfel_map)} surfels)"
        )
        return summary

    # -- radius ---------------------------------------------------------------

    def sample_radii(self, frame: PointCloud, valid: np.ndarray) -> np.ndarray:
        """Per-sample surfel radius for the ``valid`` samples, in sensor units."""
        cfg = self.config
        points = frame.points[valid]
        if cfg.focal_length is not None:
            base = points[:, 2] / (_SQRT2 * cfg.focal_length)
            sensor_normals = frame.normals[valid]
            n_z = np.abs(sensor_normals[:, 2]) / np.linalg.norm(sensor_normals, axis=1)
            with np.errstate(divide="ignore", invalid="ignore"):
                radii = np.minimum(base / n_z, 2.0 * base)
        elif len(points) > 1:
            tree = KdTree(points)
            _, sq_dists = tree.k_nearest_batch(
                points, 2, workers=cfg.num_workers, chunk_size=cfg.chunk_size
            )
            radii = cfg.spacing_radius_factor * np.sqrt(sq_dists[:, 1])
        else:
            radii = np.full(len(points), cfg.default_radius)

        bad = ~np.isfinite(radii) | (radii <= 0.0)
        radii[bad] = cfg.default_radius
        return radii

    def _increments(self, frame: PointCloud, valid: np.ndarray) -> np.ndarray:
        increments = np.full(len(valid), self.config.confidence_increment)
        if self.config.use_sample_weights and frame.weights is not None:
            weights = frame.weights[valid]
            usable = np.isfinite(weights) & (weights > 0.0)
            increments[usable] = weights[usable]
        return increments

    # -- association ----------------------------------------------------------

    def _best_candidate(
        self,
        surfel_map: SurfelMap,
        slots: np.ndarray,
        point: np.ndarray,
        normal: np.ndarray,
        search_radius: float,
        max_angle: float,
    ) -> int | None:
        """Lowest-score compatible slot, ties to the lower slot; None if none qualifies."""
        if len(slots) == 0:
            return None
        dists = np.linalg.norm(surfel_map.positions[slots] - point, axis=1)
        cand_normals = surfel_map.normals[slots]
        cos = cand_normals @ normal / np.linalg.norm(cand_normals, axis=1)
        angles = np.arccos(np.clip(cos, -1.0, 1.0))

        ok = (dists <= search_radius) & (angles <= max_angle)
        if not ok.any():
            return None
        slots, dists, angles = slots[ok], dists[ok], angles[ok]
        scores = (dists / search_radius) ** 2 + (angles / max_angle) ** 2
        best = np.lexsort((slots, scores))[0]
        if scores[best] > self.config.max_compatibility_score:
            return None
        return int(slots[best])

    def _merge(
        self,
        surfel_map: SurfelMap,
        slot: int,
        point: np.ndarray,
        normal: np.ndarray,
        radius: float,
        color: np.ndarray | None,
        increment: float,
        frame_index: int,
    ) -> None:
        """Confidence-weighted running average of the sample into ``slot``."""
        old = surfel_map.get(slot)
        total = old.confidence + increment
        a, b = old.confidence / total, increment / total

        merged_normal = a * old.normal + b * normal
        norm = np.linalg.norm(merged_normal)
        merged_normal = normal if norm < 1e-12 else merged_normal / norm

        surfel_map.update(
            slot,
            position=a * old.position + b * point,
            normal=merged_normal,
            radius=a * old.radius + b * radius,
            color=None if color is None else a * old.color + b * color,
            confidence=total,
            last_seen=frame_index,
        )

    @staticmethod
    def _finish_pass(surfel_map: SurfelMap) -> None:
        surfel_map.frame_count += 1
        surfel_map.rebuild_index()
