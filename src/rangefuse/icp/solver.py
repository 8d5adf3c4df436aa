"""Multiscale ICP: coarse-to-fine rigid alignment of two point-cloud pyramids.

Algorithm per level:
1. Move the source level with the current estimate.
2. Find nearest target neighbors (k-d tree built once per level, parallel queries).
3. Drop pairs failing the distance / normal / intensity gates.
4. Accumulate the 6x6 normal equations in parallel chunks and sum them in order.
5. Solve with Gauss-Newton or Levenberg-Marquardt, apply ``exp(delta) @ T``,
   re-orthonormalize.
6. Repeat until the relative residual decrease stalls or the iteration cap hits;
   the result seeds the next finer level.

Non-convergence is reported, never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from rangefuse.core.errors import (
    ContractViolationError,
    DegenerateInputError,
    PyramidMismatchError,
)
from rangefuse.core.parallel import map_chunks
from rangefuse.geometry.pointcloud import PointCloud, PointCloudPyramid
from rangefuse.geometry.transform import RigidTransform
from rangefuse.spatial.kdtree import KdTree
from ._correspondence import Correspondences, find_correspondences
from ._normal_equations import (
    NormalEquations,
    huber_weights,
    point_to_plane_rows,
    point_to_point_rows,
)
from .config import MultiscaleIcpConfig

logger = logging.getLogger(__name__)


class LevelStatus(str, Enum):
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    STARVED = "starved"
    SINGULAR = "singular"


@dataclass
class LevelReport:
    """How one pyramid level terminated."""

    level: int
    status: LevelStatus
    iterations: int = 0
    num_correspondences: int = 0
    mean_squared_residual: float = float("inf")

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "status": self.status.value,
            "iterations": self.iterations,
            "num_correspondences": self.num_correspondences,
            "mean_squared_residual": self.mean_squared_residual,
        }


@dataclass
class AlignmentResult:
    """Best transform found (source -> target frame) and the convergence flag."""

    transform: RigidTransform
    converged: bool
    levels: list[LevelReport] = field(default_factory=list)


class MultiscaleIcp:
    """Coarse-to-fine ICP over point-cloud pyramids."""

    def __init__(self, config: MultiscaleIcpConfig | None = None):
        self.config = config or MultiscaleIcpConfig()

    def align(
        self,
        source: PointCloudPyramid,
        target: PointCloudPyramid,
        initial_transform: RigidTransform | None = None,
    ) -> AlignmentResult:
        """Estimate the transform mapping ``source`` into ``target``'s frame."""
        if len(source) != len(target):
            raise PyramidMismatchError(
                f"Source has {len(source)} levels, target has {len(target)}"
            )
        if source[0].is_empty or target[0].is_empty:
            raise DegenerateInputError("Cannot align an empty point cloud")
        if self.config.residual == "point_to_plane":
            for level in target:
                if not level.is_empty and not level.has_normals:
                    raise ContractViolationError("Point-to-plane ICP needs target normals")

        transform = initial_transform or RigidTransform.identity()
        reports = []
        for level, source_level in source.coarse_to_fine():
            transform, report = self.align_level(source_level, target[level], transform, level)
            reports.append(report)

        finest = reports[-1]
        converged = finest.status is LevelStatus.CONVERGED
        logger.info(
            f"ICP {'converged' if converged else 'did not converge'}: {transform!r} "
            f"(finest level: {finest.status.value}, mse={finest.mean_squared_residual:.3e})"
        )
        return AlignmentResult(transform=transform, converged=converged, levels=reports)

    # -- single level ---------------------------------------------------------

    def align_level(
        self,
        source: PointCloud,
        target: PointCloud,
        transform: RigidTransform,
        level: int = 0,
    ) -> tuple[RigidTransform, LevelReport]:
        """Refine ``transform`` on one level; returns the best estimate found."""
        cfg = self.config.level(level)
        if source.is_empty or target.is_empty:
            logger.debug(f"Level {level}: empty input, skipped")
            return transform, LevelReport(level=level, status=LevelStatus.STARVED)

        tree = KdTree(target.points)
        source_intensity = source.intensity_values()
        target_intensity = target.intensity_values()

        def linearize(t: RigidTransform) -> tuple[NormalEquations | None, int]:
            moved = t.apply(source.points)
            moved_normals = None if source.normals is None else t.apply_normals(source.normals)
            corr = find_correspondences(
                moved,
                tree,
                cfg,
                source_normals=moved_normals,
                target_normals=target.normals,
                source_intensity=source_intensity,
                target_intensity=target_intensity,
                workers=self.config.num_workers,
                chunk_size=self.config.chunk_size,
            )
            if len(corr) < self.config.min_correspondences:
                return None, len(corr)
            return self._build_system(moved, target, corr), len(corr)

        system, num_corr = linearize(transform)
        if system is None:
            logger.info(f"Level {level}: {num_corr} correspondences, level skipped")
            return transform, LevelReport(
                level=level, status=LevelStatus.STARVED, num_correspondences=num_corr
            )

        error = system.mean_squared_residual
        best = (transform, error, num_corr)
        status = LevelStatus.MAX_ITERATIONS
        damping = self.config.initial_damping if self.config.levenberg_marquardt else 0.0
        iterations = 0

        if error <= self.config.absolute_tolerance:
            status = LevelStatus.CONVERGED

        while status is LevelStatus.MAX_ITERATIONS and iterations < cfg.max_iterations:
            delta = system.solve(self.config.regularization, damping)
            if delta is None:
                status = LevelStatus.SINGULAR
                break

            candidate = (RigidTransform.exp(delta) @ transform).orthonormalized()
            iterations += 1
            cand_system, cand_corr = linearize(candidate)
            if cand_system is None:
                status = LevelStatus.STARVED
                break

            cand_error = cand_system.mean_squared_residual
            logger.debug(
                f"Level {level} iter {iterations}: mse {error:.3e} -> {cand_error:.3e} "
                f"({cand_corr} pairs, damping {damping:.1e})"
            )

            if self.config.levenberg_marquardt and cand_error > error:
                damping = max(damping * 10.0, 1e-6)
                if damping > self.config.max_damping:
                    status = LevelStatus.SINGULAR
                continue

            decrease = (error - cand_error) / error
            transform, system, error = candidate, cand_system, cand_error
            if error < best[1]:
                best = (transform, error, cand_corr)
            if self.config.levenberg_marquardt:
                damping *= 0.1

            if error <= self.config.absolute_tolerance or 0.0 <= decrease < cfg.convergence_threshold:
                status = LevelStatus.CONVERGED

        best_transform, best_error, best_corr = best
        logger.info(
            f"Level {level}: {status.value} after {iterations} iterations, "
            f"{best_corr} pairs, mse={best_error:.3e}"
        )
        return best_transform, LevelReport(
            level=level,
            status=status,
            iterations=iterations,
            num_correspondences=best_corr,
            mean_squared_residual=best_error,
        )

    def _build_system(
        self,
        moved_points: np.ndarray,
        target: PointCloud,
        corr: Correspondences,
    ) -> NormalEquations:
        """Sum per-chunk normal equations; chunk order fixes the summation order."""
        src = moved_points[corr.source_index]
        tgt = target.points[corr.target_index]
        normals = None if target.normals is None else target.normals[corr.target_index]

        def partial(start: int, stop: int) -> NormalEquations:
            if self.config.residual == "point_to_plane":
                r, j = point_to_plane_rows(src[start:stop], tgt[start:stop], normals[start:stop])
            else:
                r, j = point_to_point_rows(src[start:stop], tgt[start:stop])
            weights = None
            if self.config.huber_delta is not None:
                weights = huber_weights(r, self.config.huber_delta)
            eq = NormalEquations()
            eq.add_rows(r, j, weights)
            return eq

        parts = map_chunks(
            partial, len(corr), chunk_size=self.config.chunk_size, workers=self.config.num_workers
        )
        total = NormalEquations()
        for part in parts:
            total = total + part
        return total


def align_pyramids(
    source: PointCloudPyramid,
    target: PointCloudPyramid,
    initial_transform: RigidTransform | None = None,
    config: MultiscaleIcpConfig | None = None,
) -> AlignmentResult:
    """Convenience wrapper around ``MultiscaleIcp(config).align``."""
    return MultiscaleIcp(config).align(source, target, initial_transform)
