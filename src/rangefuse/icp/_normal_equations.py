"""Gauss-Newton normal equations for 6-DoF rigid updates.

Residual rows share one form: ``r = dot(n, p - q)`` with Jacobian
``[n, p x n]`` for an update ``exp([v, w])`` applied on the left, linearized
around identity. Point-to-point uses three rows per pair, one per axis.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from scipy.linalg import LinAlgError, cho_factor, cho_solve

_AXES = np.eye(3)


def point_to_plane_rows(
    source_points: np.ndarray,
    target_points: np.ndarray,
    target_normals: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Residuals (M,) and Jacobians (M, 6) of the point-to-plane distance."""
    residuals = np.einsum("ij,ij->i", target_normals, source_points - target_points)
    jacobians = np.hstack([target_normals, np.cross(source_points, target_normals)])
    return residuals, jacobians


def point_to_point_rows(
    source_points: np.ndarray,
    target_points: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Residuals (3M,) and Jacobians (3M, 6) of the 3D displacement."""
    residuals = []
    jacobians = []
    for axis in _AXES:
        normals = np.broadcast_to(axis, source_points.shape)
        r, j = point_to_plane_rows(source_points, target_points, normals)
        residuals.append(r)
        jacobians.append(j)
    return np.concatenate(residuals), np.vstack(jacobians)


def huber_weights(residuals: np.ndarray, delta: float) -> np.ndarray:
    """IRLS weights of the Huber kernel: 1 inside ``delta``, ``delta/|r|`` outside."""
    abs_r = np.abs(residuals)
    weights = np.ones_like(abs_r)
    outside = abs_r > delta
    weights[outside] = delta / abs_r[outside]
    return weights


@dataclass
class NormalEquations:
    """Accumulated ``JtWJ``, ``JtWr`` and weighted squared residuals."""

    hessian: np.ndarray = field(default_factory=lambda: np.zeros((6, 6)))
    gradient: np.ndarray = field(default_factory=lambda: np.zeros(6))
    squared_residual_sum: float = 0.0
    count: int = 0

    def add_rows(
        self,
        residuals: np.ndarray,
        jacobians: np.ndarray,
        weights: np.ndarray | None = None,
    ) -> None:
        if len(residuals) == 0:
            return
        if weights is None:
            weights = np.ones(len(residuals))
        weighted = jacobians * weights[:, None]
        self.hessian += weighted.T @ jacobians
        self.gradient += weighted.T @ residuals
        self.squared_residual_sum += float(np.sum(weights * residuals * residuals))
        self.count += len(residuals)

    def __add__(self, other: NormalEquations) -> NormalEquations:
        return NormalEquations(
            hessian=self.hessian + other.hessian,
            gradient=self.gradient + other.gradient,
            squared_residual_sum=self.squared_residual_sum + other.squared_residual_sum,
            count=self.count + other.count,
        )

    @property
    def mean_squared_residual(self) -> float:
        if self.count == 0:
            return float("inf")
        return self.squared_residual_sum / self.count

    def solve(self, regularization: float = 0.0, damping: float = 0.0) -> np.ndarray | None:
        """Update minimizing the linearized cost, or None when unsolvable.

        ``damping`` scales ``diag(JtJ)`` (Levenberg-Marquardt); ``regularization``
        is added to every diagonal entry.
        """
        if self.count == 0:
            return None
        system = self.hessian + damping * np.diag(np.diag(self.hessian))
        system = system + regularization * np.eye(6)
        if not np.all(np.isfinite(system)) or not np.all(np.isfinite(self.gradient)):
            return None
        try:
            factor = cho_factor(system)
        except LinAlgError:
            return None
        update = -cho_solve(factor, self.gradient)
        if not np.all(np.isfinite(update)):
            return None
        return update
