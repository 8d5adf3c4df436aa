"""Rigid-body transforms: SE(3) composition, exponential map, quaternions."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from rangefuse.core.errors import ContractViolationError

logger = logging.getLogger(__name__)

_SMALL_ANGLE = 1e-8


def qvec2rotmat(qvec: list[float] | np.ndarray) -> np.ndarray:
    """Convert quaternion (w, x, y, z) to 3x3 rotation matrix."""
    w, x, y, z = np.asarray(qvec, dtype=np.float64) / np.linalg.norm(qvec)
    return np.array([
        [1 - 2*y*y - 2*z*z, 2*x*y - 2*w*z, 2*x*z + 2*w*y],
        [2*x*y + 2*w*z, 1 - 2*x*x - 2*z*z, 2*y*z - 2*w*x],
        [2*x*z - 2*w*y, 2*y*z + 2*w*x, 1 - 2*x*x - 2*y*y],
    ])


def rotmat2qvec(R: np.ndarray) -> np.ndarray:
    """Convert 3x3 rotation matrix to quaternion (w, x, y, z) with w >= 0."""
    trace = R[0, 0] + R[1, 1] + R[2, 2]
    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        w = 0.25 / s
        x = (R[2, 1] - R[1, 2]) * s
        y = (R[0, 2] - R[2, 0]) * s
        z = (R[1, 0] - R[0, 1]) * s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        w = (R[2, 1] - R[1, 2]) / s
        x = 0.25 * s
        y = (R[0, 1] + R[1, 0]) / s
        z = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        w = (R[0, 2] - R[2, 0]) / s
        x = (R[0, 1] + R[1, 0]) / s
        y = 0.25 * s
        z = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        w = (R[1, 0] - R[0, 1]) / s
        x = (R[0, 2] + R[2, 0]) / s
        y = (R[1, 2] + R[2, 1]) / s
        z = 0.25 * s
    qvec = np.array([w, x, y, z])
    return -qvec if w < 0 else qvec


def skew(v: np.ndarray) -> np.ndarray:
    """Cross-product matrix ``[v]x`` so that ``skew(a) @ b == cross(a, b)``."""
    return np.array([
        [0.0, -v[2], v[1]],
        [v[2], 0.0, -v[0]],
        [-v[1], v[0], 0.0],
    ])


@dataclass(frozen=True, eq=False)
class RigidTransform:
    """Rotation (orthonormal, det +1) followed by a translation.

    ``a @ b`` is the transform that applies ``b`` first, then ``a``.
    """

    rotation: np.ndarray  # (3, 3) float64
    translation: np.ndarray  # (3,) float64

    def __post_init__(self) -> None:
        rotation = np.array(self.rotation, dtype=np.float64)
        translation = np.array(self.translation, dtype=np.float64).reshape(-1)
        if rotation.shape != (3, 3) or translation.shape != (3,):
            raise ContractViolationError(
                f"Expected (3, 3) rotation and (3,) translation, "
                f"got {rotation.shape} and {translation.shape}"
            )
        rotation.flags.writeable = False
        translation.flags.writeable = False
        object.__setattr__(self, "rotation", rotation)
        object.__setattr__(self, "translation", translation)

    # -- constructors -------------------------------------------------------

    @classmethod
    def identity(cls) -> RigidTransform:
        return cls(np.eye(3), np.zeros(3))

    @classmethod
    def from_matrix(cls, matrix: np.ndarray | list[float]) -> RigidTransform:
        """Build from a 4x4 homogeneous matrix (or its 16 row-major values)."""
        m = np.asarray(matrix, dtype=np.float64).reshape(4, 4)
        return cls(m[:3, :3], m[:3, 3])

    @classmethod
    def from_quaternion(cls, qvec: list[float] | np.ndarray, tvec: list[float] | np.ndarray) -> RigidTransform:
        """Build from a (w, x, y, z) quaternion and a translation."""
        return cls(qvec2rotmat(qvec), np.asarray(tvec, dtype=np.float64))

    @classmethod
    def exp(cls, twist: np.ndarray) -> RigidTransform:
        """SE(3) exponential of ``[vx, vy, vz, wx, wy, wz]``.

        The rotation part uses Rodrigues' formula; the translation goes through
        the SO(3) left Jacobian. Both switch to their Taylor series near zero.
        """
        twist = np.asarray(twist, dtype=np.float64).reshape(6)
        v, omega = twist[:3], twist[3:]
        theta_sq = float(omega @ omega)
        big_omega = skew(omega)
        big_omega_sq = big_omega @ big_omega

        if theta_sq < _SMALL_ANGLE:
            rotation = np.eye(3) + big_omega + 0.5 * big_omega_sq
            left_jacobian = np.eye(3) + 0.5 * big_omega + big_omega_sq / 6.0
        else:
            theta = np.sqrt(theta_sq)
            a = np.sin(theta) / theta
            b = (1.0 - np.cos(theta)) / theta_sq
            c = (theta - np.sin(theta)) / (theta_sq * theta)
            rotation = np.eye(3) + a * big_omega + b * big_omega_sq
            left_jacobian = np.eye(3) + b * big_omega + c * big_omega_sq

        return cls(rotation, left_jacobian @ v).orthonormalized()

    # -- algebra ------------------------------------------------------------

    def __matmul__(self, other: RigidTransform) -> RigidTransform:
        if not isinstance(other, RigidTransform):
            return NotImplemented
        return RigidTransform(
            self.rotation @ other.rotation,
            self.rotation @ other.translation + self.translation,
        )

    def inverse(self) -> RigidTransform:
        rt = self.rotation.T
        return RigidTransform(rt, -rt @ self.translation)

    def orthonormalized(self) -> RigidTransform:
        """Project the rotation back onto SO(3) (nearest rotation in Frobenius norm)."""
        u, _, vt = np.linalg.svd(self.rotation)
        rotation = u @ vt
        if np.linalg.det(rotation) < 0:
            u[:, -1] *= -1
            rotation = u @ vt
        return RigidTransform(rotation, self.translation)

    # -- application --------------------------------------------------------

    def apply(self, points: np.ndarray) -> np.ndarray:
        """Transform (N, 3) points (or a single (3,) point)."""
        points = np.asarray(points, dtype=np.float64)
        return points @ self.rotation.T + self.translation

    def apply_normals(self, normals: np.ndarray) -> np.ndarray:
        """Rotate (N, 3) normals; translation does not apply to directions."""
        return np.asarray(normals, dtype=np.float64) @ self.rotation.T

    # -- accessors ----------------------------------------------------------

    def as_matrix(self) -> np.ndarray:
        m = np.eye(4)
        m[:3, :3] = self.rotation
        m[:3, 3] = self.translation
        return m

    def as_quaternion(self) -> np.ndarray:
        """Rotation as a (w, x, y, z) quaternion."""
        return rotmat2qvec(self.rotation)

    def angle(self) -> float:
        """Rotation angle in radians."""
        cos_angle = (np.trace(self.rotation) - 1.0) * 0.5
        return float(np.arccos(np.clip(cos_angle, -1.0, 1.0)))

    def is_finite(self) -> bool:
        return bool(np.all(np.isfinite(self.rotation)) and np.all(np.isfinite(self.translation)))

    def __repr__(self) -> str:
        return (
            f"RigidTransform(angle={np.degrees(self.angle()):.4f}deg, "
            f"translation={np.round(self.translation, 6).tolist()})"
        )


def transform_error(estimate: RigidTransform, reference: RigidTransform) -> tuple[float, float]:
    """Rotation angle (radians) and translation norm of ``estimate^-1 @ reference``."""
    diff = estimate.inverse() @ reference
    return diff.angle(), float(np.linalg.norm(diff.translation))
