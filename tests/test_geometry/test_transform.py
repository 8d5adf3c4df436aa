"""Tests for rangefuse.geometry.transform."""

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from rangefuse.core.errors import ContractViolationError
from rangefuse.geometry.transform import (
    RigidTransform,
    qvec2rotmat,
    rotmat2qvec,
    skew,
    transform_error,
)


class TestQuaternion:
    def test_identity_quaternion(self):
        R = qvec2rotmat([1, 0, 0, 0])
        np.testing.assert_allclose(R, np.eye(3), atol=1e-10)

    def test_90deg_z_rotation(self):
        angle = np.pi / 2
        q = [np.cos(angle / 2), 0, 0, np.sin(angle / 2)]
        R = qvec2rotmat(q)
        np.testing.assert_allclose(R @ [1, 0, 0], [0, 1, 0], atol=1e-10)

    def test_roundtrip_matches_scipy(self):
        rot = Rotation.from_rotvec([0.3, -0.2, 0.5])
        x, y, z, w = rot.as_quat()
        qvec = rotmat2qvec(rot.as_matrix())
        np.testing.assert_allclose(qvec, np.sign(w) * np.array([w, x, y, z]), atol=1e-10)
        np.testing.assert_allclose(qvec2rotmat(qvec), rot.as_matrix(), atol=1e-10)

    def test_unnormalized_quaternion_is_normalized(self):
        R = qvec2rotmat([2.0, 0, 0, 0])
        np.testing.assert_allclose(R, np.eye(3), atol=1e-10)


class TestRigidTransform:
    def test_identity(self):
        t = RigidTransform.identity()
        pts = np.random.RandomState(0).randn(10, 3)
        np.testing.assert_allclose(t.apply(pts), pts)
        assert t.angle() == pytest.approx(0.0)

    def test_bad_shapes_rejected(self):
        with pytest.raises(ContractViolationError):
            RigidTransform(np.eye(2), np.zeros(3))
        with pytest.raises(ContractViolationError):
            RigidTransform(np.eye(3), np.zeros(4))

    def test_arrays_are_read_only(self):
        t = RigidTransform.identity()
        with pytest.raises(ValueError):
            t.rotation[0, 0] = 2.0

    def test_composition_order(self, transform_from):
        a = transform_from([0, 0, 90], [1, 0, 0])
        b = transform_from([0, 0, 0], [0, 2, 0])
        p = np.array([[0.0, 0.0, 0.0]])
        # b first, then a
        np.testing.assert_allclose((a @ b).apply(p), a.apply(b.apply(p)), atol=1e-12)
        np.testing.assert_allclose((a @ b).apply(p), [[-1.0, 0.0, 0.0]], atol=1e-12)

    def test_inverse(self, transform_from):
        t = transform_from([10, -20, 30], [0.5, -1.0, 2.0])
        np.testing.assert_allclose((t @ t.inverse()).as_matrix(), np.eye(4), atol=1e-12)

    def test_matrix_roundtrip(self, transform_from):
        t = transform_from([5, 5, 5], [1, 2, 3])
        m = t.as_matrix()
        np.testing.assert_allclose(RigidTransform.from_matrix(m).as_matrix(), m)
        np.testing.assert_allclose(RigidTransform.from_matrix(m.flatten().tolist()).as_matrix(), m)

    def test_quaternion_constructor(self):
        rot = Rotation.from_rotvec([0.0, 0.4, 0.0])
        x, y, z, w = rot.as_quat()
        t = RigidTransform.from_quaternion([w, x, y, z], [1, 2, 3])
        np.testing.assert_allclose(t.rotation, rot.as_matrix(), atol=1e-12)
        np.testing.assert_allclose(t.as_quaternion(), [w, x, y, z], atol=1e-12)

    def test_normals_ignore_translation(self, transform_from):
        t = transform_from([0, 0, 90], [5, 5, 5])
        np.testing.assert_allclose(t.apply_normals(np.array([[1.0, 0, 0]])), [[0, 1, 0]], atol=1e-12)

    def test_angle(self, transform_from):
        t = transform_from([0, 30, 0], [0, 0, 0])
        assert t.angle() == pytest.approx(np.radians(30))

    def test_is_finite(self):
        assert RigidTransform.identity().is_finite()
        assert not RigidTransform(np.eye(3), [np.nan, 0, 0]).is_finite()


class TestExp:
    @pytest.mark.parametrize("omega", [[0.3, -0.2, 0.1], [0.0, 0.0, 2.5], [1e-6, 2e-6, -1e-6]])
    def test_rotation_matches_scipy(self, omega):
        t = RigidTransform.exp(np.concatenate([[0.0, 0.0, 0.0], omega]))
        np.testing.assert_allclose(t.rotation, Rotation.from_rotvec(omega).as_matrix(), atol=1e-9)

    def test_zero_twist_is_identity(self):
        t = RigidTransform.exp(np.zeros(6))
        np.testing.assert_allclose(t.as_matrix(), np.eye(4), atol=1e-15)

    def test_pure_translation(self):
        t = RigidTransform.exp([0.1, -0.2, 0.3, 0, 0, 0])
        np.testing.assert_allclose(t.translation, [0.1, -0.2, 0.3])

    def test_left_jacobian(self):
        # Rotation by pi/2 about z with velocity along x follows a quarter circle.
        v = np.array([1.0, 0.0, 0.0])
        t = RigidTransform.exp(np.concatenate([v, [0, 0, np.pi / 2]]))
        expected = np.array([np.sin(np.pi / 2), 1 - np.cos(np.pi / 2), 0]) / (np.pi / 2)
        np.testing.assert_allclose(t.translation, expected, atol=1e-12)

    def test_result_is_orthonormal(self):
        t = RigidTransform.exp([0.2, 0.1, -0.3, 0.7, -0.4, 0.2])
        np.testing.assert_allclose(t.rotation @ t.rotation.T, np.eye(3), atol=1e-12)
        assert np.linalg.det(t.rotation) == pytest.approx(1.0)


class TestOrthonormalized:
    def test_projects_perturbed_rotation(self):
        rot = Rotation.from_rotvec([0.1, 0.2, 0.3]).as_matrix()
        noisy = rot + 1e-3 * np.random.RandomState(1).randn(3, 3)
        t = RigidTransform(noisy, np.zeros(3)).orthonormalized()
        np.testing.assert_allclose(t.rotation @ t.rotation.T, np.eye(3), atol=1e-12)
        assert np.linalg.det(t.rotation) == pytest.approx(1.0)
        np.testing.assert_allclose(t.rotation, rot, atol=1e-2)

    def test_fixes_reflection(self):
        t = RigidTransform(np.diag([1.0, 1.0, -1.0]), np.zeros(3)).orthonormalized()
        assert np.linalg.det(t.rotation) == pytest.approx(1.0)


def test_skew_matches_cross():
    a, b = np.array([1.0, 2.0, 3.0]), np.array([-0.5, 0.3, 2.0])
    np.testing.assert_allclose(skew(a) @ b, np.cross(a, b))


def test_transform_error(transform_from):
    a = transform_from([0, 0, 10], [1, 0, 0])
    b = transform_from([0, 0, 25], [1, 0.5, 0])
    angle, translation = transform_error(a, b)
    assert angle == pytest.approx(np.radians(15))
    assert translation == pytest.approx(0.5)
    assert transform_error(a, a) == pytest.approx((0.0, 0.0), abs=1e-7)
