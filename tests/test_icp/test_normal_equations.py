"""Tests for the ICP residual rows, normal equations and correspondence gates."""

import numpy as np
import pytest

from rangefuse.icp._correspondence import angle_between_normals, find_correspondences
from rangefuse.icp._normal_equations import (
    NormalEquations,
    huber_weights,
    point_to_plane_rows,
    point_to_point_rows,
)
from rangefuse.icp.config import IcpLevelConfig
from rangefuse.geometry.transform import RigidTransform
from rangefuse.spatial.kdtree import KdTree


class TestRows:
    def test_point_to_plane_residual(self):
        r, j = point_to_plane_rows(
            np.array([[0.0, 0.0, 0.5]]), np.array([[1.0, 2.0, 0.0]]), np.array([[0.0, 0.0, 1.0]])
        )
        assert r[0] == pytest.approx(0.5)
        np.testing.assert_allclose(j[0], [0, 0, 1, 0, 0, 0])

    def test_jacobian_matches_finite_difference(self):
        rng = np.random.RandomState(0)
        src = rng.randn(5, 3)
        tgt = rng.randn(5, 3)
        normals = rng.randn(5, 3)
        normals /= np.linalg.norm(normals, axis=1, keepdims=True)
        r0, j = point_to_plane_rows(src, tgt, normals)
        eps = 1e-7
        for k in range(6):
            twist = np.zeros(6)
            twist[k] = eps
            moved = RigidTransform.exp(twist).apply(src)
            r1, _ = point_to_plane_rows(moved, tgt, normals)
            np.testing.assert_allclose((r1 - r0) / eps, j[:, k], atol=1e-5)

    def test_point_to_point_rows(self):
        r, j = point_to_point_rows(np.array([[1.0, 2.0, 3.0]]), np.zeros((1, 3)))
        np.testing.assert_allclose(r, [1.0, 2.0, 3.0])
        assert j.shape == (3, 6)
        np.testing.assert_allclose(j[:, :3], np.eye(3))


def test_huber_weights():
    w = huber_weights(np.array([0.1, -0.5, 2.0]), delta=0.5)
    np.testing.assert_allclose(w, [1.0, 1.0, 0.25])


class TestNormalEquations:
    def test_solves_translation(self):
        # Plane-to-plane offsets along the three axes determine the translation
        eq = NormalEquations()
        rng = np.random.RandomState(1)
        src = rng.randn(50, 3)
        offset = np.array([0.1, -0.2, 0.05])
        r, j = point_to_point_rows(src + offset, src)
        eq.add_rows(r, j)
        delta = eq.solve()
        np.testing.assert_allclose(delta[:3], -offset, atol=1e-10)
        np.testing.assert_allclose(delta[3:], 0.0, atol=1e-10)

    def test_sum_equals_single_accumulation(self):
        rng = np.random.RandomState(2)
        r, j = rng.randn(40), rng.randn(40, 6)
        whole = NormalEquations()
        whole.add_rows(r, j)
        first, second = NormalEquations(), NormalEquations()
        first.add_rows(r[:15], j[:15])
        second.add_rows(r[15:], j[15:])
        total = first + second
        np.testing.assert_allclose(total.hessian, whole.hessian)
        np.testing.assert_allclose(total.gradient, whole.gradient)
        assert total.count == 40
        assert total.mean_squared_residual == pytest.approx(whole.mean_squared_residual)

    def test_empty_and_singular(self):
        eq = NormalEquations()
        assert eq.mean_squared_residual == float("inf")
        assert eq.solve() is None
        eq.add_rows(np.ones(3), np.zeros((3, 6)))
        assert eq.solve() is None

    def test_regularization_makes_rank_deficient_solvable(self):
        eq = NormalEquations()
        eq.add_rows(np.array([1.0]), np.array([[1.0, 0, 0, 0, 0, 0]]))
        assert eq.solve() is None
        delta = eq.solve(regularization=1e-9)
        assert delta is not None
        assert delta[0] == pytest.approx(-1.0, rel=1e-6)


class TestCorrespondences:
    def test_angle_between_normals(self):
        a = np.array([[0, 0, 1.0], [1.0, 0, 0]])
        b = np.array([[0, 0, 2.0], [0, 1.0, 0]])
        np.testing.assert_allclose(angle_between_normals(a, b), [0, np.pi / 2])

    def test_gates(self):
        target = np.array([[0.0, 0, 0], [1.0, 0, 0], [2.0, 0, 0], [3.0, 0, 0]])
        source = target + [0, 0, 0.05]
        source[3] = [np.nan, 0, 0]
        target_normals = np.tile([0, 0, 1.0], (4, 1))
        source_normals = target_normals.copy()
        source_normals[1] = [1.0, 0, 0]
        source_intensity = np.array([0.5, 0.5, 0.9, 0.5])
        target_intensity = np.full(4, 0.5)

        cfg = IcpLevelConfig(max_distance=0.1, max_normal_angle_deg=30, max_color_distance=0.2)
        corr = find_correspondences(
            source, KdTree(target), cfg,
            source_normals=source_normals, target_normals=target_normals,
            source_intensity=source_intensity, target_intensity=target_intensity,
        )
        # 1 fails the normal gate, 2 the intensity gate, 3 is not finite
        np.testing.assert_array_equal(corr.source_index, [0])
        np.testing.assert_array_equal(corr.target_index, [0])

    def test_distance_gate(self):
        target = np.zeros((1, 3))
        cfg = IcpLevelConfig(max_distance=0.1, max_normal_angle_deg=None)
        corr = find_correspondences(np.array([[0.5, 0, 0]]), KdTree(target), cfg)
        assert len(corr) == 0
