import numpy as np
import pytest

from llol.transforms import SE3, SO3

RNG = np.random.default_rng(1)


def test_exp_log_round_trip():
    for _ in range(10):
        w = RNG.normal(size=3)
        w *= 2.5 / np.linalg.norm(w) * RNG.random()
        np.testing.assert_allclose(SO3.exp(w).log(), w, atol=1e-9)


def test_exp_is_rotation():
    r = SO3.exp(RNG.normal(size=3)).matrix
    np.testing.assert_allclose(r.T @ r, np.eye(3), atol=1e-12)
    assert np.linalg.det(r) == pytest.approx(1.0)


def test_inverse():
    r = SO3.exp(RNG.normal(size=3))
    np.testing.assert_allclose((r * r.inverse()).matrix, np.eye(3), atol=1e-12)


def test_from_two_vectors():
    a, b = RNG.normal(size=3), RNG.normal(size=3)
    r = SO3.from_two_vectors(a, b)
    np.testing.assert_allclose(r * (a / np.linalg.norm(a)), b / np.linalg.norm(b), atol=1e-12)


def test_from_opposite_vectors():
    r = SO3.from_two_vectors([0, 0, 1], [0, 0, -1])
    np.testing.assert_allclose(r * np.array([0, 0, 1.0]), [0, 0, -1.0], atol=1e-12)


def test_quaternion_identity():
    np.testing.assert_allclose(SO3().quaternion(), [0, 0, 0, 1])


def test_interpolate_endpoints():
    a = SO3.exp(RNG.normal(size=3) * 0.3)
    b = SO3.exp(RNG.normal(size=3) * 0.3)
    np.testing.assert_allclose(a.interpolate(b, 0.0).matrix, a.matrix, atol=1e-9)
    np.testing.assert_allclose(a.interpolate(b, 1.0).matrix, b.matrix, atol=1e-9)


def test_se3_inverse_and_point():
    t = SE3(SO3.exp(RNG.normal(size=3)), RNG.normal(size=3))
    p = RNG.normal(size=3)
    np.testing.assert_allclose(t.inverse() * (t * p), p, atol=1e-12)
    ident = t * t.inverse()
    np.testing.assert_allclose(ident.matrix3x4(), np.hstack([np.eye(3), np.zeros((3, 1))]), atol=1e-12)