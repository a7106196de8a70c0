import numpy as np
import pytest

from llol.match import MeanCovar, PointMatch, hat3, matrix_sqrt_utu

RNG = np.random.default_rng(0)


def filled(points):
    mc = MeanCovar()
    for p in points:
        mc.add(p)
    return mc


def test_mean_covar_matches_numpy():
    pts = RNG.normal(size=(20, 3))
    mc = filled(pts)
    assert mc.n == 20
    np.testing.assert_allclose(mc.mean, pts.mean(axis=0))
    np.testing.assert_allclose(mc.covar(), np.cov(pts.T))


def test_mean_covar_reset():
    mc = filled(RNG.normal(size=(5, 3)))
    mc.reset()
    assert mc.n == 0
    assert not mc.ok()
    np.testing.assert_array_equal(mc.mean, np.zeros(3))


def test_hat3_is_cross_product():
    v, w = RNG.normal(size=3), RNG.normal(size=3)
    np.testing.assert_allclose(hat3(v) @ w, np.cross(v, w))
    np.testing.assert_allclose(hat3(v), -hat3(v).T)


def test_matrix_sqrt_utu():
    b = RNG.normal(size=(3, 3))
    a = b @ b.T + np.eye(3)
    u = matrix_sqrt_utu(a)
    np.testing.assert_allclose(u.T @ u, a, atol=1e-10)


def test_point_match_default_not_ok():
    m = PointMatch()
    assert m.px_g == (-100, -100)
    assert not m.ok()


def test_point_match_ok_and_reset():
    m = PointMatch()
    m.px_g = (1, 2)
    m.px_p = (3, 4)
    m.mc_g = filled(RNG.normal(size=(10, 3)))
    m.mc_p = filled(RNG.normal(size=(10, 3)))
    assert m.ok()
    m.reset()
    assert not m.grid_ok() and not m.pano_ok()
    assert m.scale == 0.0


def test_calc_sqrt_info():
    m = PointMatch()
    m.mc_p = filled(RNG.normal(size=(30, 3)))
    m.mc_g = filled(RNG.normal(size=(30, 3)))
    rot = np.eye(3)
    m.calc_sqrt_info(rot, 0.1)
    cov = m.mc_p.covar() + m.mc_g.covar() + 0.1 * np.eye(3)
    np.testing.assert_allclose(m.U.T @ m.U, np.linalg.inv(cov), atol=1e-9)


def test_calc_sqrt_info_pano_only():
    m = PointMatch()
    m.mc_p = filled(RNG.normal(size=(30, 3)))
    m.calc_sqrt_info()
    assert m.U.T @ m.U == pytest.approx(np.linalg.inv(m.mc_p.covar()))