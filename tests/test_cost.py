import numpy as np
import pytest

from llol.cost import GicpCost, GicpCostRigid
from llol.gicp import GicpSolver
from llol.grid import SweepGrid
from llol.imu import ImuData, ImuNoise, ImuQueue
from llol.pano import SCALE, DepthPano
from llol.scan import make_test_scan
from llol.traj import Trajectory
from llol.transforms import SO3


@pytest.fixture(scope="module")
def grid():
    scan = make_test_scan((256, 16))
    g = SweepGrid(scan.size())
    g.add(scan)
    pano = DepthPano((256, 64))
    pano.dbuf[...] = int(SCALE)
    GicpSolver().match(g, pano)
    return g


def _imuq():
    imuq = ImuQueue()
    for i in range(5):
        imuq.add(ImuData(time=float(i)))
    imuq.noise = ImuNoise(100.0, 1e-3, 1e-4, 1e-4, 1e-5)
    return imuq


def _traj(imuq):
    traj = Trajectory(4)
    traj.predict_new(imuq, 0.5, 1.0, len(traj) - 1)
    return traj


def test_base_is_abstract():
    with pytest.raises(TypeError):
        GicpCost(6, 0.0)


def test_update_matches(grid):
    cost = GicpCostRigid()
    cost.update_matches(grid)
    assert len(cost.matches) == sum(m.ok() for m in grid.matches)
    assert len(cost.matches) > 0
    assert len(cost.pts_p_hat) == len(cost.matches)
    assert cost.num_parameters() == 6
    assert cost.num_residuals() == 3 * len(cost.matches)


def test_compute_shapes_and_no_jacobian(grid):
    cost = GicpCostRigid()
    cost.update_matches(grid)
    r, jac = cost.compute(np.zeros(6))
    r2, none = cost.compute(np.zeros(6), want_jacobian=False)
    assert none is None
    assert r.shape == (cost.num_residuals(),)
    assert jac.shape == (cost.num_residuals(), 6)
    np.testing.assert_array_equal(r, r2)


def test_translation_is_linear(grid):
    cost = GicpCostRigid()
    cost.update_matches(grid)
    r0, jac = cost.compute(np.zeros(6))
    t = np.array([0.01, -0.02, 0.03])
    r1, _ = cost.compute(np.concatenate([np.zeros(3), t]), want_jacobian=False)
    np.testing.assert_allclose(r1, r0 + jac[:, 3:] @ t, rtol=1e-9, atol=1e-9)


def test_rotation_jacobian_matches_finite_difference(grid):
    cost = GicpCostRigid()
    cost.update_matches(grid)
    _, jac = cost.compute(np.zeros(6))
    eps = 1e-6
    scale = max(1.0, float(np.abs(jac).max()))
    for k in range(3):
        dx = np.zeros(6)
        dx[k] = eps
        rp, _ = cost.compute(dx, want_jacobian=False)
        rm, _ = cost.compute(-dx, want_jacobian=False)
        num = (rp - rm) / (2 * eps)
        np.testing.assert_allclose(num, jac[:, k], rtol=1e-4, atol=1e-5 * scale)


def test_reset_error():
    cost = GicpCostRigid()
    cost.error[:] = 1.0
    cost.reset_error()
    np.testing.assert_array_equal(cost.error, np.zeros(6))


def test_update_preint_adds_imu_residuals(grid):
    imuq = _imuq()
    traj = _traj(imuq)
    cost = GicpCostRigid(imu_weight=1.0)
    cost.update_matches(grid)
    cost.update_preint(traj, imuq)
    assert cost.preint.n == 4
    assert cost.preint.duration == traj.duration()
    n = len(cost.matches)
    assert cost.num_residuals() == 3 * n + 9

    r, jac = cost.compute(np.zeros(6))
    off = 3 * n
    assert r.shape == (3 * n + 9,)
    assert jac.shape == (3 * n + 9, 6)
    assert np.all(np.isfinite(r))
    # the beta residual and its jacobian rows stay zero before weighting
    assert np.all(np.isfinite(jac[off:off + 9]))


def test_zero_imu_weight_zeroes_imu_terms(grid):
    imuq = _imuq()
    traj = _traj(imuq)
    cost = GicpCostRigid(imu_weight=0.0)
    cost.update_matches(grid)
    cost.update_preint(traj, imuq)
    r, jac = cost.compute(np.array([0.01, 0.0, 0.0, 0.1, 0.0, 0.0]))
    off = 3 * len(cost.matches)
    np.testing.assert_array_equal(r[off:], np.zeros(9))
    np.testing.assert_array_equal(jac[off:], np.zeros((9, 6)))


def test_imu_only_cost_without_matches():
    imuq = _imuq()
    traj = _traj(imuq)
    cost = GicpCostRigid(imu_weight=1.0)
    cost.update_preint(traj, imuq)
    r, jac = cost.compute(np.zeros(6))
    assert r.shape == (9,)
    # alpha, gamma residuals vanish for a static trajectory with zero imu data
    np.testing.assert_allclose(r, np.zeros(9), atol=1e-9)


def test_update_traj_zero_error_keeps_state():
    imuq = _imuq()
    traj = _traj(imuq)
    before = traj.front()
    rot, pos, vel = before.rot.matrix.copy(), before.pos.copy(), before.vel.copy()
    cost = GicpCostRigid()
    cost.update_traj(traj)
    np.testing.assert_allclose(traj.front().rot.matrix, rot)
    np.testing.assert_allclose(traj.front().pos, pos)
    np.testing.assert_allclose(traj.front().vel, vel)


def test_update_traj_translation_only():
    imuq = _imuq()
    traj = _traj(imuq)
    p = np.array([0.3, -0.6, 0.9])
    cost = GicpCostRigid()
    cost.error[3:6] = p
    last_pos = traj.back().pos.copy()
    cost.update_traj(traj)
    np.testing.assert_allclose(traj.front().pos, p)
    np.testing.assert_allclose(traj.front().vel, p / traj.duration() * 0.5)
    np.testing.assert_allclose(traj.back().pos, last_pos)


def test_update_traj_rotation_only():
    imuq = _imuq()
    traj = _traj(imuq)
    w = np.array([0.0, 0.0, 0.2])
    cost = GicpCostRigid()
    cost.error[0:3] = w
    cost.update_traj(traj)
    np.testing.assert_allclose(traj.front().rot.log(), w, atol=1e-12)
    np.testing.assert_allclose(traj.back().rot.matrix, SO3().matrix)