import numpy as np
import pytest

from llol.imu import (
    ImuBias,
    ImuData,
    ImuNoise,
    ImuPreintegration,
    ImuQueue,
    NavState,
    imu_index_after_time,
    integrate_euler,
    integrate_rot,
    integrate_state,
)
from llol.transforms import SO3


def test_imu_noise():
    noise = ImuNoise(10, 1, 2, 3, 4)
    assert noise.sigma2[ImuNoise.NA] == pytest.approx(10)
    assert noise.sigma2[ImuNoise.NW] == pytest.approx(40)
    assert noise.sigma2[ImuNoise.NBA] == pytest.approx(0.9)
    assert noise.sigma2[ImuNoise.NBW] == pytest.approx(1.6)


def test_imu_noise_bad_rate():
    with pytest.raises(ValueError):
        ImuNoise(0, 1, 1, 1, 1)


@pytest.mark.parametrize(
    "t,idx", [(0, 0), (0.5, 0), (1, 1), (1.5, 1), (2, 2), (15, 5)]
)
def test_find_next_imu(t, idx):
    buf = [ImuData(time=i + 1) for i in range(5)]
    assert imu_index_after_time(buf, t) == idx


def test_imu_preintegration():
    imuq = ImuQueue()
    for i in range(5):
        imuq.add(ImuData(time=i))

    preint = ImuPreintegration()
    preint.compute(imuq, 0.5, 3.5)
    assert preint.n == 4
    assert preint.duration == 3

    preint.reset()
    preint.compute(imuq, 0.5, 5.5)
    assert preint.n == 5
    assert preint.duration == 5


def test_imu_preintegration_with_noise():
    imuq = ImuQueue()
    for i in range(10):
        imuq.add(ImuData(time=i * 0.01, acc=np.ones(3) * 0.1, gyr=np.ones(3) * 0.02))
    imuq.noise = ImuNoise(100.0, 1e-3, 1e-4, 1e-4, 1e-5)

    preint = ImuPreintegration()
    preint.compute(imuq, 0, 0.1)
    assert preint.n == 10
    assert preint.duration == pytest.approx(0.1)
    assert preint.ok()


def test_preintegration_rejects_bad_interval():
    imuq = ImuQueue()
    for i in range(3):
        imuq.add(ImuData(time=i))
    with pytest.raises(ValueError):
        ImuPreintegration().compute(imuq, 2.0, 1.0)


def test_queue_capacity_and_order():
    imuq = ImuQueue(3)
    for i in range(5):
        imuq.add(ImuData(time=i))
    assert len(imuq) == 3
    assert imuq.raw_at(0).time == 2
    with pytest.raises(ValueError):
        imuq.add(ImuData(time=1))


def test_queue_nan_replaced():
    imuq = ImuQueue()
    imuq.add(ImuData(time=0, acc=np.array([np.nan, 0, 0])))
    np.testing.assert_array_equal(imuq.raw_at(0).acc, np.zeros(3))


def test_debiased():
    bias = ImuBias()
    bias.acc = np.ones(3)
    imu = ImuData(time=1, acc=np.full(3, 3.0), gyr=np.zeros(3))
    np.testing.assert_array_equal(imu.debiased(bias).acc, np.full(3, 2.0))
    np.testing.assert_array_equal(imu.acc, np.full(3, 3.0))


def test_bias_update_moves_toward_measurement():
    bias = ImuBias(1.0, 1.0)
    bias.update_gyr(np.ones(3), np.full(3, 1.0))
    assert np.all(bias.gyr > 0) and np.all(bias.gyr < 1)
    assert np.all(bias.gyr_var < 1.0)


def test_index_after_clamps():
    imuq = ImuQueue()
    for i in range(4):
        imuq.add(ImuData(time=i))
    assert imuq.index_after(-1) == 1
    assert imuq.index_after(10) == 3


def test_calc_mean():
    imuq = ImuQueue()
    for i in range(4):
        imuq.add(ImuData(time=i, acc=np.full(3, float(i))))
    mean = imuq.calc_mean(2)
    assert mean.time == 3
    np.testing.assert_allclose(mean.acc, np.full(3, 2.5))


def test_integrate_static_gravity_cancels():
    g = np.array([0, 0, 9.8])
    imu = ImuData(time=0, acc=g.copy(), gyr=np.zeros(3))
    s1 = integrate_euler(NavState(), imu, g, 0.1)
    np.testing.assert_allclose(s1.vel, np.zeros(3))
    s2 = integrate_state(NavState(), imu, imu, g, 0.1)
    np.testing.assert_allclose(s2.pos, np.zeros(3))
    assert s2.time == pytest.approx(0.1)


def test_integrate_rot_constant_gyro():
    w = np.array([0.0, 0.0, 0.5])
    imu0 = ImuData(time=0, gyr=w)
    imu1 = ImuData(time=1, gyr=w)
    rot = integrate_rot(SO3(), 0.0, imu0, imu1, 0.2)
    np.testing.assert_allclose(rot.log(), w * 0.2, atol=1e-12)
    with pytest.raises(ValueError):
        integrate_rot(SO3(), 0.0, imu0, imu1, 0.0)