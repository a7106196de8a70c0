"""IMU data, bias, noise model, state integration and preintegration."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field, replace

import numpy as np

from llol.match import hat3, matrix_sqrt_utu
from llol.transforms import SO3

log = logging.getLogger(__name__)


def _zeros3():
    return np.zeros(3)


def _interp_imu_time(time, imu0, imu1):
    dt = imu1.time - imu0.time
    if dt == 0:
        return 0.0
    return min(max((time - imu0.time) / dt, 0.0), 1.0)


def _check_dt(dt):
    if not dt > 0:
        raise ValueError(f"dt must be positive, got {dt}")


@dataclass
class NavState:
    """Time-stamped rotation, position and velocity."""

    time: float = 0.0
    rot: SO3 = field(default_factory=SO3)
    pos: np.ndarray = field(default_factory=_zeros3)
    vel: np.ndarray = field(default_factory=_zeros3)

    def __repr__(self):
        return (
            f"NavState(t={self.time}, rot={self.rot.quaternion().tolist()}, "
            f"pos={self.pos.tolist()}, vel={self.vel.tolist()})"
        )


class ImuBias:
    """Accelerometer and gyroscope bias with per-axis variance."""

    def __init__(self, acc_bias_std=0.0, gyr_bias_std=0.0):
        self.acc = np.zeros(3)
        self.gyr = np.zeros(3)
        self.acc_var = np.full(3, acc_bias_std**2)
        self.gyr_var = np.full(3, gyr_bias_std**2)

    @staticmethod
    def _kalman(x, p, z, r):
        s = p + np.asarray(r, dtype=float) + 1e-8
        k = p / s
        x = x + k * (np.asarray(z, dtype=float) - x)
        p = p - k * p
        if np.isnan(x).any():
            raise ValueError(f"bias update produced nan: {x}")
        return x, p

    def update_acc(self, z, r):
        self.acc, self.acc_var = self._kalman(self.acc, self.acc_var, z, r)

    def update_gyr(self, z, r):
        self.gyr, self.gyr_var = self._kalman(self.gyr, self.gyr_var, z, r)

    def __repr__(self):
        return (
            f"ImuBias(acc={self.acc.tolist()}, gyr={self.gyr.tolist()}, "
            f"acc_var={self.acc_var.tolist()}, gyr_var={self.gyr_var.tolist()})"
        )


@dataclass
class ImuData:
    """Time-stamped accelerometer and gyroscope reading."""

    time: float = 0.0
    acc: np.ndarray = field(default_factory=_zeros3)
    gyr: np.ndarray = field(default_factory=_zeros3)

    def debiased(self, bias):
        return replace(self, acc=self.acc - bias.acc, gyr=self.gyr - bias.gyr)


class ImuNoise:
    """Discrete-time IMU noise variances (acc, gyr, acc bias, gyr bias)."""

    DIM = 12
    NA, NW, NBA, NBW = 0, 3, 6, 9

    def __init__(self, rate=1.0, acc_noise=0.0, gyr_noise=0.0,
                 acc_bias_noise=0.0, gyr_bias_noise=0.0):
        if not rate > 0:
            raise ValueError(f"rate must be positive, got {rate}")
        self.sigma2 = np.concatenate([
            np.full(3, acc_noise**2 * rate),
            np.full(3, gyr_noise**2 * rate),
            np.full(3, acc_bias_noise**2 / rate),
            np.full(3, gyr_bias_noise**2 / rate),
        ])

    def nad(self):
        return self.sigma2[self.NA:self.NA + 3]

    def nwd(self):
        return self.sigma2[self.NW:self.NW + 3]

    def nbad(self):
        return self.sigma2[self.NBA:self.NBA + 3]

    def nbwd(self):
        return self.sigma2[self.NBW:self.NBW + 3]

    def __repr__(self):
        return (
            f"ImuNoise(acc_cov={self.nad().tolist()}, gyr_cov={self.nwd().tolist()}, "
            f"acc_bias_cov={self.nbad().tolist()}, gyr_bias_cov={self.nbwd().tolist()})"
        )


def integrate_rot(rot, time, imu0, imu1, dt):
    """Integrate rotation over dt using interpolated gyro readings."""
    _check_dt(dt)
    s = _interp_imu_time(time + dt / 2.0, imu0, imu1)
    omg = (1.0 - s) * imu0.gyr + s * imu1.gyr
    return rot * SO3.exp(omg * dt)


def integrate_euler(s0, imu, g, dt):
    """One Euler step of a de-biased imu reading; returns the new state."""
    _check_dt(dt)
    a = s0.rot * imu.acc - g
    return NavState(
        time=s0.time + dt,
        rot=s0.rot * SO3.exp(dt * imu.gyr),
        pos=s0.pos + s0.vel * dt + 0.5 * a * dt * dt,
        vel=s0.vel + a * dt,
    )


def integrate_state(s0, imu0, imu1, g, dt):
    """Integrate state over dt between two de-biased readings."""
    _check_dt(dt)
    s = _interp_imu_time(s0.time + dt / 2.0, imu0, imu1)
    omg = (1 - s) * imu0.gyr + s * imu1.gyr
    rot = s0.rot * SO3.exp(omg * dt)
    a = (1 - s) * (s0.rot * imu0.acc) + s * (rot * imu1.acc) - g
    return NavState(
        time=s0.time + dt,
        rot=rot,
        pos=s0.pos + s0.vel * dt + 0.5 * a * dt * dt,
        vel=s0.vel + a * dt,
    )


def imu_index_after_time(buf, t):
    """Index of the first imu with time after t (len(buf) if none)."""
    i = len(buf)
    while i > 0 and buf[i - 1].time > t:
        i -= 1
    return i


class ImuQueue:
    """Bounded buffer of imu readings with bias and noise models."""

    def __init__(self, capacity=20):
        self.buf = deque(maxlen=capacity)
        self.bias = ImuBias()
        self.noise = ImuNoise()

    def __len__(self):
        return len(self.buf)

    @property
    def capacity(self):
        return self.buf.maxlen

    def full(self):
        return len(self.buf) == self.buf.maxlen

    def add(self, imu):
        acc, gyr = imu.acc, imu.gyr
        if np.isnan(acc).any():
            log.warning("acc data is not valid: %s", acc)
            acc = np.zeros(3)
        if np.isnan(gyr).any():
            log.warning("gyr data is not valid: %s", gyr)
            gyr = np.zeros(3)
        imu = ImuData(imu.time, np.array(acc, dtype=float), np.array(gyr, dtype=float))

        if self.buf:
            dt = imu.time - self.buf[-1].time
            _check_dt(dt)
            self.bias.acc_var = self.bias.acc_var + self.noise.nbad() * dt * dt
            self.bias.gyr_var = self.bias.gyr_var + self.noise.nbwd() * dt * dt
        self.buf.append(imu)

    def raw_at(self, i):
        return self.buf[i]

    def debiased_at(self, i):
        return self.buf[i].debiased(self.bias)

    def index_after(self, t):
        """Index of imu right after t, clamped to [1, len - 1]."""
        ibuf = imu_index_after_time(self.buf, t)
        if ibuf == len(self):
            ibuf = len(self) - 1
            log.warning("All imus are before time %s, last imu time %s, set ibuf to %d",
                        t, self.buf[-1].time, ibuf)
        elif ibuf == 0:
            ibuf = 1
            log.warning("All imus are after time %s, first imu time %s, set ibuf to %d",
                        t, self.buf[0].time, ibuf)
        return ibuf

    def calc_mean(self, last_n=0):
        """Mean of the last last_n readings (all when last_n <= 0)."""
        items = list(self.buf)
        if last_n > 0:
            items = items[-last_n:]
        return ImuData(
            time=self.buf[-1].time,
            acc=np.mean([d.acc for d in items], axis=0),
            gyr=np.mean([d.gyr for d in items], axis=0),
        )

    def __repr__(self):
        return f"ImuQueue(size={len(self)}/{self.capacity}, bias={self.bias}, noise={self.noise})"


class ImuPreintegration:
    """Preintegrated imu measurement between two times."""

    DIM = 15
    ALPHA, BETA, THETA, BA, BW = 0, 3, 6, 9, 12

    def __init__(self):
        self.reset()

    def ok(self):
        return self.n > 0

    def reset(self):
        self.n = 0
        self.duration = 0.0
        self.alpha = np.zeros(3)
        self.beta = np.zeros(3)
        self.gamma = SO3()
        self.F = np.eye(self.DIM)
        self.P = np.zeros((self.DIM, self.DIM))
        self.U = np.zeros((self.DIM, self.DIM))

    def compute(self, imuq, t0, t1):
        """Integrate imus from t0 to t1; returns number of integrations."""
        if not t0 < t1:
            raise ValueError(f"t0 must be before t1, got {t0} and {t1}")
        ibuf = imuq.index_after(t0)
        if ibuf == len(imuq):
            log.warning("Could not find imu right after time: %s", t0)
            return 0

        t = t0
        while True:
            imu = imuq.debiased_at(ibuf)
            self.integrate(imu.time - t, imu, imuq.noise)
            t = imu.time
            if ibuf + 1 >= len(imuq) or imuq.raw_at(ibuf + 1).time >= t1:
                break
            ibuf += 1

        imu = imuq.debiased_at(ibuf)
        self.integrate(t1 - imu.time, imu, imuq.noise)

        try:
            info = np.linalg.inv(self.P)
        except np.linalg.LinAlgError:
            info = np.linalg.pinv(self.P)
        self.U = matrix_sqrt_utu(info)
        return self.n

    def integrate(self, dt, imu, noise):
        """One step with a de-biased imu reading."""
        _check_dt(dt)
        a, w = imu.acc, imu.gyr
        ga = self.gamma * a
        dgamma = SO3.exp(w * dt)
        dbeta = ga * dt
        dalpha = self.beta * dt + 0.5 * ga * dt * dt

        rmat = self.gamma.matrix
        i3 = np.eye(3)
        A, B, T, BA, BW = self.ALPHA, self.BETA, self.THETA, self.BA, self.BW
        self.F[A:A + 3, B:B + 3] = i3 * dt
        self.F[B:B + 3, T:T + 3] = -rmat @ hat3(a) * dt
        self.F[B:B + 3, BA:BA + 3] = -rmat * dt
        self.F[T:T + 3, T:T + 3] = SO3.exp(-w * dt).matrix
        self.F[T:T + 3, BW:BW + 3] = -i3 * dt

        self.P = self.F @ self.P @ self.F.T
        idx = np.arange(self.DIM - ImuNoise.DIM, self.DIM)
        self.P[idx, idx] += noise.sigma2

        self.alpha = self.alpha + dalpha
        self.beta = self.beta + dbeta
        self.gamma = self.gamma * dgamma
        self.duration += dt
        self.n += 1