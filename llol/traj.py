"""Trajectory of imu states within a sweep, predicted from imu readings."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from llol.imu import NavState, integrate_rot, integrate_state
from llol.transforms import SE3, SO3


@dataclass
class TrajectoryParams:
    use_acc: bool = False
    update_bias: bool = False
    gravity_norm: float = 0.0


class _MeanVar:
    """Running mean and sample variance of 3-vectors."""

    def __init__(self):
        self.n = 0
        self.mean = np.zeros(3)
        self._m2 = np.zeros(3)

    def add(self, x):
        self.n += 1
        delta = x - self.mean
        self.mean = self.mean + delta / self.n
        self._m2 = self._m2 + delta * (x - self.mean)

    def var(self):
        return self._m2 / (self.n - 1)


class Trajectory:
    """Imu states expressed in the current pano frame."""

    def __init__(self, size, params=None):
        if size <= 0:
            raise ValueError(f"size must be positive, got {size}")
        params = params or TrajectoryParams()
        self.use_acc = params.use_acc
        self.update_bias = params.update_bias
        self.gravity_norm = params.gravity_norm
        self.g_pano = np.zeros(3)
        self.T_odom_pano = SE3()
        self.T_imu_lidar = SE3()
        self.states = [NavState() for _ in range(size)]
        self.cov = np.zeros((6, 6))

    def __len__(self):
        return len(self.states)

    def front(self):
        return self.states[0]

    def back(self):
        return self.states[-1]

    def duration(self):
        return self.back().time - self.front().time

    def __repr__(self):
        return (
            f"Trajectory(size={len(self)}, use_acc={self.use_acc}, "
            f"update_bias={self.update_bias}, g_norm={self.gravity_norm:.4f}, "
            f"g_pano={self.g_pano.tolist()}, "
            f"\nT_imu_lidar=\n{self.T_imu_lidar.matrix3x4()}\n"
            f"T_odom_pano=\n{self.T_odom_pano.matrix3x4()}\n)"
        )

    def init(self, tf_i_l, acc):
        """Set extrinsics and initialise gravity from an accelerometer reading."""
        self.T_imu_lidar = tf_i_l
        tf_l_i = tf_i_l.inverse()
        for st in self.states:
            st.rot = tf_l_i.rot
            st.pos = tf_l_i.trans.copy()

        g_i = np.asarray(acc, dtype=float)
        if self.gravity_norm > 0:
            g_i = g_i / np.linalg.norm(g_i) * self.gravity_norm
        else:
            self.gravity_norm = float(np.linalg.norm(g_i))
        self.g_pano = self.T_imu_lidar.rot.inverse() * g_i
        self.T_odom_pano = SE3(
            SO3.from_two_vectors([0.0, 0.0, 1.0], g_i), self.T_odom_pano.trans
        )

    def _step(self, prev, imu0, imu1, dt):
        if self.use_acc:
            return integrate_state(prev, imu0, imu1, self.g_pano, dt)
        return NavState(
            time=prev.time + dt,
            rot=integrate_rot(prev.rot, prev.time, imu0, imu1, dt),
            pos=prev.pos + prev.vel * dt,
            vel=prev.vel.copy(),
        )

    def predict_new(self, imuq, t0, dt, n):
        """Shift by n states and predict the newest n from t0; returns imus used."""
        if not dt > 0:
            raise ValueError(f"dt must be positive, got {dt}")
        self.pop_oldest(n)

        ibuf = imuq.index_after(t0)
        ibuf0 = ibuf

        ist0 = len(self) - n - 1
        self.states[ist0].time = t0

        imu0 = imuq.debiased_at(ibuf - 1)
        imu1 = imuq.debiased_at(ibuf)

        for ist in range(ist0 + 1, len(self)):
            ti = t0 + dt * (ist - ist0)
            if imu1.time < ti and ibuf < len(imuq) - 1:
                ibuf += 1
                imu0 = imu1
                imu1 = imuq.debiased_at(ibuf)
            self.states[ist] = self._step(self.states[ist - 1], imu0, imu1, dt)

        return ibuf - ibuf0 + 1

    def predict_full(self, imuq):
        """Re-predict every state after the first; returns imus used."""
        ibuf = imuq.index_after(self.front().time)
        ibuf0 = ibuf

        imu0 = imuq.debiased_at(ibuf - 1)
        imu1 = imuq.debiased_at(ibuf)

        for ist in range(1, len(self)):
            prev = self.states[ist - 1]
            curr_time = self.states[ist].time
            dt = curr_time - prev.time
            if imu1.time < curr_time and ibuf < len(imuq) - 1:
                ibuf += 1
                imu0 = imu1
                imu1 = imuq.debiased_at(ibuf)
            self.states[ist] = self._step(prev, imu0, imu1, dt)

        return ibuf - ibuf0 + 1

    def pop_oldest(self, n):
        """Rotate states left by n so the trajectory starts at the current end."""
        if not 0 <= n < len(self):
            raise ValueError(f"n must be in [0, {len(self)}), got {n}")
        self.states = self.states[n:] + self.states[:n]

    def move_frame(self, tf_p2_p1):
        """Express all states, odom transform and gravity in a new pano frame."""
        r_p2_p1 = tf_p2_p1.rot
        for st in self.states:
            st.rot = r_p2_p1 * st.rot
            st.vel = r_p2_p1 * st.vel
            st.pos = tf_p2_p1 * st.pos
        self.T_odom_pano = self.T_odom_pano * tf_p2_p1.inverse()
        self.g_pano = r_p2_p1 * self.g_pano

    def estimate_bias(self, imuq):
        """Update imu bias from the trajectory; returns number of imus used."""
        t0 = self.front().time
        t1 = self.back().time
        dt_state = (t1 - t0) / (len(self) - 1)
        if not dt_state > 0:
            raise ValueError(f"state interval must be positive, got {dt_state}")

        ibuf = imuq.index_after(t0)
        if ibuf == len(imuq):
            return 0

        bw = _MeanVar()
        ba = _MeanVar()

        while ibuf < len(imuq):
            imu = imuq.raw_at(ibuf)
            ist = int((imu.time - t0) / dt_state)
            if ist + 2 >= len(self):
                break
            if ist < 0:
                raise IndexError(f"imu at time {imu.time} is before the trajectory")

            st0 = self.states[ist]
            st1 = self.states[ist + 1]

            r0_t = st0.rot.inverse()
            w_b = (r0_t * st1.rot).log() / dt_state
            bw.add(imu.gyr - w_b)

            a_w = (st1.vel - st0.vel) / dt_state
            a_b = r0_t * (a_w + self.g_pano)
            ba.add(imu.acc - a_b)

            ibuf += 1

        if bw.n < 2:
            return bw.n

        imuq.bias.update_gyr(bw.mean, bw.var())
        if self.use_acc:
            imuq.bias.update_acc(ba.mean, ba.var())
        return bw.n

    def tf_pano_lidar(self):
        last = self.back()
        return SE3(last.rot, last.pos) * self.T_imu_lidar

    def tf_odom_lidar(self):
        return self.T_odom_pano * self.tf_pano_lidar()