"""Generalized icp cost with an optional imu preintegration term."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod

import numpy as np

from llol.imu import ImuPreintegration
from llol.match import hat3
from llol.transforms import SE3, SO3

RESIDUAL_DIM = 3
IMU_RESIDUAL_DIM = 9


class GicpCost(ABC):
    """Shared state of gicp costs: good matches, their points and preintegration."""

    def __init__(self, num_params, imu_weight=0.0):
        self.imu_weight = imu_weight
        self.grid = None
        self.matches = []
        self.pts_p_hat = []
        self.traj = None
        self.preint = ImuPreintegration()
        self.error = np.zeros(num_params)

    def num_residuals(self):
        return len(self.matches) * RESIDUAL_DIM + (
            IMU_RESIDUAL_DIM if self.traj is not None else 0
        )

    def num_parameters(self):
        return len(self.error)

    def reset_error(self):
        self.error = np.zeros(len(self.error))

    def update_preint(self, traj, imuq):
        """Preintegrate imus over the span of the trajectory."""
        self.traj = traj
        self.preint.reset()
        self.preint.compute(imuq, traj.front().time, traj.back().time)
        if self.preint.ok() and not math.isclose(
            self.preint.duration, traj.duration(), rel_tol=1e-9, abs_tol=1e-12
        ):
            raise ValueError(
                f"preintegration duration {self.preint.duration} differs from "
                f"trajectory duration {traj.duration()}"
            )

    def update_matches(self, grid):
        """Collect the good matches of the grid and their points in pano frame."""
        self.grid = grid
        self.matches = [m for m in grid.matches if m.ok()]
        self.pts_p_hat = [grid.tf_at(m.px_g[0]) * m.mc_g.mean for m in self.matches]

    @abstractmethod
    def update_traj(self, traj):
        """Apply the error state to the trajectory."""


class GicpCostRigid(GicpCost):
    """Cost with a single rigid correction (rotation r0, translation p0)."""

    R0, P0 = 0, 1

    def __init__(self, imu_weight=0.0):
        super().__init__(6, imu_weight)

    def compute(self, x, want_jacobian=True):
        """Residuals at error state x, and the jacobian when asked for.

        Returns (residuals, jacobian); jacobian is None when not wanted.
        """
        x = np.asarray(x, dtype=float)
        r0, p0 = x[0:3], x[3:6]
        e_rot = SO3.exp(r0)
        e_tf = SE3(e_rot, p0)

        residuals = np.zeros(self.num_residuals())
        jac = (
            np.zeros((self.num_residuals(), self.num_parameters()))
            if want_jacobian
            else None
        )
        rc, pc = self.R0 * 3, self.P0 * 3

        for i, (match, pt_p_hat) in enumerate(zip(self.matches, self.pts_p_hat)):
            ri = RESIDUAL_DIM * i
            u = np.asarray(match.U, dtype=float) * match.scale
            residuals[ri:ri + 3] = u @ (match.mc_p.mean - e_tf * pt_p_hat)
            if jac is not None:
                jac[ri:ri + 3, rc:rc + 3] = u @ hat3(pt_p_hat)
                jac[ri:ri + 3, pc:pc + 3] = -u

        if self.traj is None:
            return residuals, jac

        # a failed preintegration zeroes the imu residual and jacobian
        w_imu = self.imu_weight if self.preint.ok() else 0.0

        dt = self.preint.duration
        g_p = self.traj.g_pano
        st0 = self.traj.front()
        st1 = self.traj.back()
        r0_t = st0.rot.inverse()

        offset = len(self.matches) * RESIDUAL_DIM
        r_imu = np.zeros(IMU_RESIDUAL_DIM)

        # r_alpha = R0^T (p1 - p0 + dp) - alpha, dp = 0.5 g dt^2 - v0 dt
        p1 = e_rot * st1.pos + p0
        dp = 0.5 * g_p * dt * dt - st0.vel * dt
        r_imu[0:3] = r0_t * (p1 - st0.pos + dp) - self.preint.alpha
        # the beta residual is left at zero
        rot1 = e_rot * st1.rot
        r_imu[6:9] = (r0_t * rot1 * self.preint.gamma.inverse()).log()

        u9 = self.preint.U[:9, :9] * w_imu
        residuals[offset:offset + 9] = u9 @ r_imu

        if jac is not None:
            r0_t_mat = r0_t.matrix
            q = dp - st0.pos
            jac[offset:offset + 3, rc:rc + 3] = r0_t_mat @ hat3(q)
            jac[offset:offset + 3, pc:pc + 3] = r0_t_mat
            jac[offset + 3:offset + 6, 0:6] = 0.0
            jac[offset + 6:offset + 9, rc:rc + 3] = r0_t_mat
            jac[offset + 6:offset + 9, pc:pc + 3] = 0.0
            jac[offset:offset + 9, 0:6] = u9 @ jac[offset:offset + 9, 0:6]

        return residuals, jac

    def update_traj(self, traj):
        """Apply the error to the first state; the rest follow on re-prediction."""
        dt = traj.duration()
        e_rot = SO3.exp(self.error[0:3])
        p0 = self.error[3:6]

        st = traj.states[0]
        st.rot = e_rot * st.rot
        st.pos = e_rot * st.pos + p0
        st.vel = e_rot * st.vel + p0 / dt * 0.5