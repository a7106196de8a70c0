"""Data association between a sweep grid and a depth panorama."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np


@dataclass
class GicpParams:
    outer: int = 3
    inner: int = 3
    half_rows: int = 2
    half_cols: int = 2
    cov_lambda: float = 1e-6
    imu_weight: float = 0.0
    min_eigval: float = 0.0


class GicpSolver:
    """Matches grid cells to pano windows for generalized icp."""

    def __init__(self, params=None):
        params = params or GicpParams()
        self.outer_iters = params.outer
        self.inner_iters = params.inner
        self.cov_lambda = params.cov_lambda  # added to the covariance diagonal
        self.half_win = (params.half_cols, params.half_rows)  # (width, height)
        self.imu_weight = params.imu_weight  # weight of the imu cost
        self.min_eigval = params.min_eigval  # for solution remapping

    def __repr__(self):
        return (
            f"GicpSolver(outer={self.outer_iters}, inner={self.inner_iters}, "
            f"cov_lambda={self.cov_lambda}, imu_weight={self.imu_weight})"
        )

    def match(self, grid, pano):
        """Match every candidate cell of the grid; returns number of matches."""
        return sum(self.match_row(grid, pano, row) for row in range(grid.rows()))

    def match_row(self, grid, pano, row):
        return sum(
            self.match_cell(grid, pano, (col, row)) for col in range(grid.cols())
        )

    def match_cell(self, grid, pano, px_g):
        """Match one grid cell to the pano; returns 1 on success, else 0."""
        match = grid.match_at(px_g)
        if not match.grid_ok():
            return 0

        # grid point in pano frame
        tf_p_g = grid.tf_at(px_g[0])
        pt_g = tf_p_g * match.mc_g.mean
        rg_g = float(np.linalg.norm(pt_g))

        px_p = pano.model.forward(pt_g[0], pt_g[1], pt_g[2], rg_g)
        if px_p[0] < 0:
            match.reset_pano()
            return 0

        # an unchanged good pano match is reused as is
        if match.pano_ok() and tuple(px_p) == tuple(match.px_p):
            return 1

        half_w, half_h = self.half_win
        win = (px_p[0] - half_w, px_p[1] - half_h, 2 * half_w + 1, 2 * half_h + 1)
        mc_p, weight = pano.calc_mean_covar(win, rg_g)
        match.mc_p = mc_p

        pano_pts = win[2] * win[3]
        if mc_p.n * 2 < pano_pts:
            match.reset_pano()
            return 0

        match.px_p = tuple(px_p)
        match.calc_sqrt_info(tf_p_g.rot.matrix)
        # keep the scale in [0.5, 1] before the square root so the imu cost
        # cannot dominate when the window is sparse
        match.scale = math.sqrt(weight / pano_pts / 2 + 0.5)
        return 1