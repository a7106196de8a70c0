"""Sweep grid: a reduced image that scores and selects cells of a lidar sweep."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from llol.match import PointMatch
from llol.scan import ScanBase, as_range
from llol.transforms import SE3


@dataclass
class GridParams:
    cell_rows: int = 2
    cell_cols: int = 16
    nms: bool = True  # non-minimum suppression in filter()
    max_curve: float = 0.01  # cells with a larger curve score are discarded
    max_var: float = 0.01  # cells with a larger variance score are discarded


class SweepGrid(ScanBase):
    """Summary of a sweep where each cell holds a (curve, var) score and a match."""

    def __init__(self, sweep_size, params=None):
        params = params or GridParams()
        width, height = sweep_size
        cell_w, cell_h = params.cell_cols, params.cell_rows
        if cell_h < 1:
            raise ValueError(f"cell rows must be at least 1, got {cell_h}")
        if cell_w < 8:
            raise ValueError(f"cell cols must be at least 8, got {cell_w}")
        if width % cell_w or height % cell_h:
            raise ValueError(
                f"sweep size {sweep_size} is not a multiple of cell size "
                f"{(cell_w, cell_h)}"
            )

        mat = np.full((height // cell_h, width // cell_w, 2), np.nan, dtype=np.float32)
        super().__init__(mat)

        self.nms = bool(params.nms)
        self.max_curve = params.max_curve
        self.max_var = params.max_var
        self.cell_size = (cell_w, cell_h)
        self.matches = [PointMatch() for _ in range(self.total())]

    def __repr__(self):
        return (
            f"SweepGrid(size={self.size()}, cell_size={self.cell_size}, "
            f"max_curve={self.max_curve}, max_var={self.max_var}, nms={self.nms})"
        )

    def _scan_view(self, scan):
        cell_w = self.cell_size[0]
        return range(scan.curr.start // cell_w, scan.curr.stop // cell_w)

    def add(self, scan):
        """Score then filter a scan; returns (valid cells, candidate cells)."""
        if scan.rows() != self.rows() * self.cell_size[1]:
            raise ValueError(
                f"scan rows {scan.rows()} != grid rows * cell height "
                f"{self.rows() * self.cell_size[1]}"
            )
        num_valid = self.score(scan)
        num_candidates = self.filter(scan)
        return (num_valid, num_candidates)

    def score(self, scan):
        """Score each cell covered by the scan; returns number of valid cells."""
        self.update_time(scan.time, scan.dt * self.cell_size[0])
        self.update_view(self._scan_view(scan))
        return sum(self.score_row(scan, r) for r in range(self.rows()))

    def score_row(self, scan, r):
        n = 0
        for c in range(len(self.curr)):
            # c counts from 0 in the scan, but the cell sits inside the sweep
            curve = scan.calc_score(self.grid_to_sweep((c, r)), self.cell_size[0])
            self.mat[r, c + self.curr.start] = curve
            n += int(not math.isnan(curve[0]))
        return n

    def filter(self, scan):
        """Select good cells and compute their mean and covariance; returns count."""
        new_curr = self._scan_view(scan)
        if new_curr != as_range(self.curr):
            raise ValueError(
                f"scan view {new_curr} does not match grid view {self.curr}; "
                "score() must come before filter()"
            )
        return sum(self.filter_row(scan, r) for r in range(self.rows()))

    def filter_row(self, scan, r):
        n = 0
        # nms looks at the left and right neighbours, so skip the edge columns
        pad = int(self.nms)
        width = len(self.curr)
        cell_w, cell_h = self.cell_size

        for c in range(width):
            px_g = (c + self.curr.start, r)
            match = self.match_at(px_g)
            match.reset()

            if pad <= c < width - pad and self.is_cell_good(px_g):
                sx, sy = self.grid_to_sweep((c, r))
                match.mc_g = scan.calc_mean_covar((sx, sy, cell_w, cell_h))
                match.px_g = px_g
                n += 1
        return n

    def is_cell_good(self, px):
        """Whether a scored cell passes the thresholds and non-minimum suppression."""
        m = self.score_at(px)
        if not m[0] < self.max_curve:
            return False
        if not m[1] < self.max_var:
            return False

        if self.nms:
            x, y = px
            left = self.score_at((x - 1, y))
            right = self.score_at((x + 1, y))
            # a nan neighbour counts as infinity
            if m[0] > left[0] or m[0] > right[0]:
                return False
        return True

    def score_at(self, px):
        x, y = px
        return self.mat[y, x]

    def match_at(self, px):
        index = self.px_to_index(px)
        if not 0 <= index < len(self.matches):
            raise IndexError(f"pixel {px} is outside the grid")
        return self.matches[index]

    def sweep_to_grid(self, px):
        return (px[0] // self.cell_size[0], px[1] // self.cell_size[1])

    def grid_to_sweep(self, px):
        return (px[0] * self.cell_size[0], px[1] * self.cell_size[1])

    def px_to_index(self, px):
        return px[1] * self.cols() + px[0]

    def interp(self, traj):
        """Set the pose of each column to the midpoint of its trajectory segment."""
        if len(self.tfs) + 1 != len(traj):
            raise ValueError(
                f"trajectory size {len(traj)} must be grid cols + 1 = {len(self.tfs) + 1}"
            )
        for gc in range(len(self.tfs)):
            # the trajectory starts where curr ends
            tc = (gc - self.curr.stop) % self.cols()
            st0 = traj.states[tc]
            st1 = traj.states[tc + 1]
            tf_p_i = SE3(st0.rot.interpolate(st1.rot, 0.5), (st0.pos + st1.pos) / 2.0)
            self.tfs[gc] = tf_p_i * traj.T_imu_lidar

    def num_candidates(self):
        return sum(1 for match in self.matches if match.grid_ok())

    def draw_filter(self):
        """Curve score of candidate cells, nan elsewhere."""
        good = np.array([m.grid_ok() for m in self.matches]).reshape(self.rows(), self.cols())
        return np.where(good, self.mat[..., 0], np.nan).astype(np.float32)

    def draw_match(self):
        """Number of pano points of matched cells, nan elsewhere."""
        values = [m.mc_p.n if m.ok() else math.nan for m in self.matches]
        return np.array(values, dtype=np.float32).reshape(self.rows(), self.cols())

    def draw_curve_var(self):
        """Curve and variance score as two separate images."""
        return [self.mat[..., 0].copy(), self.mat[..., 1].copy()]