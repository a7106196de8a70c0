"""A lidar sweep covering the full horizontal field of view."""

from __future__ import annotations

from llol.scan import LidarScan, empty_scan_mat, make_test_scan
from llol.transforms import SE3, SO3

import numpy as np


class LidarSweep(LidarScan):
    """Lidar scan spanning 360 degrees, filled in by successive partial scans."""

    def __init__(self, size=(0, 0)):
        super().__init__(empty_scan_mat(size))

    def add(self, scan):
        """Copy a scan into its column range; returns number of points with range."""
        if scan.mat.dtype != self.mat.dtype:
            raise ValueError("scan type mismatch")
        if scan.rows() != self.rows():
            raise ValueError(f"scan rows {scan.rows()} != sweep rows {self.rows()}")
        if scan.cols() > self.cols():
            raise ValueError(f"scan cols {scan.cols()} > sweep cols {self.cols()}")

        self.update_time(scan.time, scan.dt)
        self.update_view(scan.curr)
        self.scale = scan.scale

        self.mat[:, self.curr.start:self.curr.stop] = scan.mat
        return int(np.count_nonzero(self.extract_range()))

    def interp(self, traj):
        """Interpolate the pose of every column from the trajectory."""
        num_cells = len(traj) - 1
        cell_width = self.cols() // num_cells
        grid_end = self.curr.stop // cell_width

        for gc in range(num_cells):
            # the trajectory starts where curr ends
            tc = (gc - grid_end) % num_cells
            st0 = traj.states[tc]
            st1 = traj.states[tc + 1]

            dr = (st0.rot.inverse() * st1.rot).log()
            dp = st1.pos - st0.pos

            for j in range(cell_width):
                s = j / cell_width
                tf_p_i = SE3(st0.rot * SO3.exp(s * dr), st0.pos + s * dp)
                self.tfs[gc * cell_width + j] = tf_p_i * traj.T_imu_lidar

    def __repr__(self):
        return (
            f"LidarSweep(t0={self.time}, dt={self.dt}, "
            f"xyzr=(size={self.size()}, channels={self.channels()}), "
            f"col_range=[{self.curr.start}, {self.curr.stop}))"
        )


def make_test_sweep(size):
    sweep = LidarSweep(size)
    sweep.add(make_test_scan(size))
    return sweep