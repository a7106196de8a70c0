"""Lidar scans stored as images of (x, y, z, range, intensity) pixels."""

from __future__ import annotations

import math

import numpy as np

from llol.match import MeanCovar
from llol.transforms import SE3

TAU = 2.0 * math.pi

SCAN_PIXEL = np.dtype(
    [
        ("x", "<f4"),
        ("y", "<f4"),
        ("z", "<f4"),
        ("range_raw", "<u2"),
        ("intensity", "<u2"),
    ]
)


def as_range(r):
    """Normalise a (start, end) pair or a range object to a range."""
    if isinstance(r, range):
        return r
    start, stop = r
    return range(int(start), int(stop))


def empty_scan_mat(size):
    """Scan storage of the given (width, height) with every point invalid."""
    width, height = size
    mat = np.zeros((height, width), dtype=SCAN_PIXEL)
    for name in ("x", "y", "z"):
        mat[name] = np.nan
    return mat


class ScanBase:
    """Image-like storage with a time stamp, a current column range and per-column poses.

    Without ``curr`` the scan is plain storage; with it, the time, the column
    delta time and the column range are checked against the data.
    """

    def __init__(self, mat, time=0.0, dt=0.0, curr=None):
        self.mat = np.asarray(mat)
        self.time = float(time)
        self.dt = float(dt)
        if curr is None:
            self.curr = range(0, 0)
            self.tfs = [SE3() for _ in range(self.cols())]
            return

        self.curr = as_range(curr)
        if time < 0:
            raise ValueError("Time cannot be negative")
        if not dt > 0:
            raise ValueError("Delta time must be positive")
        if self.cols() != len(self.curr):
            raise ValueError("Mat width mismatch")
        self.tfs = []

    def rows(self):
        return self.mat.shape[0]

    def cols(self):
        return self.mat.shape[1] if self.mat.ndim >= 2 else 0

    def channels(self):
        return 1 if self.mat.ndim == 2 else self.mat.shape[2]

    def total(self):
        return self.rows() * self.cols()

    def size(self):
        """(width, height) of the scan."""
        return (self.cols(), self.rows())

    def empty(self):
        return self.mat.size == 0

    def time_at(self, col):
        return self.time - self.dt * (self.cols() - col)

    def tf_at(self, c):
        return self.tfs[c]

    def update_view(self, new_curr):
        """Move the current column range; it must start where the last one ended."""
        new_curr = as_range(new_curr)
        if new_curr.start != self.curr.stop % self.cols():
            raise ValueError(
                f"new range must start at {self.curr.stop % self.cols()}, "
                f"got {new_curr.start}"
            )
        if len(new_curr) > self.cols():
            raise ValueError(f"range {new_curr} is wider than the scan")
        self.curr = new_curr

    def update_time(self, new_time, new_dt):
        if self.time > new_time:
            raise ValueError(f"time cannot go backwards: {self.time} > {new_time}")
        self.time = float(new_time)
        if self.dt == 0:
            self.dt = float(new_dt)
        elif self.dt != new_dt:
            raise ValueError(f"delta time changed from {self.dt} to {new_dt}")

    def extract_range(self):
        """Raw range channel (seventh 16-bit word of each pixel)."""
        words = np.ascontiguousarray(self.mat).view(np.uint16)
        return words.reshape(self.rows(), self.cols(), -1)[..., 6].copy()


class LidarScan(ScanBase):
    """Lidar scan whose pixels hold a 3d point, a raw range and an intensity."""

    def __init__(self, mat, time=0.0, dt=0.0, scale=0.0, curr=None):
        mat = np.asarray(mat)
        if mat.dtype != SCAN_PIXEL:
            raise ValueError("Mat type mismatch")
        super().__init__(mat, time, dt, curr)
        if curr is not None and not scale > 0:
            raise ValueError("Scale must be positive")
        self.scale = float(scale)

    @classmethod
    def allocate(cls, size):
        """Storage for a scan of (width, height) with all points invalid."""
        return cls(empty_scan_mat(size))

    def channels(self):
        return 4

    def pixel_at(self, px):
        x, y = px
        return self.mat[y, x]

    def range_at(self, px):
        x, y = px
        return float(self.mat["range_raw"][y, x]) / self.scale

    def calc_score(self, px, width):
        """Smoothness and variance score of a cell of ``width`` columns at px.

        Either entry is nan when the cell is not usable.
        """
        x, y = px
        half = width // 2
        left = self.range_at((x + half - 1, y))
        right = self.range_at((x + half, y))
        mid = min(left, right)
        if mid == 0:
            return (math.nan, math.nan)

        cells = self.mat[y, x:x + width]
        good = ~np.isnan(cells["x"])
        rgs = cells["range_raw"][good].astype(float) / self.scale
        n = int(good.sum())
        if n < 8:
            return (math.nan, math.nan)

        total = float(rgs.sum())
        sq_total = float((rgs * rgs).sum())
        curve = abs(total / mid / n - 1.0)
        var = 1.0 / (n * (n - 1)) * (n * sq_total - total * total) / mid
        return (curve, var)

    def calc_mean_covar(self, rect):
        """Mean and covariance of the valid points in the first row of rect (x, y, w, h)."""
        x, y, w, _ = rect
        mc = MeanCovar()
        for pixel in self.mat[y, x:x + w]:
            if not math.isnan(pixel["x"]):
                mc.add([pixel["x"], pixel["y"], pixel["z"]])
        return mc


def make_test_mat(size):
    """Points on a unit sphere with raw range 1024, over a 90 degree vertical fov."""
    width, height = size
    mat = np.zeros((height, width), dtype=SCAN_PIXEL)
    azim_delta = TAU / width
    elev_max = math.pi / 4
    elev_delta = elev_max * 2 / (height - 1)

    elev = (elev_max - np.arange(height) * elev_delta)[:, None]
    azim = (TAU - np.arange(width) * azim_delta)[None, :]
    mat["x"] = np.cos(elev) * np.cos(azim)
    mat["y"] = np.cos(elev) * np.sin(azim)
    mat["z"] = np.broadcast_to(np.sin(elev), (height, width))
    mat["range_raw"] = 1024
    return mat


def make_test_scan(size):
    width, _ = size
    return LidarScan(make_test_mat(size), 0.0, 0.1 / width, 512.0, range(0, width))