"""Depth panorama fused from lidar sweeps."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from llol.lidar import LidarModel
from llol.match import MeanCovar
from llol.scan import as_range
from llol.transforms import SE3

SCALE = 512.0
MAX_RAW = 65535
MAX_RANGE = MAX_RAW / SCALE

_RAW, _CNT = 0, 1


@dataclass
class PanoParams:
    vfov: float = 0.0
    max_cnt: int = 10
    min_sweeps: int = 8
    min_range: float = 0.5
    max_range: float = 0.0
    win_ratio: float = 0.1
    fuse_ratio: float = 0.05
    align_gravity: bool = False
    min_match_ratio: float = 0.9
    max_translation: float = 1.5


def _set_pixel(buf, px, rg, cnt=None):
    x, y = px
    buf[y, x, _RAW] = min(max(int(rg * SCALE), 0), MAX_RAW)
    if cnt is not None:
        buf[y, x, _CNT] = min(max(int(cnt), 0), MAX_RAW)


class DepthPano:
    """Range image with a per-pixel evidence count.

    ``dbuf`` has shape (rows, cols, 2): channel 0 is the raw range
    (range * SCALE) and channel 1 is the count.
    """

    def __init__(self, size, params=None):
        params = params or PanoParams()
        self.max_cnt = params.max_cnt
        self.min_sweeps = params.min_sweeps
        self.min_range = params.min_range
        self.max_range = params.max_range
        self.win_ratio = params.win_ratio
        self.fuse_ratio = params.fuse_ratio
        self.align_gravity = params.align_gravity
        self.min_match_ratio = params.min_match_ratio
        self.max_translation = params.max_translation

        if self.max_range <= 0:
            self.max_range = MAX_RANGE
        if not 0 <= self.min_range < self.max_range <= MAX_RANGE:
            raise ValueError(
                f"need 0 <= min_range < max_range <= {MAX_RANGE}, "
                f"got {self.min_range} and {self.max_range}"
            )

        self.model = LidarModel(size, params.vfov)
        width, height = self.model.size
        self.dbuf = np.zeros((height, width, 2), dtype=np.uint16)
        self.dbuf2 = np.zeros((height, width, 2), dtype=np.uint16)
        self.num_sweeps = -1.0

    def __repr__(self):
        return (
            f"DepthPano(max_cnt={self.max_cnt}, min_sweeps={self.min_sweeps}, "
            f"min_range={self.min_range}, max_range={self.max_range}, "
            f"win_ratio={self.win_ratio}, fuse_ratio={self.fuse_ratio}, "
            f"match_ratio={self.min_match_ratio}, align_gravity={self.align_gravity}, "
            f"max_translation={self.max_translation}, model={self.model!r}, "
            f"dbuf=(shape={self.dbuf.shape}), "
            f"pixel=(scale={SCALE}, max_range={MAX_RANGE}))"
        )

    def rows(self):
        return self.dbuf.shape[0]

    def cols(self):
        return self.dbuf.shape[1]

    def ready(self):
        return self.num_sweeps >= 1

    def range_at(self, px):
        x, y = px
        return float(self.dbuf[y, x, _RAW]) / SCALE

    def count_at(self, px):
        x, y = px
        return int(self.dbuf[y, x, _CNT])

    def add(self, sweep, curr):
        """Fuse the columns ``curr`` of a sweep; returns number of fused points."""
        curr = as_range(curr)
        self.num_sweeps += len(curr) / sweep.cols()
        return sum(self.add_row(sweep, curr, sr) for sr in range(sweep.rows()))

    def add_row(self, sweep, curr, row):
        n = 0
        for sc in as_range(curr):
            pixel = sweep.mat[row, sc]
            if math.isnan(pixel["x"]):
                continue

            pt_p = sweep.tf_at(sc) * np.array(
                [pixel["x"], pixel["y"], pixel["z"]], dtype=float
            )
            rg_p = float(np.linalg.norm(pt_p))
            if rg_p < self.min_range or rg_p > self.max_range:
                continue

            px_p = self.model.forward(pt_p[0], pt_p[1], pt_p[2], rg_p)
            if px_p[0] < 0 or px_p[1] < 0:
                continue

            n += int(self.fuse_depth(px_p, rg_p))
        return n

    def fuse_depth(self, px, rg):
        """Fuse a range measurement into a pixel; returns whether it was accepted."""
        x, y = px
        raw = int(self.dbuf[y, x, _RAW])
        cnt = int(self.dbuf[y, x, _CNT])

        # an empty pixel starts with a relatively large count
        if raw == 0:
            _set_pixel(self.dbuf, px, rg, self.max_cnt // 2)
            return True

        # no evidence left, so the stored range does not matter
        if cnt == 0:
            _set_pixel(self.dbuf, px, rg, 2)
            return True

        rg0 = raw / SCALE
        if abs(rg - rg0) / rg0 < self.fuse_ratio:
            rg1 = (rg0 * cnt + rg) / (cnt + 1)
            _set_pixel(self.dbuf, px, rg1, cnt + 1 if cnt < self.max_cnt else cnt)
            return True

        self.dbuf[y, x, _CNT] = cnt - 1
        return False

    def should_render(self, tf_p2_p1, match_ratio):
        """Whether the pano should be re-rendered at the new frame."""
        if self.num_sweeps <= self.min_sweeps:
            return False
        if match_ratio < self.min_match_ratio:
            return True
        if self.max_translation > 0:
            if float(np.linalg.norm(tf_p2_p1.trans)) > self.max_translation:
                return True
        r22 = tf_p2_p1.rot.matrix[2, 2]
        return r22 < math.cos(self.model.elev_max * 2.0 / 3.0)

    def render(self, tf_p2_p1=None):
        """Re-render the pano in the frame tf_p2_p1 maps to; returns pixels written."""
        tf_p2_p1 = tf_p2_p1 or SE3()
        self.dbuf2[...] = 0
        total = sum(self.render_row(tf_p2_p1, r) for r in range(self.rows()))
        self.dbuf, self.dbuf2 = self.dbuf2, self.dbuf
        self.num_sweeps = 1.0
        return total

    def render_row(self, tf_p2_p1, row):
        n = 0
        min_cnt = self.max_cnt // 4
        for c1 in range(self.cols()):
            raw = int(self.dbuf[row, c1, _RAW])
            cnt = int(self.dbuf[row, c1, _CNT])
            # skip empty or uncertain pixels
            if raw == 0 or cnt < min_cnt:
                continue

            pt1 = self.model.backward(row, c1, raw / SCALE)
            pt2 = tf_p2_p1 * pt1
            rg2 = float(np.linalg.norm(pt2))
            if rg2 < self.min_range or rg2 > self.max_range:
                continue

            px2 = self.model.forward(pt2[0], pt2[1], pt2[2], rg2)
            if px2[0] < 0:
                continue

            n += int(self.update_buffer(px2, rg2, cnt))
        return n

    def update_buffer(self, px, rg, cnt):
        """Write into the render buffer unless a closer range is already there."""
        x, y = px
        raw = int(self.dbuf2[y, x, _RAW])
        if raw == 0 or rg < raw / SCALE:
            # a well-observed pixel keeps half its count, an occluded one little
            _set_pixel(self.dbuf2, px, rg, cnt // 2)
            return True
        return False

    def calc_mean_covar(self, win, rg):
        """Mean and covariance of points in window (x, y, w, h) with range close to rg.

        Returns (mean_covar, weight) with weight = sum of counts / max_cnt.
        """
        x, y, w, h = win
        x0, y0 = max(x, 0), max(y, 0)
        x1, y1 = min(x + w, self.cols()), min(y + h, self.rows())

        mc = MeanCovar()
        weight = 0.0
        for wy in range(y0, y1):
            for wx in range(x0, x1):
                rg_w = float(self.dbuf[wy, wx, _RAW]) / SCALE
                if rg_w == 0 or abs(rg_w - rg) / rg > self.win_ratio:
                    continue
                mc.add(self.model.backward(wy, wx, rg_w))
                weight += int(self.dbuf[wy, wx, _CNT])
        return mc, weight / self.max_cnt

    def draw_range_count(self):
        """Raw range and count as two separate images."""
        return [self.dbuf[..., _RAW].copy(), self.dbuf[..., _CNT].copy()]