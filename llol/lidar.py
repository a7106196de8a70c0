"""Spherical projection model of a spinning lidar."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

TAU = 2.0 * math.pi
BAD_PIXEL = (-1, -1)


def _round_half_away(x: float) -> int:
    return int(math.copysign(math.floor(abs(x) + 0.5), x))


@dataclass(frozen=True)
class SinCos:
    """Precomputed sine and cosine of an angle."""

    sin: float
    cos: float

    @classmethod
    def from_angle(cls, angle: float) -> "SinCos":
        return cls(math.sin(angle), math.cos(angle))


class LidarModel:
    """Maps 3d points to (col, row) pixels of a range image and back."""

    def __init__(self, size, vfov=0.0):
        width, height = size
        if width <= 0 or height <= 0:
            raise ValueError(f"size must be positive, got {size}")
        if vfov <= 0:
            vfov = TAU / (width / height)
        if math.degrees(vfov) > 128.0:
            raise ValueError("vertical fov too big")

        self.size = (int(width), int(height))
        self.elev_max = vfov / 2.0
        self.elev_delta = vfov / (height - 1)
        self.azim_delta = TAU / width
        self.elevs = [
            SinCos.from_angle(self.elev_max - i * self.elev_delta)
            for i in range(height)
        ]
        self.azims = [
            SinCos.from_angle(TAU - (i + 0.5) * self.azim_delta)
            for i in range(width)
        ]

    @property
    def width(self) -> int:
        return self.size[0]

    @property
    def height(self) -> int:
        return self.size[1]

    def forward(self, x, y, z, r):
        """Project xyz with range r to (col, row); (-1, -1) when outside."""
        row = self.to_row(z, r)
        if not self.row_inside(row):
            return BAD_PIXEL
        col = self.to_col(x, y)
        if not self.col_inside(col):
            return BAD_PIXEL
        return (col, row)

    def backward(self, r, c, rg=1.0):
        """Pixel at row r, col c with range rg to an xyz point."""
        elev = self.elevs[r]
        azim = self.azims[c]
        return np.array(
            [elev.cos * azim.cos * rg, elev.cos * azim.sin * rg, elev.sin * rg]
        )

    def to_row(self, z, r):
        ratio = z / r if r != 0 else math.nan
        if not -1.0 <= ratio <= 1.0:
            return -1
        elev = math.asin(ratio)
        return _round_half_away((self.elev_max - elev) / self.elev_delta)

    def to_col(self, x, y):
        azim = math.atan2(y, -x) + math.pi
        return int(azim / self.azim_delta)

    def row_inside(self, r):
        return 0 <= r < self.height

    def col_inside(self, c):
        return 0 <= c < self.width

    def __repr__(self):
        return (
            f"LidarModel(size={self.size}, "
            f"elev_max={math.degrees(self.elev_max):.2f}[deg], "
            f"elev_delta={math.degrees(self.elev_delta):.4f}[deg], "
            f"azim_delta={math.degrees(self.azim_delta):.4f}[deg])"
        )