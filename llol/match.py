"""Point statistics and the grid-to-pano point match."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

BAD_PX = -100


def hat3(v):
    """Skew-symmetric matrix of a 3-vector."""
    x, y, z = np.asarray(v, dtype=float)
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def matrix_sqrt_utu(a):
    """Return U with U.T @ U == a for a symmetric positive semi-definite a."""
    a = np.asarray(a, dtype=float)
    sym = (a + a.T) / 2.0
    vals, vecs = np.linalg.eigh(sym)
    return np.sqrt(np.clip(vals, 0.0, None))[:, None] * vecs.T


def _inverse(a):
    try:
        return np.linalg.inv(a)
    except np.linalg.LinAlgError:
        return np.linalg.pinv(a)


class MeanCovar:
    """Running mean and covariance of 3d points."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.n = 0
        self.mean = np.zeros(3)
        self._m2 = np.zeros((3, 3))

    def add(self, x):
        x = np.asarray(x, dtype=float)
        self.n += 1
        delta = x - self.mean
        self.mean = self.mean + delta / self.n
        self._m2 = self._m2 + np.outer(delta, x - self.mean)

    def covar(self):
        if self.n < 2:
            return np.zeros((3, 3))
        return self._m2 / (self.n - 1)

    def ok(self):
        return self.n > 3


_bad_px = lambda: (BAD_PX, BAD_PX)  # noqa: E731


@dataclass
class PointMatch:
    """Match between a grid cell and a pano window."""

    px_g: tuple = field(default_factory=_bad_px)
    mc_g: MeanCovar = field(default_factory=MeanCovar)
    px_p: tuple = field(default_factory=_bad_px)
    mc_p: MeanCovar = field(default_factory=MeanCovar)
    U: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))
    scale: float = 0.0

    def ok(self):
        return self.grid_ok() and self.pano_ok()

    def grid_ok(self):
        return self.px_g[0] >= 0 and self.mc_g.ok()

    def pano_ok(self):
        return self.px_p[0] >= 0 and self.mc_p.ok()

    def reset_grid(self):
        self.px_g = _bad_px()
        self.mc_g.reset()

    def reset_pano(self):
        self.px_p = _bad_px()
        self.mc_p.reset()

    def reset(self):
        self.reset_grid()
        self.reset_pano()
        self.U = np.zeros((3, 3))
        self.scale = 0.0

    def calc_sqrt_info(self, rotation=None, lam=0.0):
        """Set U to the square root of the inverse combined covariance."""
        cov = self.mc_p.covar().copy()
        if rotation is not None:
            r = np.asarray(rotation, dtype=float)
            cov += r @ self.mc_g.covar() @ r.T
        if lam > 0:
            cov[np.diag_indices(3)] += lam
        self.U = matrix_sqrt_utu(_inverse(cov))