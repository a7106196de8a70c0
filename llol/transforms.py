"""Rotations and rigid transforms in 3d."""

from __future__ import annotations

import math

import numpy as np


def _hat(v):
    x, y, z = v
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


class SO3:
    """Rotation in 3d stored as a matrix."""

    def __init__(self, matrix=None):
        self.matrix = np.eye(3) if matrix is None else np.asarray(matrix, dtype=float)

    @classmethod
    def exp(cls, w):
        w = np.asarray(w, dtype=float)
        theta = float(np.linalg.norm(w))
        k = _hat(w)
        if theta < 1e-10:
            return cls(np.eye(3) + k + 0.5 * k @ k)
        a = math.sin(theta) / theta
        b = (1.0 - math.cos(theta)) / (theta * theta)
        return cls(np.eye(3) + a * k + b * k @ k)

    def quaternion(self):
        """Unit quaternion as (x, y, z, w) with w >= 0."""
        m = self.matrix
        tr = m[0, 0] + m[1, 1] + m[2, 2]
        if tr > 0:
            s = math.sqrt(tr + 1.0) * 2
            q = [(m[2, 1] - m[1, 2]) / s, (m[0, 2] - m[2, 0]) / s,
                 (m[1, 0] - m[0, 1]) / s, 0.25 * s]
        elif m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
            s = math.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2]) * 2
            q = [0.25 * s, (m[0, 1] + m[1, 0]) / s,
                 (m[0, 2] + m[2, 0]) / s, (m[2, 1] - m[1, 2]) / s]
        elif m[1, 1] > m[2, 2]:
            s = math.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2]) * 2
            q = [(m[0, 1] + m[1, 0]) / s, 0.25 * s,
                 (m[1, 2] + m[2, 1]) / s, (m[0, 2] - m[2, 0]) / s]
        else:
            s = math.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1]) * 2
            q = [(m[0, 2] + m[2, 0]) / s, (m[1, 2] + m[2, 1]) / s,
                 0.25 * s, (m[1, 0] - m[0, 1]) / s]
        q = np.array(q)
        q /= np.linalg.norm(q)
        return -q if q[3] < 0 else q

    def log(self):
        q = self.quaternion()
        v, w = q[:3], q[3]
        n = float(np.linalg.norm(v))
        if n < 1e-10:
            return 2.0 * v / w
        return 2.0 * math.atan2(n, w) * v / n

    def inverse(self):
        return SO3(self.matrix.T)

    def __mul__(self, other):
        if isinstance(other, SO3):
            return SO3(self.matrix @ other.matrix)
        return self.matrix @ np.asarray(other, dtype=float)

    @classmethod
    def from_two_vectors(cls, a, b):
        """Smallest rotation taking the direction of a to that of b."""
        a = np.asarray(a, dtype=float)
        b = np.asarray(b, dtype=float)
        a = a / np.linalg.norm(a)
        b = b / np.linalg.norm(b)
        v = np.cross(a, b)
        c = float(a @ b)
        if c < -1.0 + 1e-12:
            axis = np.cross(a, [1.0, 0.0, 0.0])
            if np.linalg.norm(axis) < 1e-6:
                axis = np.cross(a, [0.0, 1.0, 0.0])
            axis /= np.linalg.norm(axis)
            return cls.exp(math.pi * axis)
        k = _hat(v)
        return cls(np.eye(3) + k + k @ k / (1.0 + c))

    def interpolate(self, other, s):
        return self * SO3.exp(s * (self.inverse() * other).log())

    def __repr__(self):
        return f"SO3(quat={self.quaternion().tolist()})"


class SE3:
    """Rigid transform: rotation followed by translation."""

    def __init__(self, rot=None, trans=None):
        self.rot = SO3() if rot is None else rot
        self.trans = np.zeros(3) if trans is None else np.asarray(trans, dtype=float)

    def inverse(self):
        r_inv = self.rot.inverse()
        return SE3(r_inv, -(r_inv * self.trans))

    def __mul__(self, other):
        if isinstance(other, SE3):
            return SE3(self.rot * other.rot, self.rot * other.trans + self.trans)
        return self.rot * other + self.trans

    def matrix3x4(self):
        return np.hstack([self.rot.matrix, self.trans[:, None]])

    def __repr__(self):
        return f"SE3(rot={self.rot!r}, trans={self.trans.tolist()})"