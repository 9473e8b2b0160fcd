"""Quaternions, rotation matrices, Euler angles and rigid transforms."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class Quaternion:
    """Quaternion ``w + x*i + y*j + z*k``, constructed in (w, x, y, z) order."""

    w: float
    x: float
    y: float
    z: float

    @property
    def vec(self) -> np.ndarray:
        """The imaginary part as a 3-vector."""
        return np.array([self.x, self.y, self.z], dtype=float)

    def norm(self) -> float:
        return math.sqrt(self.w**2 + self.x**2 + self.y**2 + self.z**2)

    def normalized(self) -> Quaternion:
        """Return the unit quaternion pointing the same way."""
        n = self.norm()
        if n == 0.0:
            raise ValueError("cannot normalize a zero quaternion")
        return Quaternion(self.w / n, self.x / n, self.y / n, self.z / n)

    def inverse(self) -> Quaternion:
        """Return the multiplicative inverse."""
        n2 = self.w**2 + self.x**2 + self.y**2 + self.z**2
        if n2 == 0.0:
            raise ValueError("a zero quaternion has no inverse")
        return Quaternion(self.w / n2, -self.x / n2, -self.y / n2, -self.z / n2)

    def __mul__(self, other):
        if not isinstance(other, Quaternion):
            return NotImplemented
        w1, x1, y1, z1 = self.w, self.x, self.y, self.z
        w2, x2, y2, z2 = other.w, other.x, other.y, other.z
        return Quaternion(
            w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
            w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
            w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
            w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
        )

    def rotate(self, vector) -> np.ndarray:
        """Rotate a 3-vector by this (unit) quaternion."""
        return self.to_matrix() @ np.asarray(vector, dtype=float)

    def to_matrix(self) -> np.ndarray:
        """The 3x3 rotation matrix of this quaternion."""
        w, x, y, z = self.w, self.x, self.y, self.z
        tx, ty, tz = 2.0 * x, 2.0 * y, 2.0 * z
        twx, twy, twz = tx * w, ty * w, tz * w
        txx, txy, txz = tx * x, ty * x, tz * x
        tyy, tyz, tzz = ty * y, tz * y, tz * z
        return np.array(
            [
                [1.0 - (tyy + tzz), txy - twz, txz + twy],
                [txy + twz, 1.0 - (txx + tzz), tyz - twx],
                [txz - twy, tyz + twx, 1.0 - (txx + tyy)],
            ]
        )

    def coeffs(self) -> np.ndarray:
        """Coefficients in (x, y, z, w) order, the real part last."""
        return np.array([self.x, self.y, self.z, self.w], dtype=float)

    @classmethod
    def from_matrix(cls, matrix) -> Quaternion:
        """Build the quaternion of a 3x3 rotation matrix."""
        m = np.asarray(matrix, dtype=float)
        if m.shape != (3, 3):
            raise ValueError("rotation matrix must be 3x3")
        trace = m[0, 0] + m[1, 1] + m[2, 2]
        if trace > 0.0:
            t = math.sqrt(trace + 1.0)
            w = 0.5 * t
            t = 0.5 / t
            return cls(
                w,
                (m[2, 1] - m[1, 2]) * t,
                (m[0, 2] - m[2, 0]) * t,
                (m[1, 0] - m[0, 1]) * t,
            )
        i = 0
        if m[1, 1] > m[0, 0]:
            i = 1
        if m[2, 2] > m[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        t = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        imag = [0.0, 0.0, 0.0]
        imag[i] = 0.5 * t
        t = 0.5 / t
        w = (m[k, j] - m[j, k]) * t
        imag[j] = (m[j, i] + m[i, j]) * t
        imag[k] = (m[k, i] + m[i, k]) * t
        return cls(w, *imag)

    @classmethod
    def from_angle_axis(cls, angle: float, axis) -> Quaternion:
        """Rotation of ``angle`` radians about ``axis``."""
        a = _unit(axis)
        s = math.sin(0.5 * angle)
        return cls(math.cos(0.5 * angle), s * a[0], s * a[1], s * a[2])


def _unit(axis) -> np.ndarray:
    a = np.asarray(axis, dtype=float)
    if a.shape != (3,):
        raise ValueError("axis must be a 3-vector")
    n = np.linalg.norm(a)
    if n == 0.0:
        raise ValueError("axis must not be zero")
    return a / n


def angle_axis_matrix(angle: float, axis) -> np.ndarray:
    """Rotation matrix of ``angle`` radians about ``axis``."""
    a = _unit(axis)
    c, s = math.cos(angle), math.sin(angle)
    hat = np.array([[0.0, -a[2], a[1]], [a[2], 0.0, -a[0]], [-a[1], a[0], 0.0]])
    return c * np.eye(3) + (1.0 - c) * np.outer(a, a) + s * hat


def euler_zyx(matrix) -> np.ndarray:
    """Yaw, pitch, roll (Z-Y-X order) of a rotation matrix; yaw lies in [0, pi]."""
    m = np.asarray(matrix, dtype=float)
    if m.shape != (3, 3):
        raise ValueError("rotation matrix must be 3x3")
    yaw = math.atan2(m[1, 0], m[0, 0])
    c2 = math.hypot(m[2, 2], m[2, 1])
    if yaw < 0.0:
        yaw += math.pi
        pitch = math.atan2(-m[2, 0], -c2)
    else:
        pitch = math.atan2(-m[2, 0], c2)
    s1, c1 = math.sin(yaw), math.cos(yaw)
    roll = math.atan2(s1 * m[0, 2] - c1 * m[1, 2], c1 * m[1, 1] - s1 * m[0, 1])
    return np.array([yaw, pitch, roll])


def make_isometry(rotation, translation=(0.0, 0.0, 0.0)) -> np.ndarray:
    """4x4 rigid transform from a rotation (matrix or quaternion) and a translation."""
    r = rotation.to_matrix() if isinstance(rotation, Quaternion) else np.asarray(rotation, dtype=float)
    if r.shape != (3, 3):
        raise ValueError("rotation must be a 3x3 matrix or a Quaternion")
    t = np.asarray(translation, dtype=float)
    if t.shape != (3,):
        raise ValueError("translation must be a 3-vector")
    transform = np.eye(4)
    transform[:3, :3] = r
    transform[:3, 3] = t
    return transform


def _invert_isometry(transform: np.ndarray) -> np.ndarray:
    r = transform[:3, :3]
    inv = np.eye(4)
    inv[:3, :3] = r.T
    inv[:3, 3] = -r.T @ transform[:3, 3]
    return inv


def transform_point(transform, point) -> np.ndarray:
    """Apply a 4x4 rigid transform to a 3D point."""
    t = np.asarray(transform, dtype=float)
    if t.shape != (4, 4):
        raise ValueError("transform must be 4x4")
    return t[:3, :3] @ np.asarray(point, dtype=float) + t[:3, 3]


def transform_between_frames(q1: Quaternion, t1, q2: Quaternion, t2, point) -> np.ndarray:
    """Map a point seen in frame 1 into frame 2, both given as world-to-frame poses."""
    t1w = make_isometry(q1.normalized(), t1)
    t2w = make_isometry(q2.normalized(), t2)
    return transform_point(t2w @ _invert_isometry(t1w), point)