"""The rotation group SO(3) and rigid-motion group SE(3) with their Lie algebras.

Tangent vectors of SE(3) are ordered translation first, rotation last.
"""

from __future__ import annotations

import math

import numpy as np

from slamkit.geometry import Quaternion

_EPS = 1e-10


def so3_hat(omega) -> np.ndarray:
    """Skew-symmetric matrix of a 3-vector."""
    w = np.asarray(omega, dtype=float)
    if w.shape != (3,):
        raise ValueError("so(3) vector must have 3 elements")
    return np.array([[0.0, -w[2], w[1]], [w[2], 0.0, -w[0]], [-w[1], w[0], 0.0]])


def so3_vee(matrix) -> np.ndarray:
    """3-vector of a skew-symmetric matrix."""
    m = np.asarray(matrix, dtype=float)
    if m.shape != (3, 3):
        raise ValueError("so(3) matrix must be 3x3")
    return np.array([m[2, 1], m[0, 2], m[1, 0]])


def se3_hat(xi) -> np.ndarray:
    """4x4 matrix of a 6-vector (translation, rotation)."""
    x = np.asarray(xi, dtype=float)
    if x.shape != (6,):
        raise ValueError("se(3) vector must have 6 elements")
    m = np.zeros((4, 4))
    m[:3, :3] = so3_hat(x[3:])
    m[:3, 3] = x[:3]
    return m


def se3_vee(matrix) -> np.ndarray:
    """6-vector (translation, rotation) of a 4x4 se(3) matrix."""
    m = np.asarray(matrix, dtype=float)
    if m.shape != (4, 4):
        raise ValueError("se(3) matrix must be 4x4")
    return np.concatenate([m[:3, 3], so3_vee(m[:3, :3])])


class SO3:
    """A 3D rotation."""

    __slots__ = ("_r",)

    def __init__(self, matrix=None):
        if matrix is None:
            self._r = np.eye(3)
            return
        r = np.asarray(matrix, dtype=float)
        if r.shape != (3, 3):
            raise ValueError("rotation matrix must be 3x3")
        if not np.allclose(r @ r.T, np.eye(3), atol=1e-6) or np.linalg.det(r) <= 0.0:
            raise ValueError("matrix is not a proper rotation")
        self._r = r.copy()

    @classmethod
    def _wrap(cls, r: np.ndarray) -> SO3:
        obj = cls.__new__(cls)
        obj._r = r
        return obj

    @classmethod
    def from_quaternion(cls, quaternion: Quaternion) -> SO3:
        """Rotation of a quaternion, normalized first."""
        return cls._wrap(quaternion.normalized().to_matrix())

    @classmethod
    def exp(cls, omega) -> SO3:
        """Exponential map from a rotation vector."""
        w = np.asarray(omega, dtype=float)
        if w.shape != (3,):
            raise ValueError("so(3) vector must have 3 elements")
        theta_sq = float(w @ w)
        theta = math.sqrt(theta_sq)
        if theta < _EPS:
            theta_po4 = theta_sq * theta_sq
            imag = 0.5 - theta_sq / 48.0 + theta_po4 / 3840.0
            real = 1.0 - theta_sq / 8.0 + theta_po4 / 384.0
        else:
            imag = math.sin(0.5 * theta) / theta
            real = math.cos(0.5 * theta)
        q = Quaternion(real, *(imag * w))
        return cls._wrap(q.normalized().to_matrix())

    def log(self) -> np.ndarray:
        """Rotation vector of this rotation."""
        return self._log_and_theta()[0]

    def _log_and_theta(self) -> tuple[np.ndarray, float]:
        q = self.quaternion()
        vec = q.vec
        n = float(np.linalg.norm(vec))
        w = q.w
        if n < _EPS:
            factor = 2.0 / w - 2.0 / 3.0 * n * n / (w**3)
        elif abs(w) < _EPS:
            factor = (math.pi if w > 0 else -math.pi) / n
        else:
            factor = 2.0 * math.atan(n / w) / n
        return factor * vec, factor * n

    def inverse(self) -> SO3:
        return SO3._wrap(self._r.T.copy())

    def matrix(self) -> np.ndarray:
        """The 3x3 rotation matrix."""
        return self._r.copy()

    def quaternion(self) -> Quaternion:
        """The unit quaternion of this rotation."""
        return Quaternion.from_matrix(self._r).normalized()

    def __mul__(self, other):
        if isinstance(other, SO3):
            return SO3._wrap(self._r @ other._r)
        if isinstance(other, SE3):
            return NotImplemented
        p = np.asarray(other, dtype=float)
        if p.shape[-1:] != (3,):
            raise ValueError("can only rotate 3-vectors")
        return p @ self._r.T

    def __repr__(self) -> str:
        return f"SO3({self._r.tolist()!r})"


class SE3:
    """A rigid motion: rotation followed by translation."""

    __slots__ = ("_so3", "_t")

    def __init__(self, rotation=None, translation=None):
        if rotation is None:
            self._so3 = SO3()
        elif isinstance(rotation, SO3):
            self._so3 = rotation
        elif isinstance(rotation, Quaternion):
            self._so3 = SO3.from_quaternion(rotation)
        else:
            self._so3 = SO3(rotation)
        t = np.zeros(3) if translation is None else np.asarray(translation, dtype=float)
        if t.shape != (3,):
            raise ValueError("translation must be a 3-vector")
        self._t = t.copy()

    @classmethod
    def from_quaternion(cls, quaternion: Quaternion, translation) -> SE3:
        """Motion from a quaternion (normalized first) and a translation."""
        return cls(SO3.from_quaternion(quaternion), translation)

    @property
    def so3(self) -> SO3:
        return self._so3

    @property
    def rotation_matrix(self) -> np.ndarray:
        return self._so3.matrix()

    @property
    def translation(self) -> np.ndarray:
        return self._t.copy()

    @classmethod
    def exp(cls, xi) -> SE3:
        """Exponential map from a 6-vector (translation, rotation)."""
        x = np.asarray(xi, dtype=float)
        if x.shape != (6,):
            raise ValueError("se(3) vector must have 6 elements")
        omega = x[3:]
        so3 = SO3.exp(omega)
        theta = float(np.linalg.norm(omega))
        big_omega = so3_hat(omega)
        big_omega_sq = big_omega @ big_omega
        if theta < _EPS:
            v = np.eye(3) + 0.5 * big_omega + big_omega_sq / 6.0
        else:
            theta_sq = theta * theta
            v = (
                np.eye(3)
                + (1.0 - math.cos(theta)) / theta_sq * big_omega
                + (theta - math.sin(theta)) / (theta_sq * theta) * big_omega_sq
            )
        return cls(so3, v @ x[:3])

    def log(self) -> np.ndarray:
        """6-vector (translation, rotation) of this motion."""
        omega, theta = self._so3._log_and_theta()
        big_omega = so3_hat(omega)
        if abs(theta) < _EPS:
            v_inv = np.eye(3) - 0.5 * big_omega + (big_omega @ big_omega) / 12.0
        else:
            half = 0.5 * theta
            v_inv = (
                np.eye(3)
                - 0.5 * big_omega
                + (1.0 - theta * math.cos(half) / (2.0 * math.sin(half))) / (theta * theta) * (big_omega @ big_omega)
            )
        return np.concatenate([v_inv @ self._t, omega])

    def inverse(self) -> SE3:
        r_inv = self._so3.inverse()
        return SE3(r_inv, -(r_inv.matrix() @ self._t))

    def matrix(self) -> np.ndarray:
        """The 4x4 homogeneous matrix."""
        m = np.eye(4)
        m[:3, :3] = self._so3.matrix()
        m[:3, 3] = self._t
        return m

    def matrix3x4(self) -> np.ndarray:
        """The top three rows of the homogeneous matrix."""
        return self.matrix()[:3, :]

    def adjoint(self) -> np.ndarray:
        """6x6 adjoint matrix acting on (translation, rotation) vectors."""
        r = self._so3.matrix()
        adj = np.zeros((6, 6))
        adj[:3, :3] = r
        adj[3:, 3:] = r
        adj[:3, 3:] = so3_hat(self._t) @ r
        return adj

    def __mul__(self, other):
        if isinstance(other, SE3):
            return SE3(self._so3 * other._so3, self._so3 * other._t + self._t)
        p = np.asarray(other, dtype=float)
        if p.shape[-1:] != (3,):
            raise ValueError("can only transform 3D points")
        return p @ self._so3.matrix().T + self._t

    def __repr__(self) -> str:
        return f"SE3(rotation={self._so3.matrix().tolist()!r}, translation={self._t.tolist()!r})"