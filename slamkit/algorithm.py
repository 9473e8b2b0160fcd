"""Triangulation and small conversions used by the odometry."""

from __future__ import annotations

import numpy as np

from slamkit.lie import SE3

_QUALITY_RATIO = 1e-2


def triangulation(poses: list[SE3], points) -> tuple[np.ndarray, bool]:
    """Linear triangulation by SVD.

    ``poses`` map world to each camera; ``points`` are the observations on
    each normalized image plane. Returns the world point and a flag that is
    true when the smallest singular value is below 1% of the next one, that
    is when the observations agree on a single point.
    """
    pts = [np.asarray(p, dtype=float) for p in points]
    if len(poses) != len(pts):
        raise ValueError("need one observation per pose")
    if len(poses) < 2:
        raise ValueError("triangulation needs at least two views")
    rows = []
    for pose, p in zip(poses, pts):
        m = pose.matrix3x4()
        rows.append(p[0] * m[2] - m[0])
        rows.append(p[1] * m[2] - m[1])
    _, singular, vh = np.linalg.svd(np.array(rows))
    v = vh.T
    with np.errstate(divide="ignore", invalid="ignore"):
        pt_world = (v[:, 3] / v[3, 3])[:3]
        good = bool(singular[3] / singular[2] < _QUALITY_RATIO)
    return pt_world, good


def to_vec2(point) -> np.ndarray:
    """A 2-vector from a point with ``x``/``y`` attributes or a pair of numbers."""
    if hasattr(point, "x") and hasattr(point, "y"):
        return np.array([float(point.x), float(point.y)])
    p = np.asarray(point, dtype=float).ravel()
    if p.shape != (2,):
        raise ValueError("point must have two coordinates")
    return p.copy()