"""Pinhole-camera image processing.

Covers lens undistortion, point clouds from stereo disparity and from RGB-D
frames, voxel-grid downsampling and reading camera poses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TextIO

import numpy as np

from slamkit.geometry import Quaternion
from slamkit.lie import SE3

MAX_DISPARITY = 96.0
"""Disparities at or above this value, like those at or below zero, are discarded."""


@dataclass(frozen=True)
class Intrinsics:
    """Pinhole camera intrinsics in pixels."""

    fx: float
    fy: float
    cx: float
    cy: float

    @property
    def K(self) -> np.ndarray:
        """The 3x3 intrinsic matrix."""
        return np.array([[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]])


# Camera of the undistortion example and its radial-tangential coefficients (k1, k2, p1, p2).
DISTORTED_INTRINSICS = Intrinsics(458.654, 457.296, 367.215, 248.375)
DISTORTION = (-0.28340811, 0.07395907, 0.00019359, 1.76187114e-05)

# Rectified stereo pair of the disparity example and its baseline in metres.
STEREO_INTRINSICS = Intrinsics(718.856, 718.856, 607.1928, 185.2157)
STEREO_BASELINE = 0.573

# RGB-D camera of the map-joining example and its depth units per metre.
RGBD_INTRINSICS = Intrinsics(518.0, 519.0, 325.5, 253.5)
RGBD_DEPTH_SCALE = 1000.0


def _pixel_grid(rows: int, cols: int) -> tuple[np.ndarray, np.ndarray]:
    v, u = np.mgrid[0:rows, 0:cols]
    return v.astype(float), u.astype(float)


def undistort(image, intrinsics: Intrinsics, k1: float, k2: float, p1: float, p2: float) -> np.ndarray:
    """Remove radial-tangential distortion from a grayscale image by nearest-neighbour lookup.

    Pixels whose distorted position falls outside the source image are set to zero.
    """
    img = np.asarray(image)
    if img.ndim != 2:
        raise ValueError("undistortion needs a single-channel (2D) image")
    rows, cols = img.shape
    v, u = _pixel_grid(rows, cols)
    x = (u - intrinsics.cx) / intrinsics.fx
    y = (v - intrinsics.cy) / intrinsics.fy
    r2 = x * x + y * y
    radial = 1.0 + k1 * r2 + k2 * r2 * r2
    x_distorted = x * radial + 2.0 * p1 * x * y + p2 * (r2 + 2.0 * x * x)
    y_distorted = y * radial + p1 * (r2 + 2.0 * y * y) + 2.0 * p2 * x * y
    u_distorted = intrinsics.fx * x_distorted + intrinsics.cx
    v_distorted = intrinsics.fy * y_distorted + intrinsics.cy

    valid = (u_distorted >= 0) & (v_distorted >= 0) & (u_distorted < cols) & (v_distorted < rows)
    result = np.zeros_like(img)
    result[valid] = img[v_distorted[valid].astype(int), u_distorted[valid].astype(int)]
    return result


def disparity_to_pointcloud(gray, disparity, intrinsics: Intrinsics, baseline: float) -> np.ndarray:
    """Points ``(x, y, z, intensity)`` from a rectified stereo disparity map.

    Intensity is the grayscale value scaled to [0, 1]. Rows are in row-major pixel order.
    """
    g = np.asarray(gray)
    d = np.asarray(disparity, dtype=float)
    if g.ndim != 2 or d.shape != g.shape:
        raise ValueError("gray image and disparity must be 2D arrays of the same shape")
    if baseline <= 0:
        raise ValueError("baseline must be positive")
    mask = (d > 0.0) & (d < MAX_DISPARITY)
    v, u = np.nonzero(mask)
    disp = d[v, u]
    depth = intrinsics.fx * baseline / disp
    x = (u - intrinsics.cx) / intrinsics.fx
    y = (v - intrinsics.cy) / intrinsics.fy
    intensity = g[v, u].astype(float) / 255.0
    return np.column_stack([x * depth, y * depth, depth, intensity])


def _apply_pose(pose, points: np.ndarray) -> np.ndarray:
    if isinstance(pose, SE3):
        return pose * points
    t = np.asarray(pose, dtype=float)
    if t.shape != (4, 4):
        raise ValueError("pose must be an SE3 or a 4x4 matrix")
    return points @ t[:3, :3].T + t[:3, 3]


def rgbd_to_pointcloud(color, depth, pose, intrinsics: Intrinsics, depth_scale: float = RGBD_DEPTH_SCALE) -> np.ndarray:
    """World points ``(x, y, z, r, g, b)`` from a BGR colour image and a raw depth image.

    ``pose`` maps camera coordinates to world coordinates. Zero depth means no
    measurement and is skipped. Colours stay in the 0-255 range.
    """
    c = np.asarray(color)
    dep = np.asarray(depth)
    if c.ndim != 3 or c.shape[2] < 3:
        raise ValueError("colour image must have three channels")
    if dep.shape != c.shape[:2]:
        raise ValueError("depth image must match the colour image size")
    if depth_scale <= 0:
        raise ValueError("depth scale must be positive")
    v, u = np.nonzero(dep != 0)
    z = dep[v, u].astype(float) / depth_scale
    camera_points = np.column_stack(
        [(u - intrinsics.cx) * z / intrinsics.fx, (v - intrinsics.cy) * z / intrinsics.fy, z]
    )
    world = _apply_pose(pose, camera_points).reshape(-1, 3)
    bgr = c[v, u, :3].astype(float)
    return np.column_stack([world, bgr[:, 2], bgr[:, 1], bgr[:, 0]])


def voxel_filter(points, resolution: float) -> np.ndarray:
    """Replace the points in each cubic voxel by their centroid.

    The first three columns are coordinates; any further columns (colours)
    are averaged too. Output is ordered by voxel index.
    """
    pts = np.asarray(points, dtype=float)
    if pts.ndim != 2 or pts.shape[1] < 3:
        raise ValueError("points must be an N x 3 (or wider) array")
    if resolution <= 0:
        raise ValueError("resolution must be positive")
    if len(pts) == 0:
        return pts.copy()
    keys = np.floor(pts[:, :3] / resolution).astype(np.int64)
    unique, inverse = np.unique(keys, axis=0, return_inverse=True)
    inverse = np.asarray(inverse).ravel()
    sums = np.zeros((len(unique), pts.shape[1]))
    np.add.at(sums, inverse, pts)
    counts = np.bincount(inverse, minlength=len(unique))
    return sums / counts[:, None]


def read_poses(stream: TextIO, count: int = 5) -> list[SE3]:
    """Read ``count`` camera-to-world poses given as ``tx ty tz qx qy qz qw``."""
    if count < 0:
        raise ValueError("count must not be negative")
    tokens = stream.read().split()
    needed = 7 * count
    if len(tokens) < needed:
        raise ValueError(f"expected {needed} pose values, found {len(tokens)}")
    try:
        values = [float(t) for t in tokens[:needed]]
    except ValueError as exc:
        raise ValueError(f"bad pose value: {exc}") from exc
    poses = []
    for start in range(0, needed, 7):
        tx, ty, tz, qx, qy, qz, qw = values[start : start + 7]
        poses.append(SE3.from_quaternion(Quaternion(qw, qx, qy, qz), [tx, ty, tz]))
    return poses