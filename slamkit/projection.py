"""Reprojection error terms for pose and landmark estimation.

Errors are ``measurement - projection`` in pixels. Jacobians are taken with
respect to a left-multiplicative SE(3) update ``exp(delta) * T`` of the pose
(translation first, rotation last) and an additive update of the point.
"""

from __future__ import annotations

import numpy as np

from slamkit.lie import SE3

_EPS_DEPTH = 1e-18


def pose_left_update(pose: SE3, update) -> SE3:
    """Apply a 6-vector tangent update to a pose by left multiplication."""
    u = np.asarray(update, dtype=float)
    if u.shape != (6,):
        raise ValueError("pose update must be a 6-vector")
    return SE3.exp(u) * pose


def _as_K(K) -> np.ndarray:
    k = np.asarray(K, dtype=float)
    if k.shape != (3, 3):
        raise ValueError("intrinsic matrix must be 3x3")
    return k.copy()


def _as_vec(values, size: int, name: str) -> np.ndarray:
    v = np.asarray(values, dtype=float).ravel()
    if v.shape != (size,):
        raise ValueError(f"{name} must have {size} components")
    return v


def _project(K: np.ndarray, p_cam: np.ndarray) -> np.ndarray:
    pixel = K @ p_cam
    return (pixel / pixel[2])[:2]


def _pose_jacobian(K: np.ndarray, pos_cam: np.ndarray) -> np.ndarray:
    fx, fy = K[0, 0], K[1, 1]
    x, y, z = pos_cam
    zinv = 1.0 / (z + _EPS_DEPTH)
    zinv2 = zinv * zinv
    return np.array(
        [
            [-fx * zinv, 0.0, fx * x * zinv2, fx * x * y * zinv2, -fx - fx * x * x * zinv2, fx * y * zinv],
            [0.0, -fy * zinv, fy * y * zinv2, fy + fy * y * y * zinv2, -fy * x * y * zinv2, -fy * x * zinv],
        ]
    )


class EdgeProjectionPoseOnly:
    """Reprojection of a fixed world point; only the camera pose varies."""

    def __init__(self, position, K):
        self.position = _as_vec(position, 3, "position")
        self.K = _as_K(K)

    def error(self, pose: SE3, measurement) -> np.ndarray:
        m = _as_vec(measurement, 2, "measurement")
        return m - _project(self.K, pose * self.position)

    def jacobian(self, pose: SE3) -> np.ndarray:
        """2x6 derivative of the error with respect to the pose update."""
        return _pose_jacobian(self.K, pose * self.position)


class EdgeProjection:
    """Reprojection of a landmark seen by one camera of a rig.

    ``cam_ext`` maps the rig frame (the pose ``T``) to this camera.
    """

    def __init__(self, K, cam_ext: SE3):
        if not isinstance(cam_ext, SE3):
            raise TypeError("camera extrinsics must be an SE3")
        self.K = _as_K(K)
        self.cam_ext = cam_ext

    def error(self, pose: SE3, point, measurement) -> np.ndarray:
        m = _as_vec(measurement, 2, "measurement")
        pw = _as_vec(point, 3, "point")
        return m - _project(self.K, self.cam_ext * (pose * pw))

    def jacobians(self, pose: SE3, point) -> tuple[np.ndarray, np.ndarray]:
        """Derivatives of the error: 2x6 for the pose update, 2x3 for the point."""
        pw = _as_vec(point, 3, "point")
        pos_cam = self.cam_ext * (pose * pw)
        j_pose = _pose_jacobian(self.K, pos_cam)
        r_ext = self.cam_ext.matrix()[:3, :3]
        r_pose = pose.matrix()[:3, :3]
        j_point = j_pose[:, :3] @ r_ext @ r_pose
        return j_pose, j_point