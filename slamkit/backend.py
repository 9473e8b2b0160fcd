"""Sliding-window bundle adjustment run in its own thread."""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import spsolve

from slamkit.algorithm import to_vec2
from slamkit.camera import Camera
from slamkit.entities import Feature, Frame, MapPoint
from slamkit.map import Map
from slamkit.projection import EdgeProjection, pose_left_update

logger = logging.getLogger(__name__)

CHI2_THRESHOLD = 5.991
"""Outlier threshold on the squared reprojection error; also the Huber width."""
OPTIMIZE_ITERATIONS = 10
OUTLIER_ROUNDS = 5

_POSE_DIM = 6
_POINT_DIM = 3


@dataclass
class _Edge:
    kf_id: int
    lm_id: int
    model: EdgeProjection
    measurement: np.ndarray
    feature: Feature


def _huber(chi2: float, delta: float) -> tuple[float, float]:
    """Robust cost and its derivative with respect to ``chi2``."""
    if chi2 <= delta * delta:
        return chi2, 1.0
    root = math.sqrt(chi2)
    return 2.0 * root * delta - delta * delta, delta / root


def _chi2(edge: _Edge, poses, points) -> float:
    r = edge.model.error(poses[edge.kf_id], points[edge.lm_id], edge.measurement)
    return float(r @ r)


class _BundleAdjuster:
    def __init__(self, poses, points, edges: list[_Edge], delta: float):
        self.poses = dict(poses)
        self.points = dict(points)
        self.edges = edges
        self.delta = delta
        self.pose_offset = {k: _POSE_DIM * i for i, k in enumerate(self.poses)}
        base = _POSE_DIM * len(self.poses)
        self.point_offset = {k: base + _POINT_DIM * i for i, k in enumerate(self.points)}
        self.size = base + _POINT_DIM * len(self.points)

    def cost(self, poses, points) -> float:
        return sum(_huber(_chi2(e, poses, points), self.delta)[0] for e in self.edges)

    def _linearize(self):
        gradient = np.zeros(self.size)
        rows, cols, data = [], [], []
        for edge in self.edges:
            pose = self.poses[edge.kf_id]
            point = self.points[edge.lm_id]
            r = edge.model.error(pose, point, edge.measurement)
            _, weight = _huber(float(r @ r), self.delta)
            j_pose, j_point = edge.model.jacobians(pose, point)
            blocks = [
                (self.pose_offset[edge.kf_id], j_pose),
                (self.point_offset[edge.lm_id], j_point),
            ]
            for a, ja in blocks:
                gradient[a : a + ja.shape[1]] += weight * ja.T @ r
                for c, jc in blocks:
                    block = weight * ja.T @ jc
                    rr, cc = np.indices(block.shape)
                    rows.append((rr + a).ravel())
                    cols.append((cc + c).ravel())
                    data.append(block.ravel())
        if data:
            hessian = sparse.coo_matrix(
                (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
                shape=(self.size, self.size),
            ).tocsc()
        else:
            hessian = sparse.csc_matrix((self.size, self.size))
        return hessian, gradient

    def _apply(self, dx: np.ndarray):
        poses = {
            k: pose_left_update(p, dx[self.pose_offset[k] : self.pose_offset[k] + _POSE_DIM])
            for k, p in self.poses.items()
        }
        points = {
            k: p + dx[self.point_offset[k] : self.point_offset[k] + _POINT_DIM] for k, p in self.points.items()
        }
        return poses, points

    def run(self, iterations: int) -> None:
        if not self.edges or self.size == 0:
            return
        identity = sparse.identity(self.size, format="csc")
        cost = self.cost(self.poses, self.points)
        lam = None
        nu = 2.0
        for _ in range(iterations):
            hessian, gradient = self._linearize()
            if lam is None:
                lam = 1e-5 * max(float(hessian.diagonal().max()), 1e-12)
            accepted = False
            for _attempt in range(10):
                dx = np.atleast_1d(spsolve(hessian + lam * identity, -gradient))
                if np.all(np.isfinite(dx)):
                    poses, points = self._apply(dx)
                    new_cost = self.cost(poses, points)
                    predicted = float(dx @ (lam * dx - gradient))
                    if np.isfinite(new_cost) and predicted > 0.0 and new_cost < cost:
                        rho = (cost - new_cost) / predicted
                        lam *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                        nu = 2.0
                        self.poses, self.points, cost = poses, points, new_cost
                        accepted = True
                        break
                lam *= nu
                nu *= 2.0
            if not accepted:
                break


class Backend:
    """Optimizes the map's active keyframes and landmarks whenever the map is updated.

    A worker thread starts with the backend and sleeps until ``update_map``.
    """

    def __init__(self, map: Map, left_camera: Camera, right_camera: Camera):
        self.map = map
        self.left_camera = left_camera
        self.right_camera = right_camera
        self._condition = threading.Condition()
        self._pending = False
        self._running = True
        self._thread = threading.Thread(target=self._loop, name="backend", daemon=True)
        self._thread.start()

    def update_map(self) -> None:
        """Ask the worker to optimize the current active window."""
        with self._condition:
            self._pending = True
            self._condition.notify()

    def stop(self) -> None:
        """Finish any requested optimization and end the worker thread."""
        with self._condition:
            self._running = False
            self._condition.notify()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join()

    def _loop(self) -> None:
        while True:
            with self._condition:
                self._condition.wait_for(lambda: self._pending or not self._running)
                if not self._pending:
                    return
                self._pending = False
            try:
                self.optimize(self.map.active_keyframes(), self.map.active_map_points())
            except Exception:
                logger.exception("backend optimization failed")

    def optimize(self, keyframes: dict[int, Frame], landmarks: dict[int, MapPoint]) -> tuple[int, int]:
        """Bundle-adjust the given keyframes and landmarks in place.

        Observations whose final squared error exceeds the (possibly relaxed)
        threshold are marked as outliers and detached from their landmark.
        Returns ``(outliers, inliers)``.
        """
        K = self.left_camera.K()
        models = {
            True: EdgeProjection(K, self.left_camera.pose),
            False: EdgeProjection(K, self.right_camera.pose),
        }
        poses = {kf_id: kf.pose for kf_id, kf in keyframes.items()}
        points: dict[int, np.ndarray] = {}
        edges: list[_Edge] = []
        for lm_id, mp in landmarks.items():
            if mp.is_outlier:
                continue
            for feat in mp.observations():
                frame = feat.frame
                if feat.is_outlier or frame is None or frame.keyframe_id not in poses:
                    continue
                if lm_id not in points:
                    points[lm_id] = mp.pos
                edges.append(
                    _Edge(frame.keyframe_id, lm_id, models[feat.is_on_left_image], to_vec2(feat.position), feat)
                )

        chi2_th = CHI2_THRESHOLD
        adjuster = _BundleAdjuster(poses, points, edges, chi2_th)
        adjuster.run(OPTIMIZE_ITERATIONS)

        cnt_outlier = cnt_inlier = 0
        if edges:
            chi2s = [_chi2(e, adjuster.poses, adjuster.points) for e in edges]
            for _ in range(OUTLIER_ROUNDS):
                cnt_outlier = sum(1 for c in chi2s if c > chi2_th)
                cnt_inlier = len(chi2s) - cnt_outlier
                if cnt_inlier / len(chi2s) > 0.5:
                    break
                chi2_th *= 2
            for edge, c in zip(edges, chi2s):
                feat = edge.feature
                if c > chi2_th:
                    feat.is_outlier = True
                    mp = feat.map_point
                    if mp is not None:
                        mp.remove_observation(feat)
                else:
                    feat.is_outlier = False

        logger.info("Outlier/Inlier in optimization: %d/%d", cnt_outlier, cnt_inlier)

        for kf_id, pose in adjuster.poses.items():
            keyframes[kf_id].pose = pose
        for lm_id, pos in adjuster.points.items():
            landmarks[lm_id].pos = pos
        return cnt_outlier, cnt_inlier