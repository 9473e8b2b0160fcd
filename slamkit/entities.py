"""Frames, 2D features and 3D map points, with factory-assigned ids."""

from __future__ import annotations

import itertools
import threading
import weakref

import numpy as np

from slamkit.lie import SE3


class Feature:
    """A 2D keypoint in one image; linked to a map point after triangulation.

    The owning frame and the map point are held by weak reference.
    """

    def __init__(self, frame: Frame | None = None, position=(0.0, 0.0), *, is_on_left_image: bool = True):
        self._frame = weakref.ref(frame) if frame is not None else None
        self.position = np.asarray(position, dtype=float).copy()
        self._map_point: weakref.ref | None = None
        self.is_outlier = False
        self.is_on_left_image = is_on_left_image

    @property
    def frame(self) -> Frame | None:
        return self._frame() if self._frame is not None else None

    @property
    def map_point(self) -> MapPoint | None:
        return self._map_point() if self._map_point is not None else None

    @map_point.setter
    def map_point(self, point: MapPoint | None) -> None:
        self._map_point = weakref.ref(point) if point is not None else None


class Frame:
    """An image pair with its pose ``Tcw``; keyframes get a separate id."""

    _ids = itertools.count()
    _keyframe_ids = itertools.count()
    _id_lock = threading.Lock()

    def __init__(self, id: int = 0, time_stamp: float = 0.0, pose: SE3 | None = None, left_img=None, right_img=None):
        self.id = id
        self.keyframe_id = 0
        self.is_keyframe = False
        self.time_stamp = time_stamp
        self._pose = pose if pose is not None else SE3()
        self._pose_lock = threading.Lock()
        self.left_img = left_img
        self.right_img = right_img
        self.features_left: list[Feature] = []
        self.features_right: list[Feature | None] = []

    @property
    def pose(self) -> SE3:
        with self._pose_lock:
            return self._pose

    @pose.setter
    def pose(self, pose: SE3) -> None:
        with self._pose_lock:
            self._pose = pose

    @classmethod
    def create(cls) -> Frame:
        """A new frame with the next frame id."""
        with cls._id_lock:
            frame_id = next(cls._ids)
        return cls(id=frame_id)

    def set_keyframe(self) -> None:
        """Mark this frame as a keyframe and give it the next keyframe id."""
        with Frame._id_lock:
            self.keyframe_id = next(Frame._keyframe_ids)
        self.is_keyframe = True


class MapPoint:
    """A landmark in the world, observed by features."""

    _ids = itertools.count()
    _id_lock = threading.Lock()

    def __init__(self, id: int = 0, position=None):
        self.id = id
        self.is_outlier = False
        self._pos = np.zeros(3) if position is None else np.asarray(position, dtype=float).copy()
        self._lock = threading.Lock()
        self.observed_times = 0
        self._observations: list[weakref.ref] = []

    @property
    def pos(self) -> np.ndarray:
        with self._lock:
            return self._pos.copy()

    @pos.setter
    def pos(self, position) -> None:
        with self._lock:
            self._pos = np.asarray(position, dtype=float).copy()

    @classmethod
    def create(cls) -> MapPoint:
        """A new map point with the next id."""
        with cls._id_lock:
            point_id = next(cls._ids)
        return cls(id=point_id)

    def add_observation(self, feature: Feature) -> None:
        with self._lock:
            self._observations.append(weakref.ref(feature))
            self.observed_times += 1

    def remove_observation(self, feature: Feature) -> bool:
        """Drop the observation by ``feature`` and unlink the feature; return whether it was found."""
        with self._lock:
            for i, ref in enumerate(self._observations):
                if ref() is feature:
                    del self._observations[i]
                    feature.map_point = None
                    self.observed_times -= 1
                    return True
        return False

    def observations(self) -> list[Feature]:
        """The observing features that still exist."""
        with self._lock:
            refs = list(self._observations)
        return [f for r in refs if (f := r()) is not None]