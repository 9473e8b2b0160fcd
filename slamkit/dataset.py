"""Reading a KITTI-style stereo sequence: calibration and image pairs."""

from __future__ import annotations

import logging
import os
from collections import deque

import imageio.v3 as iio
import numpy as np

from slamkit.camera import Camera
from slamkit.entities import Frame
from slamkit.lie import SE3, SO3

logger = logging.getLogger(__name__)

CAMERA_COUNT = 4
CALIBRATION_FILE = "calib.txt"
IMAGE_SCALE = 0.5


def _take_chars(tokens: deque, count: int) -> str:
    taken = ""
    while len(taken) < count:
        if not tokens:
            raise ValueError("calibration file ends early")
        token = tokens.popleft()
        need = count - len(taken)
        taken += token[:need]
        if len(token) > need:
            tokens.appendleft(token[need:])
    return taken


def _resize_nearest(image: np.ndarray, scale: float) -> np.ndarray:
    rows, cols = image.shape[:2]
    new_rows, new_cols = max(round(rows * scale), 1), max(round(cols * scale), 1)
    ys = np.minimum(np.floor(np.arange(new_rows) / scale).astype(int), rows - 1)
    xs = np.minimum(np.floor(np.arange(new_cols) / scale).astype(int), cols - 1)
    return image[np.ix_(ys, xs)]


class Dataset:
    """A stereo sequence: cameras from ``calib.txt`` and images ``image_<n>/<index>.png``."""

    def __init__(self, dataset_path: str | os.PathLike):
        self.dataset_path = os.fspath(dataset_path)
        self.current_image_index = 0
        self._cameras: list[Camera] = []

    def init(self) -> None:
        """Read the camera intrinsics and extrinsics and rewind to the first image."""
        path = os.path.join(self.dataset_path, CALIBRATION_FILE)
        try:
            with open(path, encoding="utf-8") as stream:
                tokens = deque(stream.read().split())
        except FileNotFoundError:
            logger.error("cannot find %s!", path)
            raise

        cameras = []
        for i in range(CAMERA_COUNT):
            _take_chars(tokens, 3)
            if len(tokens) < 12:
                raise ValueError("calibration file ends early")
            try:
                data = np.array([float(tokens.popleft()) for _ in range(12)]).reshape(3, 4)
            except ValueError as exc:
                raise ValueError(f"bad calibration value: {exc}") from exc
            k = data[:, :3]
            t = np.linalg.inv(k) @ data[:, 3]
            k = k * IMAGE_SCALE
            cameras.append(Camera(k[0, 0], k[1, 1], k[0, 2], k[1, 2], float(np.linalg.norm(t)), SE3(SO3(), t)))
            logger.info("Camera %d extrinsics: %s", i, t)
        self._cameras = cameras
        self.current_image_index = 0

    def _image_path(self, camera: int) -> str:
        return os.path.join(self.dataset_path, f"image_{camera}", f"{self.current_image_index:06d}.png")

    def next_frame(self) -> Frame | None:
        """The next stereo pair at half resolution, or ``None`` when images run out."""
        try:
            left = np.asarray(iio.imread(self._image_path(0), mode="L"))
            right = np.asarray(iio.imread(self._image_path(1), mode="L"))
        except (OSError, ValueError):
            logger.warning("cannot find images at index %d", self.current_image_index)
            return None
        frame = Frame.create()
        frame.left_img = _resize_nearest(left, IMAGE_SCALE)
        frame.right_img = _resize_nearest(right, IMAGE_SCALE)
        self.current_image_index += 1
        return frame

    def camera(self, camera_id: int) -> Camera:
        if camera_id < 0:
            raise IndexError("camera id must not be negative")
        return self._cameras[camera_id]