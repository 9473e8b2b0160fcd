import numpy as np
import pytest

from slamkit.backend import Backend
from slamkit.camera import Camera
from slamkit.entities import Feature, Frame, MapPoint
from slamkit.lie import SE3, SO3
from slamkit.map import Map


def make_scene(n_keyframes=3, n_points=30):
    left = Camera(200.0, 200.0, 160.0, 120.0, 0.5, SE3())
    right = Camera(200.0, 200.0, 160.0, 120.0, 0.5, SE3(SO3(), np.array([-0.5, 0.0, 0.0])))
    rng = np.random.default_rng(7)
    frames = {}
    for k in range(n_keyframes):
        frame = Frame(id=k, pose=SE3.exp(np.array([-0.2 * k, 0.0, 0.05 * k, 0.0, 0.02 * k, 0.0])))
        frame.keyframe_id = k
        frame.is_keyframe = True
        frames[k] = frame
    points = {}
    for j in range(n_points):
        pw = np.array([rng.uniform(-2, 2), rng.uniform(-1.5, 1.5), rng.uniform(4, 8)])
        mp = MapPoint(id=j, position=pw)
        points[j] = mp
        for frame in frames.values():
            for cam, is_left in ((left, True), (right, False)):
                feat = Feature(frame, cam.world2pixel(pw, frame.pose), is_on_left_image=is_left)
                feat.map_point = mp
                mp.add_observation(feat)
                (frame.features_left if is_left else frame.features_right).append(feat)
    return left, right, frames, points


def reprojection_error(left, right, points):
    total = 0.0
    for mp in points.values():
        for feat in mp.observations():
            cam = left if feat.is_on_left_image else right
            r = cam.world2pixel(mp.pos, feat.frame.pose) - feat.position
            total += float(r @ r)
    return total


def perturb(frames, points):
    rng = np.random.default_rng(3)
    frames[1].pose = SE3.exp(np.array([0.05, -0.03, 0.04, 0.01, -0.01, 0.005])) * frames[1].pose
    for mp in points.values():
        mp.pos = mp.pos + rng.normal(0.0, 0.05, 3)


@pytest.fixture
def scene():
    left, right, frames, points = make_scene()
    backend = Backend(Map(), left, right)
    yield backend, left, right, frames, points
    backend.stop()


def test_optimize_reduces_reprojection_error(scene):
    backend, left, right, frames, points = scene
    perturb(frames, points)
    before = reprojection_error(left, right, points)
    outliers, inliers = backend.optimize(frames, points)
    after = reprojection_error(left, right, points)
    assert after < 0.01 * before
    assert outliers == 0
    assert inliers == 3 * 30 * 2


def test_optimize_marks_and_detaches_outlier(scene):
    backend, _, _, frames, points = scene
    feat = frames[0].features_left[0]
    feat.position = feat.position + np.array([60.0, -40.0])
    mp = feat.map_point
    observed = mp.observed_times
    outliers, inliers = backend.optimize(frames, points)
    assert outliers == 1
    assert inliers == 3 * 30 * 2 - 1
    assert feat.is_outlier is True
    assert feat.map_point is None
    assert mp.observed_times == observed - 1


def test_outlier_landmarks_are_skipped(scene):
    backend, _, _, frames, points = scene
    perturb(frames, points)
    saved = {k: p.pos for k, p in points.items()}
    for mp in points.values():
        mp.is_outlier = True
    assert backend.optimize(frames, points) == (0, 0)
    for k, mp in points.items():
        assert np.allclose(mp.pos, saved[k])


def test_update_map_runs_optimization_in_worker():
    left, right, frames, points = make_scene()
    world = Map()
    for frame in frames.values():
        world.insert_keyframe(frame)
    for mp in points.values():
        world.insert_map_point(mp)
    perturb(frames, points)
    before = reprojection_error(left, right, points)
    backend = Backend(world, left, right)
    backend.update_map()
    backend.stop()
    assert reprojection_error(left, right, points) < 0.01 * before


def test_update_map_after_stop_does_nothing():
    left, right, frames, points = make_scene()
    world = Map()
    for frame in frames.values():
        world.insert_keyframe(frame)
    for mp in points.values():
        world.insert_map_point(mp)
    backend = Backend(world, left, right)
    backend.stop()
    perturb(frames, points)
    before = reprojection_error(left, right, points)
    backend.update_map()
    assert reprojection_error(left, right, points) == pytest.approx(before)