from types import SimpleNamespace

import numpy as np
import pytest

from slamkit.algorithm import to_vec2, triangulation
from slamkit.geometry import Quaternion
from slamkit.lie import SE3


def test_triangulation_recovers_point():
    pt_world = np.array([30.0, 20.0, 10.0])
    poses = [
        SE3.from_quaternion(Quaternion(0, 0, 0, 1), [0, 0, 0]),
        SE3.from_quaternion(Quaternion(0, 0, 0, 1), [0, -10, 0]),
        SE3.from_quaternion(Quaternion(0, 0, 0, 1), [0, 10, 0]),
    ]
    points = []
    for pose in poses:
        pc = pose * pt_world
        points.append(pc / pc[2])

    estimated, good = triangulation(poses, points)
    assert good
    assert estimated[0] == pytest.approx(pt_world[0], abs=0.01)
    assert estimated[1] == pytest.approx(pt_world[1], abs=0.01)
    assert estimated[2] == pytest.approx(pt_world[2], abs=0.01)


def test_inconsistent_observations_are_flagged():
    poses = [SE3(), SE3(None, [1.0, 0.0, 0.0])]
    points = [np.array([0.0, 0.0, 1.0]), np.array([0.0, 5.0, 1.0])]
    _, good = triangulation(poses, points)
    assert good is False


def test_mismatched_lengths_raise():
    with pytest.raises(ValueError):
        triangulation([SE3(), SE3()], [np.array([0.0, 0.0, 1.0])])


def test_single_view_raises():
    with pytest.raises(ValueError):
        triangulation([SE3()], [np.array([0.0, 0.0, 1.0])])


def test_to_vec2_from_attributes():
    assert np.allclose(to_vec2(SimpleNamespace(x=3.5, y=-1.0)), [3.5, -1.0])


def test_to_vec2_from_sequence():
    assert np.allclose(to_vec2((4.0, 7.0)), [4.0, 7.0])


def test_to_vec2_rejects_wrong_size():
    with pytest.raises(ValueError):
        to_vec2([1.0, 2.0, 3.0])