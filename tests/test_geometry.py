import math

import numpy as np
import pytest

from slamkit.geometry import (
    Quaternion,
    angle_axis_matrix,
    euler_zyx,
    make_isometry,
    transform_between_frames,
    transform_point,
)


def _rz(a):
    return angle_axis_matrix(a, [0, 0, 1])


def _ry(a):
    return angle_axis_matrix(a, [0, 1, 0])


def _rx(a):
    return angle_axis_matrix(a, [1, 0, 0])


def test_coeffs_put_real_part_last():
    q = Quaternion(1.0, 2.0, 3.0, 4.0)
    assert np.allclose(q.coeffs(), [2.0, 3.0, 4.0, 1.0])


def test_angle_axis_quaternion_matches_matrix():
    axis = [0.3, -0.5, 0.8]
    q = Quaternion.from_angle_axis(1.1, axis)
    assert np.allclose(q.to_matrix(), angle_axis_matrix(1.1, axis))


def test_rotate_about_z_by_quarter_pi():
    q = Quaternion.from_angle_axis(math.pi / 4, [0, 0, 1])
    r = math.sqrt(0.5)
    assert np.allclose(q.rotate([1, 0, 0]), [r, r, 0.0])


def test_rotate_equals_sandwich_product():
    q = Quaternion.from_angle_axis(0.7, [1, 2, 3])
    v = np.array([1.0, -2.0, 0.5])
    sandwich = q * Quaternion(0.0, *v) * q.inverse()
    assert np.allclose(sandwich.vec, q.rotate(v))
    assert abs(sandwich.w) < 1e-12


@pytest.mark.parametrize(
    "angle,axis",
    [(0.4, [0, 0, 1]), (math.pi, [1, 0, 0]), (math.pi, [0, 1, 0]), (2.9, [1, 1, -1]), (0.0, [1, 0, 0])],
)
def test_from_matrix_round_trip(angle, axis):
    r = angle_axis_matrix(angle, axis)
    assert np.allclose(Quaternion.from_matrix(r).to_matrix(), r)


def test_inverse_times_self_is_identity():
    q = Quaternion(0.35, 0.2, 0.3, 0.1)
    p = q * q.inverse()
    assert np.allclose([p.w, p.x, p.y, p.z], [1, 0, 0, 0])


def test_normalized_has_unit_norm():
    assert math.isclose(Quaternion(0.35, 0.2, 0.3, 0.1).normalized().norm(), 1.0)


def test_zero_quaternion_cannot_be_normalized():
    with pytest.raises(ValueError):
        Quaternion(0, 0, 0, 0).normalized()


def test_euler_of_yaw_only_rotation():
    assert np.allclose(euler_zyx(_rz(math.pi / 4)), [math.pi / 4, 0.0, 0.0])


def test_euler_recovers_zyx_angles():
    r = _rz(0.3) @ _ry(-0.2) @ _rx(0.5)
    assert np.allclose(euler_zyx(r), [0.3, -0.2, 0.5])


def test_euler_recomposes_to_same_matrix_for_negative_yaw():
    r = _rz(-1.0) @ _ry(0.4) @ _rx(-0.3)
    yaw, pitch, roll = euler_zyx(r)
    assert 0.0 <= yaw <= math.pi
    assert np.allclose(_rz(yaw) @ _ry(pitch) @ _rx(roll), r)


def test_isometry_applies_rotation_then_translation():
    r = angle_axis_matrix(math.pi / 4, [0, 0, 1])
    t = np.array([1.0, 3.0, 4.0])
    transform = make_isometry(r, t)
    v = np.array([1.0, 0.0, 0.0])
    assert np.allclose(transform_point(transform, v), r @ v + t)


def test_isometry_from_quaternion_equals_from_matrix():
    q = Quaternion.from_angle_axis(0.9, [1, -1, 2])
    assert np.allclose(make_isometry(q, [1, 2, 3]), make_isometry(q.to_matrix(), [1, 2, 3]))


def test_isometry_rejects_bad_shapes():
    with pytest.raises(ValueError):
        make_isometry(np.eye(2), [0, 0, 0])


def test_transform_between_frames_worked_example():
    p2 = transform_between_frames(
        Quaternion(0.35, 0.2, 0.3, 0.1),
        [0.3, 0.1, 0.1],
        Quaternion(-0.5, 0.4, -0.1, 0.2),
        [-0.1, 0.5, 0.3],
        [0.5, 0.0, 0.2],
    )
    assert np.allclose(p2, [-0.0309731, 0.73499, 0.296108], atol=1e-5)


def test_transform_between_same_frame_is_identity():
    q = Quaternion(0.35, 0.2, 0.3, 0.1)
    p = [0.5, 0.0, 0.2]
    assert np.allclose(transform_between_frames(q, [1, 2, 3], q, [1, 2, 3], p), p)