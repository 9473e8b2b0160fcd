import numpy as np
import pytest

from slamkit.lie import SE3
from slamkit.trajectory import main, read_trajectory, trajectory_rmse


def _write(path, rows):
    path.write_text("".join(" ".join(str(v) for v in row) + "\n" for row in rows))
    return path


ROWS = [
    (1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 1.0),
    (2.0, 1.0, 2.0, 3.0, 0.0, 0.0, 0.7071067811865476, 0.7071067811865476),
    (3.0, -1.0, 0.5, 0.25, 0.1, 0.2, 0.3, 0.9),
]


def test_read_trajectory_parses_translation_and_rotation(tmp_path):
    poses = read_trajectory(_write(tmp_path / "t.txt", ROWS))
    assert len(poses) == 3
    assert np.allclose(poses[1].translation, [1.0, 2.0, 3.0])
    assert np.allclose(poses[1].rotation_matrix @ [1, 0, 0], [0, 1, 0])


def test_read_trajectory_normalizes_quaternion_and_skips_blank_lines(tmp_path):
    path = tmp_path / "t.txt"
    path.write_text("\n0 1 2 3 0 0 0 2\n\n")
    poses = read_trajectory(path)
    assert len(poses) == 1
    assert np.allclose(poses[0].rotation_matrix, np.eye(3))


def test_read_trajectory_rejects_short_lines(tmp_path):
    path = tmp_path / "t.txt"
    path.write_text("0 1 2 3\n")
    with pytest.raises(ValueError):
        read_trajectory(path)


def test_read_missing_trajectory_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_trajectory(tmp_path / "missing.txt")


def test_rmse_of_identical_trajectories_is_zero(tmp_path):
    poses = read_trajectory(_write(tmp_path / "t.txt", ROWS))
    assert trajectory_rmse(poses, poses) == pytest.approx(0.0, abs=1e-12)


def test_rmse_of_constant_translation_offset():
    gt = [SE3(), SE3(), SE3()]
    est = [SE3(None, [0.1, 0.0, 0.0])] * 3
    assert trajectory_rmse(gt, est) == pytest.approx(0.1)


def test_rmse_requires_equal_lengths():
    with pytest.raises(ValueError):
        trajectory_rmse([SE3()], [SE3(), SE3()])


def test_rmse_requires_non_empty():
    with pytest.raises(ValueError):
        trajectory_rmse([], [])


def test_main_prints_rmse(tmp_path, capsys):
    gt = _write(tmp_path / "gt.txt", ROWS)
    est = _write(tmp_path / "est.txt", ROWS)
    assert main([str(gt), str(est)]) == 0
    assert capsys.readouterr().out.strip() == "RMSE = 0"


def test_main_reports_missing_file(tmp_path, capsys):
    gt = _write(tmp_path / "gt.txt", ROWS)
    assert main([str(gt), str(tmp_path / "nope.txt")]) == 1
    assert "not found" in capsys.readouterr().err