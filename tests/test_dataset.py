import imageio.v3 as iio
import numpy as np
import pytest

from slamkit.dataset import Dataset

FX, CX, CY, BASELINE = 700.0, 600.0, 180.0, 0.5


def _projection(tx: float) -> str:
    values = [FX, 0.0, CX, tx, 0.0, FX, CY, 0.0, 0.0, 0.0, 1.0, 0.0]
    return " ".join(f"{v:g}" for v in values)


@pytest.fixture
def dataset_dir(tmp_path):
    lines = [
        f"P0: {_projection(0.0)}",
        f"P1: {_projection(-FX * BASELINE)}",
        f"P2: {_projection(0.0)}",
        f"P3: {_projection(0.0)}",
    ]
    (tmp_path / "calib.txt").write_text("\n".join(lines) + "\n", encoding="utf-8")
    image = (np.arange(24, dtype=np.uint8) * 10).reshape(6, 4)
    for cam in (0, 1):
        folder = tmp_path / f"image_{cam}"
        folder.mkdir()
        iio.imwrite(folder / "000000.png", image)
    return tmp_path, image


def test_init_reads_cameras(dataset_dir):
    path, _ = dataset_dir
    ds = Dataset(path)
    ds.init()
    left, right = ds.camera(0), ds.camera(1)
    assert left.fx == pytest.approx(FX * 0.5)
    assert left.cx == pytest.approx(CX * 0.5)
    assert left.baseline == pytest.approx(0.0)
    assert right.baseline == pytest.approx(BASELINE)
    assert np.allclose(right.pose.translation, [-BASELINE, 0.0, 0.0])


def test_next_frame_halves_images(dataset_dir):
    path, image = dataset_dir
    ds = Dataset(path)
    ds.init()
    frame = ds.next_frame()
    assert np.array_equal(frame.left_img, image[::2, ::2])
    assert np.array_equal(frame.right_img, image[::2, ::2])
    assert ds.current_image_index == 1


def test_next_frame_ends_when_images_run_out(dataset_dir):
    path, _ = dataset_dir
    ds = Dataset(path)
    ds.init()
    first = ds.next_frame()
    assert first.left_img is not None
    assert ds.next_frame() is None


def test_missing_calibration_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        Dataset(tmp_path).init()


def test_truncated_calibration_raises(tmp_path):
    (tmp_path / "calib.txt").write_text(f"P0: {_projection(0.0)}\n", encoding="utf-8")
    with pytest.raises(ValueError):
        Dataset(tmp_path).init()


def test_unknown_camera_raises(dataset_dir):
    path, _ = dataset_dir
    ds = Dataset(path)
    ds.init()
    with pytest.raises(IndexError):
        ds.camera(4)
    with pytest.raises(IndexError):
        ds.camera(-1)