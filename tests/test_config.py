import numpy as np
import pytest

from slamkit.config import Config

OPENCV_STYLE = """%YAML:1.0
---
dataset_dir: /data/kitti/00
num_features: 150
num_features_init: 50
camera_matrix: !!opencv-matrix
   rows: 2
   cols: 2
   dt: d
   data: [ 1.0, 2.0, 3.0, 4.0 ]
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "default.yaml"
    path.write_text(OPENCV_STYLE, encoding="utf-8")
    return path


def test_reads_scalars(config_file):
    Config.load(config_file)
    assert Config.get("num_features") == 150
    assert Config.get("num_features_init") == 50
    assert Config.get("dataset_dir") == "/data/kitti/00"


def test_reads_opencv_matrix(config_file):
    Config.load(config_file)
    assert np.array_equal(Config.get("camera_matrix"), np.array([[1.0, 2.0], [3.0, 4.0]]))


def test_missing_key_raises(config_file):
    Config.load(config_file)
    with pytest.raises(KeyError):
        Config.get("no_such_key")


def test_missing_file_raises_and_unloads(config_file, tmp_path):
    Config.load(config_file)
    with pytest.raises(FileNotFoundError):
        Config.load(tmp_path / "absent.yaml")
    with pytest.raises(RuntimeError):
        Config.get("num_features")


def test_non_mapping_is_rejected(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        Config.load(path)


def test_cannot_instantiate():
    with pytest.raises(TypeError):
        Config()