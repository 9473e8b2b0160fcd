"""Process-wide parameters read from a YAML file."""

from __future__ import annotations

import logging
import os
import threading
from typing import Any

import numpy as np
import yaml

logger = logging.getLogger(__name__)


class _Loader(yaml.SafeLoader):
    pass


def _opencv_matrix(loader: _Loader, node: yaml.Node) -> np.ndarray:
    mapping = loader.construct_mapping(node, deep=True)
    rows, cols = int(mapping["rows"]), int(mapping["cols"])
    return np.array(mapping["data"], dtype=float).reshape(rows, cols)


_Loader.add_constructor("tag:yaml.org,2002:opencv-matrix", _opencv_matrix)


class Config:
    """Parameters shared by the whole process; load a file, then ``get`` values."""

    _params: dict[str, Any] | None = None
    _lock = threading.Lock()

    def __init__(self) -> None:
        raise TypeError("Config is used through its class methods")

    @classmethod
    def load(cls, filename: str | os.PathLike) -> None:
        """Read a parameter file, replacing any loaded before."""
        with cls._lock:
            cls._params = None
            try:
                with open(filename, encoding="utf-8") as stream:
                    text = stream.read()
            except FileNotFoundError:
                logger.error("parameter file %s does not exist.", filename)
                raise
            lines = [line for line in text.splitlines() if not line.startswith("%YAML")]
            data = yaml.load("\n".join(lines), Loader=_Loader)
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise ValueError(f"parameter file {filename} must hold a mapping")
            cls._params = data

    @classmethod
    def get(cls, key: str) -> Any:
        """Value of ``key`` in the loaded file."""
        with cls._lock:
            if cls._params is None:
                raise RuntimeError("no parameter file loaded")
            return cls._params[key]