"""Reading pose trajectories and measuring their error against ground truth."""

from __future__ import annotations

import argparse
import math
import os
import sys

import numpy as np

from slamkit.geometry import Quaternion
from slamkit.lie import SE3

DEFAULT_GROUNDTRUTH = "./example/groundtruth.txt"
DEFAULT_ESTIMATED = "./example/estimated.txt"


def read_trajectory(path: str | os.PathLike) -> list[SE3]:
    """Read poses from lines of ``time tx ty tz qx qy qz qw``."""
    trajectory = []
    with open(path, encoding="utf-8") as stream:
        for lineno, line in enumerate(stream, start=1):
            fields = line.split()
            if not fields:
                continue
            if len(fields) < 8:
                raise ValueError(f"{path}:{lineno}: expected 8 values, got {len(fields)}")
            try:
                _, tx, ty, tz, qx, qy, qz, qw = (float(f) for f in fields[:8])
            except ValueError as exc:
                raise ValueError(f"{path}:{lineno}: {exc}") from exc
            trajectory.append(SE3.from_quaternion(Quaternion(qw, qx, qy, qz), [tx, ty, tz]))
    return trajectory


def trajectory_rmse(groundtruth: list[SE3], estimated: list[SE3]) -> float:
    """Root mean square of the absolute pose error ``|log(gt^-1 * est)|``."""
    if not groundtruth or not estimated:
        raise ValueError("trajectories must not be empty")
    if len(groundtruth) != len(estimated):
        raise ValueError("trajectories must have the same length")
    squared = [float(np.linalg.norm((gt.inverse() * est).log())) ** 2 for gt, est in zip(groundtruth, estimated)]
    return math.sqrt(sum(squared) / len(squared))


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Compute the RMSE between two trajectories.")
    parser.add_argument("groundtruth", nargs="?", default=DEFAULT_GROUNDTRUTH)
    parser.add_argument("estimated", nargs="?", default=DEFAULT_ESTIMATED)
    args = parser.parse_args(argv)

    trajectories = []
    for path in (args.groundtruth, args.estimated):
        try:
            trajectories.append(read_trajectory(path))
        except FileNotFoundError:
            print(f"trajectory {path} not found.", file=sys.stderr)
            return 1
    try:
        rmse = trajectory_rmse(*trajectories)
    except ValueError as exc:
        print(exc, file=sys.stderr)
        return 1
    print(f"RMSE = {rmse:g}")
    return 0


if __name__ == "__main__":
    sys.exit(main())