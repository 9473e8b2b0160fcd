# slamkit

Building blocks for visual SLAM on top of NumPy and SciPy: rigid-body
geometry, the SO(3)/SE(3) Lie groups, nonlinear least squares, pose-graph
optimisation, point clouds, dense monocular depth estimation and the data
structures and bundle adjustment of a stereo visual odometry.

## Modules

- `slamkit.geometry`: `Quaternion` (constructed in w, x, y, z order;
  `coeffs()` returns x, y, z, w), `angle_axis_matrix`, `euler_zyx`
  (yaw, pitch, roll), `make_isometry`, `transform_point` and
  `transform_between_frames`.
- `slamkit.lie`: `SO3` and `SE3` with `exp`, `log`, `inverse`, composition
  by `*` and point transformation by `*`; `SE3.matrix()`, `matrix3x4()` and
  `adjoint()`; the operators `so3_hat`, `so3_vee`, `se3_hat`, `se3_vee`.
  An se(3) vector holds translation first, rotation last.
- `slamkit.trajectory`: `read_trajectory` reads lines of
  `time tx ty tz qx qy qz qw`; `trajectory_rmse` is the root mean square of
  `|log(gt^-1 * est)|` over paired poses.
- `slamkit.curve_fitting`: fits `y = exp(a*x^2 + b*x + c)` with
  `gauss_newton` or `levenberg_marquardt`, both returning a `FitResult`
  (`params`, `cost`, `iterations`, `history`); `generate_data` makes noisy
  samples at `x = i/100`.
- `slamkit.pose_graph`: `read_g2o` reads `VERTEX_SE3:QUAT` and
  `EDGE_SE3:QUAT` records (vertex 0 is held fixed), `PoseGraph.optimize`
  runs Levenberg-Marquardt with left-multiplied SE(3) updates and returns the
  chi2 after each iteration, `PoseGraph.write` saves the same text format.
- `slamkit.imaging`: `undistort` (radial-tangential, nearest neighbour),
  `disparity_to_pointcloud` (x, y, z, intensity), `rgbd_to_pointcloud`
  (x, y, z, r, g, b from a BGR image and raw depth), `voxel_filter`
  (centroid per voxel), `read_poses`, and the `Intrinsics` dataclass.
- `slamkit.dense_mapping`: depth estimation along epipolar lines with
  zero-mean NCC matching and Gaussian depth fusion: `epipolar_search`,
  `ncc`, `update_depth_filter`, `update`, `evaluate_depth`,
  `read_dataset_files`.
- `slamkit.camera`: the pinhole stereo `Camera` with `K()` and
  conversions between world, camera and pixel coordinates.
- `slamkit.algorithm`: `triangulation(poses, points)` returns
  `(point, good)`, where `good` is true when the smallest singular value is
  below 1% of the next one; `to_vec2`.
- `slamkit.entities`: `Frame`, `Feature` and `MapPoint`, with ids handed
  out by `Frame.create()`, `Frame.set_keyframe()` and `MapPoint.create()`.
  Features reference their frame and map point weakly.
- `slamkit.map`: `Map` keeps all keyframes and landmarks and a window of
  active keyframes (7 by default); when the window overflows it drops the
  nearest keyframe if one is closer than 0.2, otherwise the farthest, and
  deactivates landmarks that are no longer observed.
- `slamkit.config`: `Config.load(filename)` reads a YAML parameter file
  (`%YAML` header lines are skipped, `!!opencv-matrix` becomes a NumPy
  array); `Config.get(key)` returns a value.
- `slamkit.dataset`: `Dataset` reads four cameras from `calib.txt` and
  stereo pairs `image_0/NNNNNN.png`, `image_1/NNNNNN.png`, returned as
  half-resolution grayscale `Frame`s by `next_frame()` until images run out.
- `slamkit.projection`: the reprojection error terms
  `EdgeProjectionPoseOnly` and `EdgeProjection` with their Jacobians, and
  `pose_left_update`.
- `slamkit.backend`: `Backend` runs bundle adjustment of the map's active
  keyframes and landmarks in a worker thread each time `update_map()` is
  called; `optimize()` can also be called directly and returns
  `(outliers, inliers)`. Observations over the chi2 threshold 5.991 (doubled
  up to five times while fewer than half are inliers) are marked as outliers
  and detached. `stop()` ends the thread.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
import numpy as np
from slamkit.lie import SE3, SO3
from slamkit.algorithm import triangulation

pose = SE3(SO3.exp(np.array([0.0, 0.0, np.pi / 2])), np.array([1.0, 0.0, 0.0]))
xi = pose.log()                       # translation first, rotation last
print(np.allclose(SE3.exp(xi).matrix(), pose.matrix()))

updated = SE3.exp(np.array([1e-4, 0, 0, 0, 0, 0])) * pose

world = np.array([30.0, 20.0, 10.0])
poses = [SE3(), SE3(None, [0.0, -10.0, 0.0]), SE3(None, [0.0, 10.0, 0.0])]
points = [(p * world) / (p * world)[2] for p in poses]
estimate, good = triangulation(poses, points)
```

## Commands

- `slamkit-trajectory [GROUNDTRUTH] [ESTIMATED]` prints the RMSE between
  two trajectory files (defaults `./example/groundtruth.txt` and
  `./example/estimated.txt`).
- `slamkit-curve-fit` samples the exponential curve with true parameters
  (1, 2, 1) and fits it from (2, -1, 5), printing each step. Options:
  `--method gauss-newton|levenberg-marquardt`, `--iterations`, `--count`,
  `--sigma`, `--seed`.
- `slamkit-pose-graph GRAPH` optimises a g2o pose graph and writes the
  result to `--output` (default `result_lie.g2o`); `--iterations` defaults
  to 30.
- `slamkit-dense-mapping DATASET` reads
  `first_200_frames_traj_over_table_input_sequence.txt`, the `images/`
  directory and `depthmaps/scene_000.depth`, estimates the depth of the
  first image from the others, prints the error after each frame and saves
  `depth.png`.

## What the package does not do

There is no feature detection, optical-flow tracking or frontend, so no
command runs stereo odometry end to end: the camera, dataset, map, entity,
projection and backend modules are parts to build one from. Nothing is
displayed on screen; trajectories, point clouds and depth maps are returned
as arrays or written to files. There is no loop closure or place
recognition, and point clouds are not saved to a point-cloud file format.