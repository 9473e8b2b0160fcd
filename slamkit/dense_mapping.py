"""Dense monocular depth estimation along a known camera trajectory.

Each reference pixel keeps a Gaussian depth estimate. For every new image
the pixel is matched along its epipolar line by zero-mean normalized
cross-correlation, triangulated, and fused into the estimate.
"""

from __future__ import annotations

import math
import os
import sys

import imageio.v3 as iio
import numpy as np

from slamkit.geometry import Quaternion
from slamkit.lie import SE3

BORDER = 20
WIDTH = 640
HEIGHT = 480
FX = 481.2
FY = -480.0
CX = 319.5
CY = 239.5
NCC_WINDOW_SIZE = 3
NCC_AREA = (2 * NCC_WINDOW_SIZE + 1) ** 2
MIN_COV = 0.1
"""Variances below this count as converged."""
MAX_COV = 10.0
"""Variances above this count as diverged."""
INIT_DEPTH = 3.0
INIT_COV2 = 3.0
MAX_HALF_LENGTH = 100.0
SEARCH_STEP = 0.7
NCC_THRESHOLD = float(np.float32(0.85))
MIN_SEARCH_DEPTH = 0.1

TRAJECTORY_FILE = "first_200_frames_traj_over_table_input_sequence.txt"
REFERENCE_DEPTH_FILE = os.path.join("depthmaps", "scene_000.depth")

_OFFSETS = np.arange(-NCC_WINDOW_SIZE, NCC_WINDOW_SIZE + 1)
_OFF_X, _OFF_Y = (a.ravel() for a in np.meshgrid(_OFFSETS, _OFFSETS, indexing="ij"))


def _normalized(v: np.ndarray) -> np.ndarray:
    n = float(np.linalg.norm(v))
    return v / n if n > 0.0 else v


def px2cam(px) -> np.ndarray:
    """Pixel to a point on the normalized image plane (z = 1)."""
    p = np.asarray(px, dtype=float)
    return np.array([(p[0] - CX) / FX, (p[1] - CY) / FY, 1.0])


def cam2px(p_cam) -> np.ndarray:
    """Camera-frame point to pixel."""
    p = np.asarray(p_cam, dtype=float)
    return np.array([p[0] * FX / p[2] + CX, p[1] * FY / p[2] + CY])


def inside(pt) -> bool:
    """Whether a pixel lies inside the image with a border margin."""
    x, y = float(pt[0]), float(pt[1])
    return x >= BORDER and y >= BORDER and x + BORDER < WIDTH and y + BORDER <= HEIGHT


def _bilinear(image: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    ix = xs.astype(int)
    iy = ys.astype(int)
    xx = xs - np.floor(xs)
    yy = ys - np.floor(ys)
    img = image
    return (
        (1 - xx) * (1 - yy) * img[iy, ix].astype(float)
        + xx * (1 - yy) * img[iy, ix + 1].astype(float)
        + (1 - xx) * yy * img[iy + 1, ix].astype(float)
        + xx * yy * img[iy + 1, ix + 1].astype(float)
    ) / 255.0


def bilinear_value(image, pt) -> float:
    """Bilinearly interpolated gray value at ``pt = (x, y)``, scaled to [0, 1]."""
    img = np.asarray(image)
    if img.ndim != 2:
        raise ValueError("image must be single-channel")
    xs = np.array([float(pt[0])])
    ys = np.array([float(pt[1])])
    return float(_bilinear(img, xs, ys)[0])


def ncc(ref, curr, pt_ref, pt_curr) -> float:
    """Zero-mean normalized cross-correlation of the windows around two pixels."""
    ref = np.asarray(ref)
    curr = np.asarray(curr)
    rx = (_OFF_X + float(pt_ref[0])).astype(int)
    ry = (_OFF_Y + float(pt_ref[1])).astype(int)
    values_ref = ref[ry, rx].astype(float) / 255.0
    values_curr = _bilinear(curr, _OFF_X + float(pt_curr[0]), _OFF_Y + float(pt_curr[1]))
    mean_ref = values_ref.sum() / NCC_AREA
    mean_curr = values_curr.sum() / NCC_AREA
    dr = values_ref - mean_ref
    dc = values_curr - mean_curr
    numerator = float(dr @ dc)
    denominator = float(dr @ dr) * float(dc @ dc)
    return numerator / math.sqrt(denominator + 1e-10)


def epipolar_search(ref, curr, t_c_r: SE3, pt_ref, depth_mu: float, depth_cov: float):
    """Search the epipolar segment of ``pt_ref`` in ``curr`` for the best NCC match.

    ``depth_cov`` is the standard deviation of the depth. Returns
    ``(pt_curr, epipolar_direction)``, or ``None`` when no match is good enough.
    """
    f_ref = _normalized(px2cam(pt_ref))
    p_ref = f_ref * depth_mu
    px_mean_curr = cam2px(t_c_r * p_ref)
    d_min = max(depth_mu - 3 * depth_cov, MIN_SEARCH_DEPTH)
    d_max = depth_mu + 3 * depth_cov
    px_min_curr = cam2px(t_c_r * (f_ref * d_min))
    px_max_curr = cam2px(t_c_r * (f_ref * d_max))

    epipolar_line = px_max_curr - px_min_curr
    direction = _normalized(epipolar_line)
    half_length = min(0.5 * float(np.linalg.norm(epipolar_line)), MAX_HALF_LENGTH)

    best_ncc = -1.0
    best_px = None
    step = -half_length
    while step <= half_length:
        px_curr = px_mean_curr + step * direction
        step += SEARCH_STEP
        if not inside(px_curr):
            continue
        score = ncc(ref, curr, pt_ref, px_curr)
        if score > best_ncc:
            best_ncc = score
            best_px = px_curr
    if best_px is None or best_ncc < NCC_THRESHOLD:
        return None
    return best_px, direction


def update_depth_filter(pt_ref, pt_curr, t_c_r: SE3, epipolar_direction, depth, depth_cov2):
    """Triangulate a match and fuse it into the depth maps in place.

    Returns the fused ``(mean, variance)`` of the reference pixel.
    """
    t_r_c = t_c_r.inverse()
    f_ref = _normalized(px2cam(pt_ref))
    f_curr = _normalized(px2cam(pt_curr))

    t = t_r_c.translation
    f2 = t_r_c.so3 * f_curr
    b = np.array([t @ f_ref, t @ f2])
    a00 = float(f_ref @ f_ref)
    a01 = -float(f_ref @ f2)
    a10 = -a01
    a11 = -float(f2 @ f2)
    with np.errstate(divide="ignore", invalid="ignore"):
        det = np.float64(a00 * a11 - a01 * a10)
        ans0 = (a11 * b[0] - a01 * b[1]) / det
        ans1 = (-a10 * b[0] + a00 * b[1]) / det
    xm = ans0 * f_ref
    xn = t + ans1 * f2
    p_esti = (xm + xn) / 2.0
    depth_estimation = float(np.linalg.norm(p_esti))

    # Uncertainty from a one-pixel error along the epipolar line.
    t_norm = float(np.linalg.norm(t))
    f_curr_prime = _normalized(px2cam(np.asarray(pt_curr, dtype=float) + np.asarray(epipolar_direction, dtype=float)))
    with np.errstate(divide="ignore", invalid="ignore"):
        alpha = np.arccos(np.float64(f_ref @ t) / t_norm)
        beta_prime = np.arccos(np.float64(f_curr_prime @ -t) / t_norm)
        gamma = math.pi - alpha - beta_prime
        p_prime = t_norm * np.sin(beta_prime) / np.sin(gamma)
        d_cov = float(p_prime) - depth_estimation
        d_cov2 = d_cov * d_cov

        x, y = int(pt_ref[0]), int(pt_ref[1])
        mu = float(depth[y, x])
        sigma2 = float(depth_cov2[y, x])
        mu_fuse = (d_cov2 * mu + sigma2 * depth_estimation) / np.float64(sigma2 + d_cov2)
        sigma_fuse2 = (sigma2 * d_cov2) / np.float64(sigma2 + d_cov2)

    depth[y, x] = mu_fuse
    depth_cov2[y, x] = sigma_fuse2
    return float(mu_fuse), float(sigma_fuse2)


def _check_maps(depth, depth_cov2) -> None:
    for name, m in (("depth", depth), ("depth_cov2", depth_cov2)):
        if not isinstance(m, np.ndarray) or m.shape != (HEIGHT, WIDTH):
            raise ValueError(f"{name} must be a {HEIGHT}x{WIDTH} array")


def update(ref, curr, t_c_r: SE3, depth, depth_cov2) -> int:
    """Update every unconverged pixel of the depth maps in place; return how many matched."""
    _check_maps(depth, depth_cov2)
    cov = depth_cov2[BORDER : HEIGHT - BORDER, BORDER : WIDTH - BORDER]
    active = ~((cov < MIN_COV) | (cov > MAX_COV))
    updated = 0
    for y, x in np.argwhere(active) + BORDER:
        pt_ref = np.array([float(x), float(y)])
        match = epipolar_search(ref, curr, t_c_r, pt_ref, float(depth[y, x]), float(np.sqrt(depth_cov2[y, x])))
        if match is None:
            continue
        pt_curr, direction = match
        update_depth_filter(pt_ref, pt_curr, t_c_r, direction, depth, depth_cov2)
        updated += 1
    return updated


def evaluate_depth(depth_truth, depth_estimate) -> tuple[float, float]:
    """Mean squared error and mean error over the image without its border."""
    truth = np.asarray(depth_truth, dtype=float)
    estimate = np.asarray(depth_estimate, dtype=float)
    if truth.shape != estimate.shape or truth.ndim != 2:
        raise ValueError("depth maps must be 2D arrays of the same shape")
    rows, cols = truth.shape
    if rows <= 2 * BORDER or cols <= 2 * BORDER:
        raise ValueError("depth maps are smaller than the border")
    error = (truth - estimate)[BORDER : rows - BORDER, BORDER : cols - BORDER]
    return float(np.mean(error * error)), float(np.mean(error))


def read_dataset_files(path):
    """Read image paths, camera-to-world poses and the reference depth map of a dataset."""
    image_files = []
    poses = []
    with open(os.path.join(path, TRAJECTORY_FILE), encoding="utf-8") as stream:
        tokens = stream.read().split()
    for start in range(0, len(tokens) - 7, 8):
        image = tokens[start]
        try:
            tx, ty, tz, qx, qy, qz, qw = (float(v) for v in tokens[start + 1 : start + 8])
        except ValueError as exc:
            raise ValueError(f"bad pose for {image}: {exc}") from exc
        image_files.append(os.path.join(path, "images", image))
        poses.append(SE3.from_quaternion(Quaternion(qw, qx, qy, qz), [tx, ty, tz]))

    with open(os.path.join(path, REFERENCE_DEPTH_FILE), encoding="utf-8") as stream:
        values = stream.read().split()
    needed = WIDTH * HEIGHT
    if len(values) < needed:
        raise ValueError(f"reference depth needs {needed} values, found {len(values)}")
    ref_depth = np.array(values[:needed], dtype=float).reshape(HEIGHT, WIDTH) / 100.0
    return image_files, poses, ref_depth


def _read_gray(path: str) -> np.ndarray:
    return np.asarray(iio.imread(path, mode="L"))


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 1:
        print("Usage: dense_mapping path_to_test_dataset")
        return -1
    try:
        image_files, poses, ref_depth = read_dataset_files(args[0])
    except (OSError, ValueError):
        print("Reading image files failed!")
        return -1
    if not image_files:
        print("Reading image files failed!")
        return -1
    print(f"read total {len(image_files)} files.")

    try:
        ref = _read_gray(image_files[0])
    except OSError:
        print("Reading image files failed!")
        return -1
    pose_ref = poses[0]
    depth = np.full((HEIGHT, WIDTH), INIT_DEPTH)
    depth_cov2 = np.full((HEIGHT, WIDTH), INIT_COV2)

    for index in range(1, len(image_files)):
        print(f"*** loop {index} ***")
        try:
            curr = _read_gray(image_files[index])
        except OSError:
            continue
        t_c_r = poses[index].inverse() * pose_ref
        update(ref, curr, t_c_r, depth, depth_cov2)
        squared, mean = evaluate_depth(ref_depth, depth)
        print(f"Average squared error = {squared:g}, average error: {mean:g}")

    print("estimation returns, saving depth map ...")
    iio.imwrite("depth.png", np.clip(np.rint(depth), 0, 255).astype(np.uint8))
    print("done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())