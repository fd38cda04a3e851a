"""Dense monocular depth estimation along a known camera trajectory.

Each reference pixel keeps a Gaussian depth estimate (mean and variance).
Every new frame is searched along the epipolar line with zero-mean NCC.
The match is triangulated, and the resulting depth is fused into the
estimate.
"""

from __future__ import annotations

import math
import sys
from dataclasses import dataclass, replace
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from slamkit.geometry import SE3, transform_from_pose

__all__ = [
    "DepthMapConfig",
    "read_dataset",
    "px2cam",
    "cam2px",
    "inside",
    "bilinear",
    "ncc",
    "epipolar_search",
    "update_depth_filter",
    "update",
    "main",
]

_TRAJECTORY_FILE = "first_200_frames_traj_over_table_input_sequence.txt"
_SEARCH_STEP = 0.7
_MAX_HALF_LENGTH = 100.0
_MIN_NCC = 0.85
_MIN_DEPTH = 0.1


@dataclass(frozen=True)
class DepthMapConfig:
    """Image size, intrinsics and filter limits."""

    border: int = 20
    width: int = 640
    height: int = 480
    fx: float = 481.2
    fy: float = -480.0
    cx: float = 319.5
    cy: float = 239.5
    ncc_window_size: int = 2
    min_cov: float = 0.1
    max_cov: float = 10.0
    init_depth: float = 3.0
    init_cov2: float = 3.0

    @property
    def ncc_area(self):
        return (2 * self.ncc_window_size + 1) ** 2


def _rt(transform):
    """Rotation and translation of an SE3 or a 4x4 matrix."""
    m = transform.matrix() if isinstance(transform, SE3) else transform
    m = np.asarray(m, dtype=float)
    if m.shape != (4, 4):
        raise ValueError(f"transform must be 4x4, got shape {m.shape}")
    return m[:3, :3], m[:3, 3]


def read_dataset(path):
    """Image paths and camera-to-world poses listed in the dataset's trajectory file.

    Each line holds ``image tx ty tz qx qy qz qw``.
    """
    root = Path(path)
    files = []
    poses = []
    with open(root / _TRAJECTORY_FILE, encoding="utf-8") as handle:
        for line_number, line in enumerate(handle, start=1):
            tokens = line.split()
            if not tokens:
                continue
            if len(tokens) < 8:
                raise ValueError(f"line {line_number}: expected 8 fields, got {len(tokens)}")
            m = transform_from_pose([float(v) for v in tokens[1:8]])
            files.append(str(root / "images" / tokens[0]))
            poses.append(SE3(m[:3, :3], m[:3, 3]))
    return files, poses


def px2cam(px, config):
    """Point on the normalised image plane (``z = 1``) for a pixel."""
    return np.array([(px[0] - config.cx) / config.fx, (px[1] - config.cy) / config.fy, 1.0])


def cam2px(point, config):
    """Pixel at which a camera-frame point projects."""
    return np.array(
        [
            point[0] * config.fx / point[2] + config.cx,
            point[1] * config.fy / point[2] + config.cy,
        ]
    )


def inside(pt, config):
    """True when ``pt`` keeps at least ``border`` pixels from the image edge."""
    b = config.border
    return pt[0] >= b and pt[1] >= b and pt[0] + b < config.width and pt[1] + b <= config.height


def _bilinear_many(image, xs, ys):
    ix = xs.astype(int)
    iy = ys.astype(int)
    xx = xs - np.floor(xs)
    yy = ys - np.floor(ys)
    img = np.asarray(image)
    v00 = img[iy, ix].astype(float)
    v01 = img[iy, ix + 1].astype(float)
    v10 = img[iy + 1, ix].astype(float)
    v11 = img[iy + 1, ix + 1].astype(float)
    return (
        (1 - xx) * (1 - yy) * v00 + xx * (1 - yy) * v01 + (1 - xx) * yy * v10 + xx * yy * v11
    ) / 255.0


def bilinear(image, pt):
    """Grey value in ``[0, 1]`` at a sub-pixel position."""
    value = _bilinear_many(image, np.array([float(pt[0])]), np.array([float(pt[1])]))
    return float(value[0])


def ncc(ref, curr, pt_ref, pt_curr, config):
    """Zero-mean normalised cross-correlation of the windows around two points."""
    w = config.ncc_window_size
    offsets = np.arange(-w, w + 1, dtype=float)
    dx, dy = np.meshgrid(offsets, offsets, indexing="ij")
    dx = dx.ravel()
    dy = dy.ravel()
    ref_arr = np.asarray(ref)
    values_ref = (
        ref_arr[(dy + pt_ref[1]).astype(int), (dx + pt_ref[0]).astype(int)].astype(float) / 255.0
    )
    values_curr = _bilinear_many(curr, pt_curr[0] + dx, pt_curr[1] + dy)
    centred_ref = values_ref - values_ref.sum() / config.ncc_area
    centred_curr = values_curr - values_curr.sum() / config.ncc_area
    numerator = float(centred_ref @ centred_curr)
    denominator = float(centred_ref @ centred_ref) * float(centred_curr @ centred_curr)
    return numerator / math.sqrt(denominator + 1e-10)


def _normalized(v):
    n = float(np.linalg.norm(v))
    return v / n if n > 0 else v


def epipolar_search(ref, curr, t_c_r, pt_ref, depth_mu, depth_cov, config):
    """Best NCC match of ``pt_ref`` along its epipolar segment in ``curr``.

    ``depth_cov`` is the standard deviation of the depth. The segment spans
    three of them around ``depth_mu``. Returns the matched pixel, or
    ``None`` when no candidate scores at least 0.85.
    """
    rotation, translation = _rt(t_c_r)
    f_ref = _normalized(px2cam(pt_ref, config))

    def to_curr(depth):
        return cam2px(rotation @ (f_ref * depth) + translation, config)

    px_mean = to_curr(depth_mu)
    d_min = max(depth_mu - 3 * depth_cov, _MIN_DEPTH)
    d_max = depth_mu + 3 * depth_cov
    px_min = to_curr(d_min)
    px_max = to_curr(d_max)

    line = px_max - px_min
    direction = _normalized(line)
    half_length = min(0.5 * float(np.linalg.norm(line)), _MAX_HALF_LENGTH)

    best_ncc = -1.0
    best_px = None
    steps = int(math.floor(2 * half_length / _SEARCH_STEP + 1e-12)) + 1
    for l in -half_length + _SEARCH_STEP * np.arange(steps):
        px_curr = px_mean + l * direction
        if not inside(px_curr, config):
            continue
        score = ncc(ref, curr, pt_ref, px_curr, config)
        if score > best_ncc:
            best_ncc = score
            best_px = px_curr
    if best_ncc < _MIN_NCC:
        return None
    return best_px


def update_depth_filter(pt_ref, pt_curr, t_c_r, depth, depth_cov, config):
    """Triangulate a match and fuse the depth into ``depth`` and ``depth_cov`` in place.

    Returns the fused ``(mean, variance)`` at ``pt_ref``.
    """
    rotation, translation = _rt(t_c_r)
    r_rc = rotation.T
    t = -r_rc @ translation

    f_ref = _normalized(px2cam(pt_ref, config))
    f_curr = _normalized(px2cam(pt_curr, config))
    f2 = r_rc @ f_curr
    b = np.array([t @ f_ref, t @ f2])
    a0 = f_ref @ f_ref
    a2 = f_ref @ f2
    a1 = -a2
    a3 = -(f2 @ f2)
    det = a0 * a3 - a1 * a2
    lambdas = np.array([a3 * b[0] - a1 * b[1], -a2 * b[0] + a0 * b[1]]) / det
    xm = lambdas[0] * f_ref
    xn = t + lambdas[1] * f2
    depth_estimation = float(np.linalg.norm((xm + xn) / 2.0))

    # Uncertainty from a one-pixel error in the current frame.
    p = f_ref * depth_estimation
    a = p - t
    t_norm = float(np.linalg.norm(t))
    a_norm = float(np.linalg.norm(a))
    alpha = math.acos(min(max(float(f_ref @ t) / t_norm, -1.0), 1.0))
    beta = math.acos(min(max(float(-a @ t) / (a_norm * t_norm), -1.0), 1.0))
    beta_prime = beta + math.atan(1.0 / config.fx)
    gamma = math.pi - alpha - beta_prime
    p_prime = t_norm * math.sin(beta_prime) / math.sin(gamma)
    d_cov2 = (p_prime - depth_estimation) ** 2

    row, col = int(pt_ref[1]), int(pt_ref[0])
    mu = float(depth[row, col])
    sigma2 = float(depth_cov[row, col])
    mu_fuse = (d_cov2 * mu + sigma2 * depth_estimation) / (sigma2 + d_cov2)
    sigma_fuse2 = (sigma2 * d_cov2) / (sigma2 + d_cov2)
    depth[row, col] = mu_fuse
    depth_cov[row, col] = sigma_fuse2
    return mu_fuse, sigma_fuse2


def update(ref, curr, t_c_r, depth, depth_cov, config):
    """Refine every unconverged pixel of the depth map with a new frame.

    Returns the number of pixels that were updated.
    """
    shape = (config.height, config.width)
    for name, arr in (("ref", ref), ("curr", curr), ("depth", depth), ("depth_cov", depth_cov)):
        if np.shape(arr) != shape:
            raise ValueError(f"{name} has shape {np.shape(arr)}, expected {shape}")
    updated = 0
    for x in range(config.border, config.width - config.border):
        for y in range(config.border, config.height - config.border):
            cov = depth_cov[y, x]
            if cov < config.min_cov or cov > config.max_cov:
                continue
            pt_ref = np.array([float(x), float(y)])
            pt_curr = epipolar_search(
                ref, curr, t_c_r, pt_ref, float(depth[y, x]), math.sqrt(cov), config
            )
            if pt_curr is None:
                continue
            update_depth_filter(pt_ref, pt_curr, t_c_r, depth, depth_cov, config)
            updated += 1
    return updated


def _load_gray(path):
    with Image.open(path) as img:
        return np.array(img.convert("L"))


def main(argv=None):
    """Estimate the depth map of the first frame of a dataset and save it."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 1:
        print("Usage: dense_mapping path_to_test_dataset")
        return -1
    try:
        files, poses = read_dataset(args[0])
    except (FileNotFoundError, ValueError):
        print("Reading image files failed!")
        return -1
    print(f"read total {len(files)} files.")
    if not files:
        print("Reading image files failed!")
        return -1

    ref = _load_gray(files[0])
    config = replace(DepthMapConfig(), width=ref.shape[1], height=ref.shape[0])
    pose_ref = poses[0]
    depth = np.full(ref.shape, config.init_depth)
    depth_cov = np.full(ref.shape, config.init_cov2)

    for index in range(1, len(files)):
        print(f"*** loop {index} ***")
        try:
            curr = _load_gray(files[index])
        except (FileNotFoundError, UnidentifiedImageError, OSError):
            continue
        if curr.shape != ref.shape:
            continue
        t_c_r = poses[index].inverse() * pose_ref
        update(ref, curr, t_c_r, depth, depth_cov, config)

    print("estimation returns, saving depth map ...")
    Image.fromarray(np.clip(np.rint(depth), 0, 255).astype(np.uint8)).save("depth.png")
    print("done.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())