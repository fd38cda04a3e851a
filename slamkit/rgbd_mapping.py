"""Building maps from RGB-D frames with known camera poses.

It back-projects depth images into a coloured point cloud, filters the
cloud (statistical outliers and voxel grid), writes it as binary PCD and
builds a probabilistic voxel occupancy map by ray casting.
"""

from __future__ import annotations

import argparse
import math
import sys
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image

from slamkit.geometry import transform_from_pose

__all__ = [
    "Intrinsics",
    "PointCloud",
    "read_poses",
    "back_project",
    "statistical_outlier_removal",
    "voxel_filter",
    "write_pcd",
    "OccupancyMap",
    "main",
]


def _log_odds(p):
    return math.log(p / (1.0 - p))


_LOG_HIT = _log_odds(0.7)
_LOG_MISS = _log_odds(0.4)
_CLAMP_MIN = _log_odds(0.1192)
_CLAMP_MAX = _log_odds(0.971)
_OCCUPIED = _log_odds(0.5)


@dataclass(frozen=True)
class Intrinsics:
    """Pinhole intrinsics and the factor turning raw depth into metres."""

    cx: float = 325.5
    cy: float = 253.5
    fx: float = 518.0
    fy: float = 519.0
    depth_scale: float = 1000.0


@dataclass(eq=False)
class PointCloud:
    """``N x 3`` points with ``N x 3`` RGB colours."""

    points: np.ndarray
    colors: np.ndarray | None = None

    def __post_init__(self):
        points = np.asarray(self.points, dtype=float)
        if points.size == 0:
            points = points.reshape(0, 3)
        if points.ndim != 2 or points.shape[1] != 3:
            raise ValueError(f"points must be an N x 3 array, got shape {points.shape}")
        if self.colors is None:
            colors = np.zeros((points.shape[0], 3), dtype=np.uint8)
        else:
            colors = np.asarray(self.colors, dtype=np.uint8)
            if colors.size == 0:
                colors = colors.reshape(0, 3)
            if colors.shape != points.shape:
                raise ValueError(
                    f"colors must have shape {points.shape}, got {colors.shape}"
                )
        self.points = points
        self.colors = colors

    def __len__(self):
        return self.points.shape[0]

    def __add__(self, other):
        if not isinstance(other, PointCloud):
            return NotImplemented
        return PointCloud(
            np.concatenate([self.points, other.points]),
            np.concatenate([self.colors, other.colors]),
        )


def read_poses(path, count=None):
    """4x4 camera-to-world transforms from lines of ``tx ty tz qx qy qz qw``.

    With ``count`` only the first ``count`` poses are read, and the file must
    hold at least that many.
    """
    with open(path, encoding="utf-8") as handle:
        values = [float(token) for token in handle.read().split()]
    if count is None:
        if len(values) % 7:
            raise ValueError(f"{len(values)} numbers do not form whole 7-value poses")
        count = len(values) // 7
    elif count < 0:
        raise ValueError(f"count must be non-negative, got {count}")
    elif len(values) < 7 * count:
        raise ValueError(f"expected {count} poses, found {len(values) // 7}")
    return [transform_from_pose(values[7 * i : 7 * i + 7]) for i in range(count)]


def back_project(color, depth, pose, intrinsics=None, max_depth=None):
    """World-frame point cloud of a depth image, coloured from ``color``.

    Pixels with zero depth are skipped, and so are pixels whose raw depth is
    at least ``max_depth`` when that is given. ``color`` may be ``None``,
    a grey image or an RGB image. Points come out in row-major pixel order.
    """
    intrinsics = intrinsics or Intrinsics()
    depth = np.asarray(depth)
    if depth.ndim != 2:
        raise ValueError(f"depth must be a 2D image, got {depth.ndim} dimensions")
    pose = np.asarray(pose, dtype=float)
    if pose.shape != (4, 4):
        raise ValueError(f"pose must be a 4x4 transform, got shape {pose.shape}")

    mask = depth != 0
    if max_depth is not None:
        mask &= depth < max_depth
    v, u = np.nonzero(mask)
    z = depth[v, u].astype(float) / intrinsics.depth_scale
    x = (u - intrinsics.cx) * z / intrinsics.fx
    y = (v - intrinsics.cy) * z / intrinsics.fy
    camera = np.column_stack([x, y, z])
    world = camera @ pose[:3, :3].T + pose[:3, 3]

    if color is None:
        return PointCloud(world)
    color = np.asarray(color)
    if color.shape[:2] != depth.shape:
        raise ValueError(
            f"colour image of shape {color.shape[:2]} does not match depth {depth.shape}"
        )
    if color.ndim == 2:
        colors = np.repeat(color[v, u][:, None], 3, axis=1)
    else:
        colors = color[v, u, :3]
    return PointCloud(world, colors)


def _mean_neighbour_distances(points, k):
    n = points.shape[0]
    squared_norms = np.einsum("ij,ij->i", points, points)
    chunk = max(1, 2_000_000 // n)
    out = np.empty(n)
    for start in range(0, n, chunk):
        block = points[start : start + chunk]
        d2 = squared_norms[start : start + chunk, None] + squared_norms[None, :] - 2.0 * (
            block @ points.T
        )
        rows = np.arange(block.shape[0])
        d2[rows, start + rows] = np.inf
        nearest = np.partition(d2, k - 1, axis=1)[:, :k]
        out[start : start + block.shape[0]] = np.sqrt(np.maximum(nearest, 0.0)).mean(axis=1)
    return out


def statistical_outlier_removal(cloud, mean_k=50, std_mul=1.0):
    """Drop points whose mean distance to their ``mean_k`` nearest neighbours is too large.

    The cut-off is the mean of those distances over the cloud plus
    ``std_mul`` sample standard deviations.
    """
    if mean_k < 1:
        raise ValueError(f"mean_k must be at least 1, got {mean_k}")
    n = len(cloud)
    if n < 2:
        return PointCloud(cloud.points.copy(), cloud.colors.copy())
    k = min(mean_k, n - 1)
    distances = _mean_neighbour_distances(cloud.points, k)
    threshold = distances.mean() + std_mul * distances.std(ddof=1)
    keep = distances <= threshold
    return PointCloud(cloud.points[keep], cloud.colors[keep])


def voxel_filter(cloud, leaf_size):
    """Replace the points of every voxel by their centroid and mean colour."""
    leaf = np.broadcast_to(np.asarray(leaf_size, dtype=float), (3,))
    if np.any(leaf <= 0):
        raise ValueError(f"leaf size must be positive, got {leaf_size}")
    if len(cloud) == 0:
        return PointCloud(cloud.points.copy(), cloud.colors.copy())
    keys = np.floor(cloud.points / leaf).astype(np.int64)
    keys -= keys.min(axis=0)
    _, inverse = np.unique(keys[:, ::-1], axis=0, return_inverse=True)
    inverse = inverse.reshape(-1)
    counts = np.bincount(inverse).astype(float)
    points = np.column_stack(
        [np.bincount(inverse, weights=cloud.points[:, i]) / counts for i in range(3)]
    )
    colors = np.column_stack(
        [
            np.bincount(inverse, weights=cloud.colors[:, i].astype(float)) / counts
            for i in range(3)
        ]
    )
    return PointCloud(points, np.floor(colors).astype(np.uint8))


def write_pcd(path, cloud):
    """Write ``cloud`` as a binary PCD file with fields ``x y z rgb``."""
    n = len(cloud)
    header = "\n".join(
        [
            "# .PCD v0.7 - Point Cloud Data file format",
            "VERSION 0.7",
            "FIELDS x y z rgb",
            "SIZE 4 4 4 4",
            "TYPE F F F F",
            "COUNT 1 1 1 1",
            f"WIDTH {n}",
            "HEIGHT 1",
            "VIEWPOINT 0 0 0 1 0 0 0",
            f"POINTS {n}",
            "DATA binary",
        ]
    )
    record = np.zeros(n, dtype=[("x", "<f4"), ("y", "<f4"), ("z", "<f4"), ("rgb", "<u4")])
    record["x"] = cloud.points[:, 0]
    record["y"] = cloud.points[:, 1]
    record["z"] = cloud.points[:, 2]
    colors = cloud.colors.astype(np.uint32)
    record["rgb"] = (colors[:, 0] << 16) | (colors[:, 1] << 8) | colors[:, 2]
    with open(path, "wb") as handle:
        handle.write((header + "\n").encode("ascii"))
        handle.write(record.tobytes())


class OccupancyMap:
    """Voxel occupancy stored as clamped log-odds, updated by ray casting."""

    def __init__(self, resolution=0.05):
        if resolution <= 0:
            raise ValueError(f"resolution must be positive, got {resolution}")
        self.resolution = float(resolution)
        self._log_odds: dict[tuple[int, int, int], float] = {}

    def _key(self, point):
        return tuple(int(math.floor(c / self.resolution)) for c in point)

    def _ray_keys(self, origin, end):
        """Voxels crossed from ``origin`` up to, but not including, the voxel of ``end``."""
        start_key = self._key(origin)
        end_key = self._key(end)
        if start_key == end_key:
            return []
        direction = end - origin
        length = float(np.linalg.norm(direction))
        direction = direction / length

        current = list(start_key)
        step = [0, 0, 0]
        t_max = [math.inf] * 3
        t_delta = [math.inf] * 3
        for axis, (d, o) in enumerate(zip(direction, origin)):
            if d > 0:
                step[axis] = 1
                border = (current[axis] + 1) * self.resolution
            elif d < 0:
                step[axis] = -1
                border = current[axis] * self.resolution
            else:
                continue
            t_max[axis] = (border - o) / d
            t_delta[axis] = self.resolution / abs(d)

        keys = [start_key]
        while True:
            axis = min(range(3), key=t_max.__getitem__)
            current[axis] += step[axis]
            t_max[axis] += t_delta[axis]
            key = tuple(current)
            if key == end_key or min(t_max) > length:
                break
            keys.append(key)
        return keys

    def _update(self, key, delta):
        value = self._log_odds.get(key, 0.0) + delta
        self._log_odds[key] = min(max(value, _CLAMP_MIN), _CLAMP_MAX)

    def insert_point_cloud(self, points, origin):
        """Mark the end voxels as hit and the voxels along each ray as missed."""
        if isinstance(points, PointCloud):
            pts = points.points
        else:
            pts = np.asarray(points, dtype=float).reshape(-1, 3)
        origin = np.asarray(origin, dtype=float).reshape(-1)
        if origin.shape[0] != 3:
            raise ValueError(f"origin must have 3 coordinates, got {origin.shape[0]}")
        free: set[tuple[int, int, int]] = set()
        occupied: set[tuple[int, int, int]] = set()
        for point in pts:
            occupied.add(self._key(point))
            free.update(self._ray_keys(origin, point))
        free -= occupied
        for key in free:
            self._update(key, _LOG_MISS)
        for key in occupied:
            self._update(key, _LOG_HIT)

    def is_occupied(self, point):
        """True when the voxel holding ``point`` is known and occupied."""
        value = self._log_odds.get(self._key(np.asarray(point, dtype=float).reshape(3)))
        return value is not None and value >= _OCCUPIED

    def occupied_voxels(self):
        """Centres of the occupied voxels as an ``N x 3`` array, sorted by voxel index."""
        keys = sorted(k for k, v in self._log_odds.items() if v >= _OCCUPIED)
        if not keys:
            return np.zeros((0, 3))
        return (np.array(keys, dtype=float) + 0.5) * self.resolution


def _load_color(path):
    with Image.open(path) as img:
        return np.array(img.convert("RGB"))


def _load_depth(path):
    with Image.open(path) as img:
        return np.array(img)


def main(argv=None):
    """Join RGB-D frames into a point cloud or an occupancy map."""
    parser = argparse.ArgumentParser(prog="rgbd_mapping", description=__doc__)
    parser.add_argument("mode", choices=("join", "pointcloud", "octomap"))
    parser.add_argument("--data", default=None, help="directory holding pose.txt, color/ and depth/")
    parser.add_argument("--frames", type=int, default=5)
    parser.add_argument("--output", default=None)
    args = parser.parse_args(sys.argv[1:] if argv is None else list(argv))

    data = Path(args.data if args.data is not None else ("." if args.mode == "join" else "data"))
    try:
        poses = read_poses(data / "pose.txt", args.frames)
    except FileNotFoundError:
        print("cannot find pose file", file=sys.stderr)
        return 1

    intrinsics = Intrinsics()
    max_depth = None if args.mode == "join" else 7000

    if args.mode == "octomap":
        print("Converting images to an occupancy map ...")
        occupancy = OccupancyMap(0.05)
        for i, pose in enumerate(poses, start=1):
            print(f"Converting image: {i}")
            depth = _load_depth(data / "depth" / f"{i}.pgm")
            cloud = back_project(None, depth, pose, intrinsics, max_depth)
            occupancy.insert_point_cloud(cloud, pose[:3, 3])
        output = args.output or "octomap.pcd"
        print("saving occupancy map ...")
        write_pcd(output, PointCloud(occupancy.occupied_voxels()))
        return 0

    print("Converting images to a point cloud ...")
    cloud = PointCloud(np.zeros((0, 3)))
    for i, pose in enumerate(poses, start=1):
        print(f"Converting image: {i}")
        color = _load_color(data / "color" / f"{i}.png")
        depth = _load_depth(data / "depth" / f"{i}.pgm")
        current = back_project(color, depth, pose, intrinsics, max_depth)
        if args.mode == "pointcloud":
            current = statistical_outlier_removal(current, 50, 1.0)
        cloud = cloud + current
    print(f"The point cloud has {len(cloud)} points.")
    if args.mode == "pointcloud":
        cloud = voxel_filter(cloud, 0.01)
        print(f"After filtering, the point cloud has {len(cloud)} points.")
    write_pcd(args.output or "map.pcd", cloud)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())