"""Two-view geometry: fundamental, essential and homography matrices.

Also recovers the relative pose from an essential matrix and triangulates
matched points. Pixel points are given as ``N x 2`` arrays. The relative
pose ``(R, t)`` maps a point from the first camera frame into the second:
``X2 = R @ X1 + t``.
"""

from __future__ import annotations

import math

import numpy as np

from slamkit.geometry import hat

__all__ = [
    "camera_matrix",
    "pixel2cam",
    "find_fundamental_mat",
    "find_essential_mat",
    "find_homography",
    "decompose_essential_mat",
    "triangulate_points",
    "recover_pose",
    "epipolar_constraint",
    "triangulate",
]

_EPS = 1e-12
# Points farther than this (in units of the baseline) count as at infinity.
_CHEIRALITY_DISTANCE = 50.0
_RANSAC_CONFIDENCE = 0.995
_RANSAC_MAX_ITERS = 2000


def _points(p):
    arr = np.asarray(p, dtype=float)
    if arr.size == 0:
        return arr.reshape(0, 2)
    if arr.shape[-1] != 2:
        raise ValueError(f"points must have 2 coordinates each, got shape {arr.shape}")
    return arr.reshape(-1, 2)


def _pair(points1, points2):
    p1 = _points(points1)
    p2 = _points(points2)
    if p1.shape != p2.shape:
        raise ValueError(f"point counts differ: {p1.shape[0]} and {p2.shape[0]}")
    return p1, p2


def _matrix(m, rows, cols, name):
    arr = np.asarray(m, dtype=float)
    if arr.size != rows * cols:
        raise ValueError(f"{name} must be {rows}x{cols}, got shape {arr.shape}")
    return arr.reshape(rows, cols)


def _vector3(v, name):
    arr = np.asarray(v, dtype=float).reshape(-1)
    if arr.shape[0] != 3:
        raise ValueError(f"{name} must have 3 elements, got {arr.shape[0]}")
    return arr


def camera_matrix(focal, principal_point=(0.0, 0.0)):
    """Intrinsic matrix with equal focal lengths and the given principal point."""
    cx, cy = (float(c) for c in principal_point)
    f = float(focal)
    return np.array([[f, 0.0, cx], [0.0, f, cy], [0.0, 0.0, 1.0]])


def pixel2cam(point, k):
    """Normalised camera coordinates ``(x, y)`` of a pixel."""
    k = _matrix(k, 3, 3, "camera matrix")
    u, v = np.asarray(point, dtype=float).reshape(-1)[:2]
    return np.array([(u - k[0, 2]) / k[0, 0], (v - k[1, 2]) / k[1, 1]])


def _normalizing_transform(points):
    """Shift to the centroid and scale to mean distance sqrt(2)."""
    centroid = points.mean(axis=0)
    shifted = points - centroid
    mean_dist = float(np.mean(np.linalg.norm(shifted, axis=1)))
    if mean_dist < _EPS:
        raise ValueError("points are degenerate: they all coincide")
    s = math.sqrt(2.0) / mean_dist
    transform = np.array(
        [[s, 0.0, -s * centroid[0]], [0.0, s, -s * centroid[1]], [0.0, 0.0, 1.0]]
    )
    return shifted * s, transform


def find_fundamental_mat(points1, points2):
    """Fundamental matrix by the normalised 8-point algorithm.

    The result satisfies ``x2^T F x1 = 0``, has rank 2 and is scaled so that
    ``F[2, 2] == 1`` when that entry is not zero.
    """
    p1, p2 = _pair(points1, points2)
    if p1.shape[0] < 8:
        raise ValueError(f"the 8-point algorithm needs at least 8 points, got {p1.shape[0]}")
    n1, t1 = _normalizing_transform(p1)
    n2, t2 = _normalizing_transform(p2)
    x1, y1 = n1.T
    x2, y2 = n2.T
    a = np.column_stack(
        [x2 * x1, x2 * y1, x2, y2 * x1, y2 * y1, y2, x1, y1, np.ones_like(x1)]
    )
    _, _, vt = np.linalg.svd(a)
    f = vt[-1].reshape(3, 3)

    u, s, vt = np.linalg.svd(f)
    s[2] = 0.0
    f = u @ np.diag(s) @ vt

    f = t2.T @ f @ t1
    if abs(f[2, 2]) > _EPS:
        f = f / f[2, 2]
    return f


def find_essential_mat(points1, points2, focal=1.0, principal_point=(0.0, 0.0)):
    """Essential matrix ``K^T F K`` from pixel correspondences."""
    k = camera_matrix(focal, principal_point)
    f = find_fundamental_mat(points1, points2)
    return k.T @ f @ k


def _homography_dlt(p1, p2):
    n1, t1 = _normalizing_transform(p1)
    n2, t2 = _normalizing_transform(p2)
    rows = []
    for (x, y), (u, v) in zip(n1, n2):
        rows.append([-x, -y, -1.0, 0.0, 0.0, 0.0, u * x, u * y, u])
        rows.append([0.0, 0.0, 0.0, -x, -y, -1.0, v * x, v * y, v])
    _, _, vt = np.linalg.svd(np.array(rows))
    h = vt[-1].reshape(3, 3)
    h = np.linalg.inv(t2) @ h @ t1
    if abs(h[2, 2]) > _EPS:
        h = h / h[2, 2]
    return h


def _transfer_errors(h, p1, p2):
    homogeneous = np.column_stack([p1, np.ones(p1.shape[0])]) @ h.T
    with np.errstate(divide="ignore", invalid="ignore"):
        projected = homogeneous[:, :2] / homogeneous[:, 2:3]
        errors = np.linalg.norm(projected - p2, axis=1)
    return np.where(np.isfinite(errors), errors, np.inf)


def find_homography(points1, points2, threshold=3.0, seed=None):
    """Homography mapping ``points1`` to ``points2`` estimated with RANSAC.

    Returns ``(H, inliers)``. ``H`` is scaled so that ``H[2, 2] == 1``.
    ``inliers`` is a boolean array that marks the points whose transfer
    error is at most ``threshold`` pixels.
    """
    p1, p2 = _pair(points1, points2)
    n = p1.shape[0]
    if n < 4:
        raise ValueError(f"a homography needs at least 4 points, got {n}")
    if threshold <= 0:
        raise ValueError(f"threshold must be positive, got {threshold}")

    rng = np.random.default_rng(seed)
    best_inliers = None
    best_count = -1
    max_iters = 1 if n == 4 else _RANSAC_MAX_ITERS
    iteration = 0
    while iteration < max_iters:
        iteration += 1
        sample = np.arange(4) if n == 4 else rng.choice(n, 4, replace=False)
        try:
            h = _homography_dlt(p1[sample], p2[sample])
        except (ValueError, np.linalg.LinAlgError):
            continue
        if not np.all(np.isfinite(h)):
            continue
        inliers = _transfer_errors(h, p1, p2) <= threshold
        count = int(np.count_nonzero(inliers))
        if count > best_count:
            best_count = count
            best_inliers = inliers
            ratio = count / n
            if ratio >= 1.0:
                break
            if ratio > 0.0:
                denom = math.log(max(1.0 - ratio**4, _EPS))
                needed = math.log(1.0 - _RANSAC_CONFIDENCE) / denom if denom < 0 else max_iters
                max_iters = min(max_iters, max(int(math.ceil(needed)), iteration))

    if best_inliers is None or best_count < 4:
        raise ValueError("could not estimate a homography from these points")
    h = _homography_dlt(p1[best_inliers], p2[best_inliers])
    inliers = _transfer_errors(h, p1, p2) <= threshold
    return h, inliers


def decompose_essential_mat(e):
    """The two rotations and the unit translation direction of an essential matrix.

    Returns ``(R1, R2, t)`` with ``R1 = U W V^T``, ``R2 = U W^T V^T`` and ``t``
    the last column of ``U``. The four pose candidates are
    ``(R1, t), (R2, t), (R1, -t), (R2, -t)``.
    """
    e = _matrix(e, 3, 3, "essential matrix")
    u, _, vt = np.linalg.svd(e)
    if np.linalg.det(u) < 0:
        u = -u
    if np.linalg.det(vt) < 0:
        vt = -vt
    w = np.array([[0.0, 1.0, 0.0], [-1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    r1 = u @ w @ vt
    r2 = u @ w.T @ vt
    t = u[:, 2].copy()
    return r1, r2, t


def triangulate_points(projection1, projection2, points1, points2):
    """Homogeneous 3D points (``4 x N``) seen at ``points1`` and ``points2``.

    Uses the linear DLT method. The scale and sign of each column are
    arbitrary.
    """
    p1m = _matrix(projection1, 3, 4, "projection matrix")
    p2m = _matrix(projection2, 3, 4, "projection matrix")
    a1, a2 = _pair(points1, points2)
    if a1.shape[0] == 0:
        return np.zeros((4, 0))
    x1, y1 = a1[:, 0:1], a1[:, 1:2]
    x2, y2 = a2[:, 0:1], a2[:, 1:2]
    systems = np.stack(
        [
            x1 * p1m[2] - p1m[0],
            y1 * p1m[2] - p1m[1],
            x2 * p2m[2] - p2m[0],
            y2 * p2m[2] - p2m[1],
        ],
        axis=1,
    )
    _, _, vt = np.linalg.svd(systems)
    return vt[:, -1, :].T.copy()


def _cheirality_mask(p0, p, points1, points2):
    q = triangulate_points(p0, p, points1, points2)
    with np.errstate(divide="ignore", invalid="ignore"):
        mask = q[2] * q[3] > 0
        q = q / q[3]
        mask &= q[2] < _CHEIRALITY_DISTANCE
        q2 = p @ q
        mask &= q2[2] > 0
        mask &= q2[2] < _CHEIRALITY_DISTANCE
    return mask


def recover_pose(e, points1, points2, focal=1.0, principal_point=(0.0, 0.0), mask=None):
    """Choose the pose candidate of ``e`` that puts the most points in front of both cameras.

    Returns ``(good, R, t, inliers)``. ``good`` is the number of points that
    pass the cheirality check. ``inliers`` is the boolean mask of those
    points. When ``mask`` is given, only its non-zero entries can count.
    """
    a1, a2 = _pair(points1, points2)
    f = float(focal)
    cx, cy = (float(c) for c in principal_point)
    centre = np.array([cx, cy])
    n1 = (a1 - centre) / f
    n2 = (a2 - centre) / f

    r1, r2, t = decompose_essential_mat(e)
    candidates = [(r1, t), (r2, t), (r1, -t), (r2, -t)]
    p0 = np.eye(3, 4)
    masks = [
        _cheirality_mask(p0, np.hstack([r, tt[:, None]]), n1, n2) for r, tt in candidates
    ]

    if mask is not None:
        given = np.asarray(mask).reshape(-1) != 0
        if given.shape[0] != a1.shape[0]:
            raise ValueError(f"mask has {given.shape[0]} entries for {a1.shape[0]} points")
        masks = [given & m for m in masks]

    goods = [int(np.count_nonzero(m)) for m in masks]
    best = goods.index(max(goods))
    rotation, translation = candidates[best]
    return goods[best], rotation.copy(), translation.copy(), masks[best]


def epipolar_constraint(point1, point2, rotation, translation, k):
    """Residual ``y2^T t^ R y1`` of the epipolar constraint for one pixel pair."""
    r = _matrix(rotation, 3, 3, "rotation")
    t = _vector3(translation, "translation")
    y1 = np.append(pixel2cam(point1, k), 1.0)
    y2 = np.append(pixel2cam(point2, k), 1.0)
    return float(y2 @ hat(t) @ r @ y1)


def triangulate(points1, points2, rotation, translation, k):
    """3D points (``N x 3``) in the first camera frame from matched pixels."""
    r = _matrix(rotation, 3, 3, "rotation")
    t = _vector3(translation, "translation")
    a1, a2 = _pair(points1, points2)
    cam1 = np.array([pixel2cam(p, k) for p in a1]).reshape(-1, 2)
    cam2 = np.array([pixel2cam(p, k) for p in a2]).reshape(-1, 2)
    t1 = np.eye(3, 4)
    t2 = np.hstack([r, t[:, None]])
    homogeneous = triangulate_points(t1, t2, cam1, cam2)
    with np.errstate(divide="ignore", invalid="ignore"):
        return (homogeneous[:3] / homogeneous[3]).T