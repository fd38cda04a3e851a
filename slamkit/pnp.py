"""Camera pose from 3D-2D correspondences.

It lifts RGB-D pixels to 3D, projects points with a pinhole model, gives a
linear (DLT) PnP estimate and refines the pose by minimising the
reprojection error. Poses are :class:`~slamkit.geometry.SE3` transforms
that map world points into the camera frame.
"""

from __future__ import annotations

import numpy as np

from slamkit.epipolar import pixel2cam
from slamkit.geometry import SE3, hat

__all__ = ["backproject", "project", "solve_pnp_dlt", "bundle_adjustment"]

_EPS = 1e-12
_MAX_LAMBDA = 1e10


def _camera(k):
    arr = np.asarray(k, dtype=float)
    if arr.size != 9:
        raise ValueError(f"camera matrix must be 3x3, got shape {arr.shape}")
    return arr.reshape(3, 3)


def _correspondences(points_3d, points_2d):
    p3 = np.asarray(points_3d, dtype=float)
    p2 = np.asarray(points_2d, dtype=float)
    p3 = p3.reshape(0, 3) if p3.size == 0 else p3.reshape(-1, 3)
    p2 = p2.reshape(0, 2) if p2.size == 0 else p2.reshape(-1, 2)
    if p3.shape[0] != p2.shape[0]:
        raise ValueError(f"point counts differ: {p3.shape[0]} and {p2.shape[0]}")
    return p3, p2


def backproject(pixel, depth, k, depth_scale=5000.0):
    """3D point in the camera frame of a pixel with raw depth ``depth``."""
    if depth <= 0:
        raise ValueError(f"depth must be positive, got {depth}")
    dd = float(depth) / depth_scale
    x, y = pixel2cam(pixel, _camera(k))
    return np.array([x * dd, y * dd, dd])


def project(pose, point, k):
    """Pixel ``(u, v)`` at which the camera with ``pose`` sees ``point``."""
    k = _camera(k)
    p = pose.act(np.asarray(point, dtype=float).reshape(3))
    if p[2] == 0:
        raise ValueError("point lies in the camera's focal plane")
    return np.array([k[0, 0] * p[0] / p[2] + k[0, 2], k[1, 1] * p[1] / p[2] + k[1, 2]])


def solve_pnp_dlt(points_3d, points_2d, k):
    """Rotation and translation ``(R, t)`` from at least 6 correspondences by DLT."""
    p3, p2 = _correspondences(points_3d, points_2d)
    n = p3.shape[0]
    if n < 6:
        raise ValueError(f"the DLT needs at least 6 correspondences, got {n}")
    k = _camera(k)
    normalised = np.column_stack([p2, np.ones(n)]) @ np.linalg.inv(k).T
    x = normalised[:, 0] / normalised[:, 2]
    y = normalised[:, 1] / normalised[:, 2]

    world = np.column_stack([p3, np.ones(n)])
    zeros = np.zeros_like(world)
    a = np.vstack(
        [
            np.hstack([world, zeros, -x[:, None] * world]),
            np.hstack([zeros, world, -y[:, None] * world]),
        ]
    )
    _, _, vt = np.linalg.svd(a)
    p = vt[-1].reshape(3, 4)
    if np.linalg.det(p[:, :3]) < 0:
        p = -p
    u, singular, wt = np.linalg.svd(p[:, :3])
    scale = float(singular.mean())
    if scale < _EPS:
        raise ValueError("the correspondences are degenerate")
    rotation = u @ wt
    translation = p[:, 3] / scale
    return rotation, translation


def _linearize(pose, p3, p2, k):
    n = p3.shape[0]
    errors = np.empty(2 * n)
    jacobian = np.empty((2 * n, 6))
    fx, fy = k[0, 0], k[1, 1]
    for i, (point, measured) in enumerate(zip(p3, p2)):
        q = pose.act(point)
        x, y, z = q
        predicted = np.array([fx * x / z + k[0, 2], fy * y / z + k[1, 2]])
        errors[2 * i : 2 * i + 2] = measured - predicted
        d_proj = np.array([[fx / z, 0.0, -fx * x / (z * z)], [0.0, fy / z, -fy * y / (z * z)]])
        d_point = np.hstack([np.eye(3), -hat(q)])
        jacobian[2 * i : 2 * i + 2] = -d_proj @ d_point
    return errors, jacobian


def bundle_adjustment(points_3d, points_2d, k, rotation, translation, iterations=100):
    """Levenberg-Marquardt refinement of the pose from a starting ``(R, t)``.

    Minimises the squared reprojection error over all correspondences and
    returns the refined :class:`SE3`.
    """
    p3, p2 = _correspondences(points_3d, points_2d)
    if p3.shape[0] == 0:
        raise ValueError("no correspondences to optimise over")
    k = _camera(k)
    pose = SE3(
        np.asarray(rotation, dtype=float).reshape(3, 3),
        np.asarray(translation, dtype=float).reshape(3),
    )
    errors, jacobian = _linearize(pose, p3, p2, k)
    cost = 0.5 * float(errors @ errors)
    lam = None
    for _ in range(iterations):
        h = jacobian.T @ jacobian
        g = jacobian.T @ errors
        if lam is None:
            lam = 1e-4 * max(float(np.max(np.diag(h))), _EPS)
        try:
            dx = np.linalg.solve(h + lam * np.eye(6), -g)
        except np.linalg.LinAlgError:
            break
        candidate = SE3.exp(dx) * pose
        new_errors, new_jacobian = _linearize(candidate, p3, p2, k)
        new_cost = 0.5 * float(new_errors @ new_errors)
        if np.isfinite(new_cost) and new_cost < cost:
            pose, errors, jacobian, cost = candidate, new_errors, new_jacobian, new_cost
            lam /= 10.0
            if np.linalg.norm(dx) < 1e-12:
                break
        else:
            lam *= 10.0
            if lam > _MAX_LAMBDA:
                break
    return pose