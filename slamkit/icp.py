"""Rigid alignment of matched 3D point sets.

The closed-form SVD solution and a Gauss-Newton refinement of the pose.
Both estimate the transform ``T`` with ``points1 ~= T * points2``.
"""

from __future__ import annotations

import numpy as np

from slamkit.geometry import SE3, hat

__all__ = ["icp_svd", "point_error", "point_jacobian", "refine_pose"]

# Information (inverse covariance) given to every point-to-point term.
_INFORMATION = 1e4 * np.eye(3)


def _points3(p, name):
    arr = np.asarray(p, dtype=float)
    if arr.size == 0:
        arr = arr.reshape(0, 3)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"{name} must be an N x 3 array, got shape {arr.shape}")
    return arr


def _pair(points1, points2):
    p1 = _points3(points1, "points1")
    p2 = _points3(points2, "points2")
    if p1.shape != p2.shape:
        raise ValueError(f"point counts differ: {p1.shape[0]} and {p2.shape[0]}")
    if p1.shape[0] == 0:
        raise ValueError("no point pairs to align")
    return p1, p2


def icp_svd(points1, points2):
    """Rotation and translation ``(R, t)`` minimising ``sum |p1 - (R p2 + t)|^2``."""
    p1, p2 = _pair(points1, points2)
    c1 = p1.mean(axis=0)
    c2 = p2.mean(axis=0)
    q1 = p1 - c1
    q2 = p2 - c2
    w = q1.T @ q2
    u, _, vt = np.linalg.svd(w)
    v = vt.T
    if np.linalg.det(u) * np.linalg.det(v) < 0:
        u = u.copy()
        u[:, 2] *= -1.0
    rotation = u @ v.T
    translation = c1 - rotation @ c2
    return rotation, translation


def point_error(pose, point, measurement):
    """Residual ``measurement - pose * point``."""
    return np.asarray(measurement, dtype=float).reshape(3) - pose.act(point)


def point_jacobian(pose, point):
    """3x6 Jacobian of :func:`point_error` for a left update ``exp(d) * pose``.

    The update vector holds the rotation part first and the translation
    part second.
    """
    transformed = pose.act(point)
    jacobian = np.zeros((3, 6))
    jacobian[:, :3] = hat(transformed)
    jacobian[:, 3:] = -np.eye(3)
    return jacobian


def refine_pose(points1, points2, iterations=10):
    """Gauss-Newton estimate of the pose mapping ``points2`` onto ``points1``.

    Starts from the identity and runs at most ``iterations`` steps. It stops
    early when the normal equations are singular or the step vanishes.
    """
    p1, p2 = _pair(points1, points2)
    pose = SE3(np.eye(3), np.zeros(3))
    for _ in range(iterations):
        h = np.zeros((6, 6))
        b = np.zeros(6)
        for measurement, point in zip(p1, p2):
            error = point_error(pose, point, measurement)
            jacobian = point_jacobian(pose, point)
            h += jacobian.T @ _INFORMATION @ jacobian
            b += jacobian.T @ _INFORMATION @ error
        try:
            dx = np.linalg.solve(h, -b)
        except np.linalg.LinAlgError:
            break
        pose = SE3.exp(np.concatenate([dx[3:], dx[:3]])) * pose
        if np.linalg.norm(dx) < 1e-12:
            break
    return pose