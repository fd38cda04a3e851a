"""Rigid-body geometry: rotations, quaternions, Euler angles, SO(3) and SE(3).

Quaternions are stored as ``(x, y, z, w)`` with ``w`` the real part.
Lie-algebra vectors of SE(3) put the translation part first and the
rotation part second.
"""

from __future__ import annotations

import math

import numpy as np

__all__ = [
    "hat",
    "vee",
    "angle_axis_to_matrix",
    "matrix_to_quaternion",
    "quaternion_to_matrix",
    "euler_zyx",
    "rigid_transform",
    "transform_from_pose",
    "SO3",
    "SE3",
]

_EPS = 1e-10


def _vector(v, size):
    arr = np.asarray(v, dtype=float).reshape(-1)
    if arr.shape[0] != size:
        raise ValueError(f"expected a vector of length {size}, got {arr.shape[0]}")
    return arr


def _matrix(m, rows, cols):
    arr = np.asarray(m, dtype=float)
    if arr.shape != (rows, cols):
        raise ValueError(f"expected a {rows}x{cols} matrix, got shape {arr.shape}")
    return arr


def _fmt(values):
    return " ".join(f"{x:g}" for x in values)


def hat(v):
    """Skew-symmetric matrix of a 3-vector, so that ``hat(v) @ w == v x w``."""
    x, y, z = _vector(v, 3)
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def vee(m):
    """Inverse of :func:`hat`."""
    m = _matrix(m, 3, 3)
    return np.array([m[2, 1], m[0, 2], m[1, 0]])


def angle_axis_to_matrix(angle, axis):
    """Rotation matrix for a rotation of ``angle`` radians about ``axis``."""
    a = _vector(axis, 3)
    norm = np.linalg.norm(a)
    if norm == 0.0:
        raise ValueError("rotation axis must be non-zero")
    a = a / norm
    c, s = math.cos(angle), math.sin(angle)
    return c * np.eye(3) + (1.0 - c) * np.outer(a, a) + s * hat(a)


def matrix_to_quaternion(rotation):
    """Quaternion ``(x, y, z, w)`` of a rotation matrix."""
    m = _matrix(rotation, 3, 3)
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    q = np.zeros(4)
    if trace > 0.0:
        s = math.sqrt(trace + 1.0)
        q[3] = 0.5 * s
        s = 0.5 / s
        q[0] = (m[2, 1] - m[1, 2]) * s
        q[1] = (m[0, 2] - m[2, 0]) * s
        q[2] = (m[1, 0] - m[0, 1]) * s
    else:
        i = 0
        if m[1, 1] > m[0, 0]:
            i = 1
        if m[2, 2] > m[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        s = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        q[i] = 0.5 * s
        s = 0.5 / s
        q[3] = (m[k, j] - m[j, k]) * s
        q[j] = (m[j, i] + m[i, j]) * s
        q[k] = (m[k, i] + m[i, k]) * s
    return q


def quaternion_to_matrix(q):
    """Rotation matrix of a quaternion ``(x, y, z, w)``; the quaternion is normalised."""
    q = _vector(q, 4)
    norm = np.linalg.norm(q)
    if norm == 0.0:
        raise ValueError("quaternion must be non-zero")
    x, y, z, w = q / norm
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
            [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
            [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
        ]
    )


def euler_zyx(rotation):
    """Euler angles ``(yaw, pitch, roll)`` about Z, Y, X; yaw lies in ``[0, pi]``."""
    m = _matrix(rotation, 3, 3)
    i, j, k = 2, 1, 0
    res = np.zeros(3)
    res[0] = math.atan2(m[j, k], m[k, k])
    c2 = math.hypot(m[i, i], m[i, j])
    if res[0] < 0.0:
        res[0] += math.pi
        res[1] = math.atan2(-m[i, k], -c2)
    else:
        res[1] = math.atan2(-m[i, k], c2)
    s1, c1 = math.sin(res[0]), math.cos(res[0])
    res[2] = math.atan2(s1 * m[k, i] - c1 * m[j, i], c1 * m[j, j] - s1 * m[k, j])
    return res


def rigid_transform(rotation, translation):
    """4x4 homogeneous transform from a rotation matrix and translation."""
    t = np.eye(4)
    t[:3, :3] = _matrix(rotation, 3, 3)
    t[:3, 3] = _vector(translation, 3)
    return t


def transform_from_pose(values):
    """4x4 transform from ``tx ty tz qx qy qz qw``."""
    values = np.asarray(values, dtype=float).reshape(-1)
    if values.shape[0] != 7:
        raise ValueError(f"a pose needs 7 values, got {values.shape[0]}")
    return rigid_transform(quaternion_to_matrix(values[3:]), values[:3])


class SO3:
    """A 3D rotation."""

    __slots__ = ("matrix",)

    def __init__(self, matrix):
        self.matrix = _matrix(matrix, 3, 3).copy()

    @classmethod
    def from_vector(cls, omega):
        """Rotation ``exp(x) * exp(y) * exp(z)`` for per-axis angles ``(x, y, z)``."""
        x, y, z = _vector(omega, 3)
        return cls.exp([x, 0.0, 0.0]) * cls.exp([0.0, y, 0.0]) * cls.exp([0.0, 0.0, z])

    @classmethod
    def from_quaternion(cls, q):
        return cls(quaternion_to_matrix(q))

    @classmethod
    def exp(cls, omega):
        """Exponential map from a rotation vector."""
        omega = _vector(omega, 3)
        theta = float(np.linalg.norm(omega))
        half = 0.5 * theta
        if theta < _EPS:
            theta_sq = theta * theta
            theta_po4 = theta_sq * theta_sq
            imag = 0.5 - theta_sq / 48.0 + theta_po4 / 3840.0
            real = 1.0 - theta_sq / 8.0 + theta_po4 / 384.0
        else:
            imag = math.sin(half) / theta
            real = math.cos(half)
        q = np.append(imag * omega, real)
        return cls(quaternion_to_matrix(q))

    def log(self):
        """Rotation vector of this rotation."""
        q = matrix_to_quaternion(self.matrix)
        vec, w = q[:3], q[3]
        n = float(np.linalg.norm(vec))
        if n < _EPS:
            return 2.0 / w * (1.0 - n * n / (3.0 * w * w)) * vec
        if abs(w) < _EPS:
            theta = math.pi if w > 0 else -math.pi
        else:
            theta = 2.0 * math.atan(n / w)
        return theta / n * vec

    def inverse(self):
        return SO3(self.matrix.T)

    def __mul__(self, other):
        if isinstance(other, SO3):
            return SO3(self.matrix @ other.matrix)
        if isinstance(other, (list, tuple, np.ndarray)):
            return self.matrix @ _vector(other, 3)
        return NotImplemented

    def __str__(self):
        return _fmt(self.log())

    def __repr__(self):
        return f"SO3({self.matrix.tolist()!r})"


class SE3:
    """A rigid-body transform: rotation followed by translation."""

    __slots__ = ("rotation", "translation")

    def __init__(self, rotation, translation):
        if isinstance(rotation, SO3):
            r = rotation.matrix.copy()
        else:
            arr = np.asarray(rotation, dtype=float)
            if arr.shape == (4,):
                r = quaternion_to_matrix(arr)
            else:
                r = _matrix(arr, 3, 3).copy()
        self.rotation = r
        self.translation = _vector(translation, 3).copy()

    @classmethod
    def exp(cls, xi):
        """Exponential map from ``(rho, phi)``: translation part first."""
        xi = _vector(xi, 6)
        rho, phi = xi[:3], xi[3:]
        so3 = SO3.exp(phi)
        theta = float(np.linalg.norm(phi))
        omega = hat(phi)
        if theta < _EPS:
            v = so3.matrix
        else:
            omega_sq = omega @ omega
            v = (
                np.eye(3)
                + (1.0 - math.cos(theta)) / (theta * theta) * omega
                + (theta - math.sin(theta)) / theta**3 * omega_sq
            )
        return cls(so3, v @ rho)

    def log(self):
        """Lie-algebra vector ``(rho, phi)`` of this transform."""
        omega = SO3(self.rotation).log()
        theta = float(np.linalg.norm(omega))
        big_omega = hat(omega)
        omega_sq = big_omega @ big_omega
        if theta < _EPS:
            v_inv = np.eye(3) - 0.5 * big_omega + omega_sq / 12.0
        else:
            half = 0.5 * theta
            v_inv = (
                np.eye(3)
                - 0.5 * big_omega
                + (1.0 - theta / (2.0 * math.tan(half))) / (theta * theta) * omega_sq
            )
        return np.concatenate([v_inv @ self.translation, omega])

    @staticmethod
    def hat(xi):
        """4x4 matrix of a twist ``(rho, phi)``."""
        xi = _vector(xi, 6)
        m = np.zeros((4, 4))
        m[:3, :3] = hat(xi[3:])
        m[:3, 3] = xi[:3]
        return m

    @staticmethod
    def vee(m):
        """Inverse of :meth:`SE3.hat`."""
        m = _matrix(m, 4, 4)
        return np.concatenate([m[:3, 3], vee(m[:3, :3])])

    def inverse(self):
        r_inv = self.rotation.T
        return SE3(r_inv, -r_inv @ self.translation)

    def matrix(self):
        return rigid_transform(self.rotation, self.translation)

    def act(self, point):
        """Transform a 3D point."""
        return self.rotation @ _vector(point, 3) + self.translation

    def __mul__(self, other):
        if isinstance(other, SE3):
            return SE3(
                self.rotation @ other.rotation,
                self.rotation @ other.translation + self.translation,
            )
        if isinstance(other, (list, tuple, np.ndarray)):
            return self.act(other)
        return NotImplemented

    def __str__(self):
        return f"{SO3(self.rotation)}\n{_fmt(self.translation)}"

    def __repr__(self):
        return f"SE3({self.rotation.tolist()!r}, {self.translation.tolist()!r})"