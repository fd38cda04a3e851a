import numpy as np
import pytest

from slamkit.geometry import SE3, angle_axis_to_matrix
from slamkit.icp import icp_svd, point_error, point_jacobian, refine_pose


def _scene(angle=0.4, seed=3):
    rng = np.random.default_rng(seed)
    rotation = angle_axis_to_matrix(angle, [1.0, 2.0, 3.0])
    translation = np.array([0.1, -0.2, 0.3])
    p2 = rng.uniform(-1.0, 1.0, size=(20, 3))
    p1 = p2 @ rotation.T + translation
    return p1, p2, rotation, translation


def test_icp_svd_recovers_transform():
    p1, p2, rotation, translation = _scene()
    r, t = icp_svd(p1, p2)
    assert np.allclose(r, rotation, atol=1e-9)
    assert np.allclose(t, translation, atol=1e-9)


def test_icp_svd_returns_proper_rotation():
    rng = np.random.default_rng(7)
    p1 = rng.normal(size=(15, 3))
    p2 = rng.normal(size=(15, 3))
    r, _ = icp_svd(p1, p2)
    assert np.allclose(r @ r.T, np.eye(3), atol=1e-9)
    assert np.linalg.det(r) == pytest.approx(1.0)


def test_icp_svd_count_mismatch():
    with pytest.raises(ValueError):
        icp_svd(np.zeros((3, 3)), np.zeros((4, 3)))


def test_icp_svd_empty():
    with pytest.raises(ValueError):
        icp_svd(np.zeros((0, 3)), np.zeros((0, 3)))


def test_point_error_zero_at_exact_measurement():
    pose = SE3(angle_axis_to_matrix(0.3, [0, 0, 1]), [1.0, 2.0, 3.0])
    point = np.array([0.5, -0.5, 2.0])
    assert np.allclose(point_error(pose, point, pose.act(point)), 0.0)


def test_point_error_identity_pose():
    pose = SE3(np.eye(3), np.zeros(3))
    err = point_error(pose, [1.0, 2.0, 3.0], [2.0, 2.0, 5.0])
    assert np.allclose(err, [1.0, 0.0, 2.0])


def test_point_jacobian_translation_block():
    pose = SE3(angle_axis_to_matrix(0.2, [1, 0, 0]), [0.3, 0.0, -0.1])
    jac = point_jacobian(pose, [1.0, 2.0, 3.0])
    assert jac.shape == (3, 6)
    assert np.allclose(jac[:, 3:], -np.eye(3))


def test_point_jacobian_matches_finite_difference():
    pose = SE3(angle_axis_to_matrix(0.5, [1, -1, 2]), [0.2, -0.4, 1.0])
    point = np.array([0.7, -0.3, 1.5])
    measurement = np.array([1.0, 0.5, 2.0])
    analytic = point_jacobian(pose, point)
    h = 1e-6
    numeric = np.zeros((3, 6))
    for i in range(6):
        delta = np.zeros(6)
        delta[i] = h
        plus = SE3.exp(np.concatenate([delta[3:], delta[:3]])) * pose
        minus = SE3.exp(np.concatenate([-delta[3:], -delta[:3]])) * pose
        numeric[:, i] = (
            point_error(plus, point, measurement) - point_error(minus, point, measurement)
        ) / (2 * h)
    assert np.allclose(analytic, numeric, atol=1e-5)


def test_refine_pose_recovers_transform():
    p1, p2, rotation, translation = _scene(angle=0.3)
    pose = refine_pose(p1, p2, 10)
    assert np.allclose(pose.rotation, rotation, atol=1e-6)
    assert np.allclose(pose.translation, translation, atol=1e-6)
    assert np.allclose(p2 @ pose.rotation.T + pose.translation, p1, atol=1e-6)


def test_refine_pose_without_iterations_is_identity():
    p1, p2, _, _ = _scene()
    pose = refine_pose(p1, p2, 0)
    assert np.allclose(pose.matrix(), np.eye(4))