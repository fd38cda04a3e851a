import numpy as np
import pytest

from slamkit.dense_mapping import (
    DepthMapConfig,
    bilinear,
    cam2px,
    epipolar_search,
    inside,
    ncc,
    px2cam,
    read_dataset,
    update,
    update_depth_filter,
)
from slamkit.geometry import SE3

CONFIG = DepthMapConfig(border=8, width=40, height=30, cx=20.0, cy=15.0)
DEPTH = 3.0
SHIFT = 4
TX = SHIFT * DEPTH / CONFIG.fx


def _texture(seed=3):
    rng = np.random.default_rng(seed)
    img = rng.uniform(0, 255, (CONFIG.height, CONFIG.width))
    kernel = np.array([1.0, 2.0, 3.0, 2.0, 1.0])
    kernel /= kernel.sum()
    for _ in range(2):
        img = np.apply_along_axis(lambda r: np.convolve(r, kernel, mode="same"), 1, img)
        img = np.apply_along_axis(lambda c: np.convolve(c, kernel, mode="same"), 0, img)
    img = (img - img.min()) / (img.max() - img.min()) * 255.0
    return img.astype(np.uint8)


@pytest.fixture
def frames():
    ref = _texture()
    curr = np.roll(ref, SHIFT, axis=1)
    t_c_r = SE3(np.eye(3), np.array([TX, 0.0, 0.0]))
    return ref, curr, t_c_r


def test_px2cam_cam2px_round_trip():
    px = np.array([12.25, 7.5])
    point = px2cam(px, CONFIG) * 2.5
    np.testing.assert_allclose(cam2px(point, CONFIG), px, atol=1e-12)


def test_inside_border_rules():
    b = CONFIG.border
    assert inside((b, b), CONFIG)
    assert not inside((b - 1, b), CONFIG)
    assert not inside((CONFIG.width - b, b), CONFIG)
    assert inside((b, CONFIG.height - b), CONFIG)
    assert not inside((b, CONFIG.height - b + 1), CONFIG)


def test_bilinear_integer_position_is_pixel_value():
    img = np.arange(12, dtype=np.uint8).reshape(3, 4) * 10
    assert bilinear(img, (2.0, 1.0)) == pytest.approx(img[1, 2] / 255.0)


def test_bilinear_half_way_between_pixels():
    img = np.array([[0, 255, 0], [0, 255, 0]], dtype=np.uint8)
    assert bilinear(img, (0.5, 0.0)) == pytest.approx(0.5)


def test_ncc_identical_and_inverted_windows():
    ref = _texture()
    pt = np.array([20.0, 15.0])
    assert ncc(ref, ref, pt, pt, CONFIG) == pytest.approx(1.0, abs=1e-6)
    inverted = (255 - ref.astype(int)).astype(np.uint8)
    assert ncc(ref, inverted, pt, pt, CONFIG) == pytest.approx(-1.0, abs=1e-6)


def test_epipolar_search_finds_shifted_pixel(frames):
    ref, curr, t_c_r = frames
    pt_ref = np.array([20.0, 15.0])
    found = epipolar_search(ref, curr, t_c_r, pt_ref, DEPTH, 0.3, CONFIG)
    assert found is not None
    np.testing.assert_allclose(found, [20.0 + SHIFT, 15.0], atol=0.5)


def test_epipolar_search_fails_on_flat_image(frames):
    _, _, t_c_r = frames
    flat = np.full((CONFIG.height, CONFIG.width), 128, dtype=np.uint8)
    result = epipolar_search(flat, flat, t_c_r, np.array([20.0, 15.0]), DEPTH, 0.3, CONFIG)
    assert result is None


def test_update_depth_filter_exact_match_keeps_true_depth(frames):
    _, _, t_c_r = frames
    depth = np.full((CONFIG.height, CONFIG.width), DEPTH)
    cov = np.full((CONFIG.height, CONFIG.width), 1.0)
    mu, sigma2 = update_depth_filter(
        np.array([20.0, 15.0]), np.array([20.0 + SHIFT, 15.0]), t_c_r, depth, cov, CONFIG
    )
    assert mu == pytest.approx(DEPTH, abs=1e-6)
    assert depth[15, 20] == pytest.approx(mu)
    assert 0.0 < sigma2 < 1.0
    assert cov[15, 20] == pytest.approx(sigma2)
    assert depth[0, 0] == DEPTH


def test_update_depth_filter_fuses_between_prior_and_measurement(frames):
    _, _, t_c_r = frames
    prior = 2.0
    depth = np.full((CONFIG.height, CONFIG.width), prior)
    cov = np.full((CONFIG.height, CONFIG.width), 0.5)
    mu, sigma2 = update_depth_filter(
        np.array([20.0, 15.0]), np.array([20.0 + SHIFT, 15.0]), t_c_r, depth, cov, CONFIG
    )
    assert prior < mu < DEPTH
    assert sigma2 < 0.5


def test_update_refines_depth_map(frames):
    ref, curr, t_c_r = frames
    depth = np.full((CONFIG.height, CONFIG.width), DEPTH)
    cov = np.full((CONFIG.height, CONFIG.width), 0.25)
    count = update(ref, curr, t_c_r, depth, cov, CONFIG)
    changed = cov < 0.25
    assert count > 0
    assert int(np.count_nonzero(changed)) == count
    assert np.all(np.abs(depth[changed] - DEPTH) < 0.5)
    assert np.all(cov[~changed] == 0.25)


def test_update_skips_converged_pixels(frames):
    ref, curr, t_c_r = frames
    depth = np.full((CONFIG.height, CONFIG.width), DEPTH)
    cov = np.full((CONFIG.height, CONFIG.width), CONFIG.min_cov / 2)
    assert update(ref, curr, t_c_r, depth, cov, CONFIG) == 0
    assert np.all(depth == DEPTH)


def test_update_rejects_wrong_shape(frames):
    ref, curr, t_c_r = frames
    depth = np.full((5, 5), DEPTH)
    with pytest.raises(ValueError):
        update(ref, curr, t_c_r, depth, depth.copy(), CONFIG)


def test_read_dataset(tmp_path):
    (tmp_path / "first_200_frames_traj_over_table_input_sequence.txt").write_text(
        "a.png 1 2 3 0 0 0 1\nb.png 4 5 6 0 0 0 1\n\n", encoding="utf-8"
    )
    files, poses = read_dataset(tmp_path)
    assert files == [str(tmp_path / "images" / "a.png"), str(tmp_path / "images" / "b.png")]
    np.testing.assert_allclose(poses[1].matrix()[:3, 3], [4.0, 5.0, 6.0])
    np.testing.assert_allclose(poses[0].matrix()[:3, :3], np.eye(3), atol=1e-12)


def test_read_dataset_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_dataset(tmp_path)