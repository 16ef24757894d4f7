import numpy as np
import pytest

from arucopose.homography import (
    homography_from_square_points,
    homography_ho,
    normalize_data_isotropic,
)

H_TRUE = np.array([[1.2, 0.1, 0.3], [-0.05, 0.9, -0.2], [0.02, -0.03, 1.0]])


def apply(h, pts):
    pts = np.asarray(pts, dtype=float)
    homog = np.column_stack((pts, np.ones(len(pts)))) @ h.T
    return homog[:, :2] / homog[:, 2:]


def square(half):
    return np.array([[-half, half], [half, half], [half, -half], [-half, -half]])


def test_normalized_data_is_centred_with_unit_scale():
    rng = np.random.default_rng(1)
    pts = rng.uniform(-5, 5, size=(10, 2))
    data_n, _, _ = normalize_data_isotropic(pts)
    assert data_n.shape == (2, 10)
    np.testing.assert_allclose(data_n.mean(axis=1), [0.0, 0.0], atol=1e-12)
    assert np.sum(data_n ** 2) == pytest.approx(2 * 10)


def test_normalization_transforms_are_inverse():
    pts = np.array([[0.0, 0.0], [2.0, 0.0], [2.0, 3.0], [0.0, 3.0], [1.0, 1.0]])
    data_n, t, ti = normalize_data_isotropic(pts)
    np.testing.assert_allclose(t @ ti, np.eye(3), atol=1e-12)
    np.testing.assert_allclose(apply(t, data_n.T), pts, atol=1e-12)


def test_normalization_accepts_three_channel_points():
    pts3 = np.array([[0.0, 0.0, 5.0], [1.0, 0.0, 5.0], [1.0, 1.0, 5.0], [0.0, 1.0, 5.0]])
    a, _, _ = normalize_data_isotropic(pts3)
    b, _, _ = normalize_data_isotropic(pts3[:, :2])
    np.testing.assert_allclose(a, b)


def test_normalization_needs_four_points():
    with pytest.raises(ValueError):
        normalize_data_isotropic([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])


def test_homography_ho_recovers_known_homography():
    rng = np.random.default_rng(2)
    src = rng.uniform(-1, 1, size=(12, 2))
    dst = apply(H_TRUE, src)
    np.testing.assert_allclose(homography_ho(src, dst), H_TRUE, atol=1e-8)


def test_homography_ho_identity_for_equal_points():
    src = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0], [0.5, 0.2]])
    np.testing.assert_allclose(homography_ho(src, src), np.eye(3), atol=1e-10)


def test_homography_ho_size_mismatch():
    src = np.zeros((4, 2)) + np.arange(4)[:, None] * [1.0, 0.5] + [[0, 0], [0, 1], [1, 0], [1, 1]]
    dst = np.vstack((src, [[3.0, 7.0]]))
    with pytest.raises(ValueError):
        homography_ho(src, dst)


def test_square_homography_identity():
    np.testing.assert_allclose(homography_from_square_points(square(1.0), 1.0), np.eye(3), atol=1e-12)


def test_square_homography_maps_corners_to_targets():
    half = 0.05
    targets = apply(H_TRUE, square(half))
    h = homography_from_square_points(targets, half)
    assert h[2, 2] == 1.0
    np.testing.assert_allclose(apply(h, square(half)), targets, atol=1e-10)


def test_square_homography_matches_general_estimate():
    half = 0.5
    targets = apply(H_TRUE, square(half))
    np.testing.assert_allclose(
        homography_from_square_points(targets, half), homography_ho(square(half), targets), atol=1e-8
    )


def test_square_homography_needs_four_points():
    with pytest.raises(ValueError):
        homography_from_square_points(square(1.0)[:3], 1.0)