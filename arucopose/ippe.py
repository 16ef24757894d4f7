"""Pose of a planar object from point correspondences (IPPE)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .geometry import project_points, rodrigues, rotation_to_vector, rt_matrix, undistort_points
from .homography import homography_from_square_points, homography_ho
from .ippe_core import (
    make_canonical_object_points,
    solve_canonical_form,
    square_object_corners_2d,
    square_object_corners_3d,
)


@dataclass
class PoseSolution:
    """A candidate pose with its RMS reprojection error."""

    rvec: np.ndarray
    tvec: np.ndarray
    error: float

    @property
    def matrix(self) -> np.ndarray:
        """The pose as a 4x4 homogeneous transform."""
        return rt_matrix(self.rvec, self.tvec)


def _has_camera(camera_matrix) -> bool:
    return camera_matrix is not None and np.asarray(camera_matrix).size > 0


def _normalize(image_points, camera_matrix, dist_coeffs) -> np.ndarray:
    if _has_camera(camera_matrix):
        return undistort_points(image_points, camera_matrix, dist_coeffs)
    return np.asarray(image_points, dtype=float).reshape(-1, 2).copy()


def eval_reproj_error(object_points, image_points, camera_matrix, dist_coeffs, pose) -> float:
    """RMS per-coordinate reprojection error of a 4x4 pose."""
    m = np.asarray(pose, dtype=float)
    rvec = rotation_to_vector(m[:3, :3])
    tvec = m[:3, 3]
    if _has_camera(camera_matrix):
        projected = project_points(object_points, rvec, tvec, camera_matrix, dist_coeffs)
    else:
        projected = project_points(object_points, rvec, tvec)
    img = np.asarray(image_points, dtype=float).reshape(-1, 2)
    n = projected.shape[0]
    diff = projected - img
    return float(np.sqrt(np.sum(diff * diff) / (2.0 * n)))


def sort_poses_by_reproj_error(
    object_points, image_points, camera_matrix, dist_coeffs, pose_a, pose_b
) -> tuple[tuple[np.ndarray, float], tuple[np.ndarray, float]]:
    """Order two poses by reprojection error, best first."""
    err_a = eval_reproj_error(object_points, image_points, camera_matrix, dist_coeffs, pose_a)
    err_b = eval_reproj_error(object_points, image_points, camera_matrix, dist_coeffs, pose_b)
    a = (np.asarray(pose_a, dtype=float), err_a)
    b = (np.asarray(pose_b, dtype=float), err_b)
    return (a, b) if err_a < err_b else (b, a)


def mean_scene_depth(object_points, rvec, tvec) -> float:
    """Average camera-frame depth of the object points under a pose."""
    pts = np.asarray(object_points, dtype=float).reshape(-1, 3)
    cam = pts @ rodrigues(rvec).T + np.asarray(tvec, dtype=float).ravel()
    return float(cam[:, 2].mean())


def _solution(pose: np.ndarray, error: float) -> PoseSolution:
    return PoseSolution(rotation_to_vector(pose[:3, :3]), pose[:3, 3].copy(), error)


def solve_generic(
    object_points,
    image_points,
    camera_matrix: Optional[np.ndarray] = None,
    dist_coeffs: Optional[np.ndarray] = None,
) -> tuple[PoseSolution, PoseSolution]:
    """Both IPPE poses for four or more coplanar points, best first.

    Without a camera matrix the image points are taken as normalized coordinates.
    """
    obj = np.asarray(object_points, dtype=float).reshape(-1, 3)
    img = np.asarray(image_points, dtype=float).reshape(-1, 2)
    if obj.shape[0] < 4:
        raise ValueError("at least four object points are required")
    if img.shape[0] != obj.shape[0]:
        raise ValueError("object and image points must have the same count")

    normalized = _normalize(img, camera_matrix, dist_coeffs)
    canonical, model_to_canonical = make_canonical_object_points(obj)
    h = homography_ho(canonical, normalized)
    ma_canon, mb_canon = solve_canonical_form(canonical, normalized, h)
    ma = ma_canon @ model_to_canonical
    mb = mb_canon @ model_to_canonical

    (m1, e1), (m2, e2) = sort_poses_by_reproj_error(
        obj, img, camera_matrix, dist_coeffs, ma, mb
    )
    return _solution(m1, e1), _solution(m2, e2)


def solve_square(
    square_length: float,
    image_points,
    camera_matrix: Optional[np.ndarray] = None,
    dist_coeffs: Optional[np.ndarray] = None,
) -> tuple[PoseSolution, PoseSolution]:
    """Both IPPE poses of a square marker, best first.

    The four image points correspond to the corners (-s/2, s/2), (s/2, s/2),
    (s/2, -s/2) and (-s/2, -s/2). The poses are ranked against the normalized
    image points.
    """
    img = np.asarray(image_points, dtype=float).reshape(-1, 2)
    if img.shape[0] != 4:
        raise ValueError("exactly four image points are required")
    normalized = _normalize(img, camera_matrix, dist_coeffs)
    h = homography_from_square_points(normalized, square_length / 2.0)
    ma, mb = solve_canonical_form(square_object_corners_2d(square_length), normalized, h)
    (m1, e1), (m2, e2) = sort_poses_by_reproj_error(
        square_object_corners_3d(square_length), normalized, camera_matrix, dist_coeffs, ma, mb
    )
    return _solution(m1, e1), _solution(m2, e2)


def _as_pairs(solutions) -> list[tuple[np.ndarray, float]]:
    return [(rt_matrix(s.rvec, s.tvec).astype(np.float32), s.error) for s in solutions]


def solve_pnp(
    object_points,
    image_points,
    camera_matrix: Optional[np.ndarray] = None,
    dist_coeffs: Optional[np.ndarray] = None,
) -> list[tuple[np.ndarray, float]]:
    """Both poses as float32 4x4 matrices paired with their errors, best first."""
    return _as_pairs(solve_generic(object_points, image_points, camera_matrix, dist_coeffs))


def solve_pnp_square(
    size: float,
    image_points,
    camera_matrix: Optional[np.ndarray] = None,
    dist_coeffs: Optional[np.ndarray] = None,
) -> list[tuple[np.ndarray, float]]:
    """Both poses of a square marker as float32 4x4 matrices with errors, best first."""
    return _as_pairs(solve_square(size, image_points, camera_matrix, dist_coeffs))