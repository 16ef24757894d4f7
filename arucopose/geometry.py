"""Rotation, projection and lens-distortion helpers for pinhole cameras."""

from __future__ import annotations

from typing import Optional

import numpy as np

_FLOAT_EPS = float(np.finfo(np.float32).eps)
_UNDISTORT_ITERATIONS = 5


def _points(values, dims: int) -> np.ndarray:
    return np.asarray(values, dtype=float).reshape(-1, dims)


def _distortion(dist_coeffs) -> np.ndarray:
    """Return the distortion vector padded to (k1, k2, p1, p2, k3, k4, k5, k6)."""
    coeffs = np.zeros(8)
    if dist_coeffs is None:
        return coeffs
    values = np.asarray(dist_coeffs, dtype=float).ravel()
    if values.size not in (0, 4, 5, 8):
        raise ValueError(f"unsupported number of distortion coefficients: {values.size}")
    coeffs[: values.size] = values
    return coeffs


def _intrinsics(camera_matrix) -> tuple[float, float, float, float]:
    if camera_matrix is None:
        return 1.0, 1.0, 0.0, 0.0
    k = np.asarray(camera_matrix, dtype=float)
    if k.size == 0:
        return 1.0, 1.0, 0.0, 0.0
    k = k.reshape(3, 3)
    return k[0, 0], k[1, 1], k[0, 2], k[1, 2]


def rodrigues(rvec) -> np.ndarray:
    """Convert an axis-angle vector into a 3x3 rotation matrix."""
    r = np.asarray(rvec, dtype=float).ravel()
    if r.size != 3:
        raise ValueError("a rotation vector needs exactly three elements")
    theta = float(np.linalg.norm(r))
    if theta < np.finfo(float).eps:
        return np.eye(3)
    axis = r / theta
    c, s = np.cos(theta), np.sin(theta)
    cross = np.array(
        [
            [0.0, -axis[2], axis[1]],
            [axis[2], 0.0, -axis[0]],
            [-axis[1], axis[0], 0.0],
        ]
    )
    return c * np.eye(3) + (1.0 - c) * np.outer(axis, axis) + s * cross


def rotation_to_vector(rotation) -> np.ndarray:
    """Convert a 3x3 rotation matrix into an axis-angle vector of shape (3,)."""
    rot = np.asarray(rotation, dtype=float)
    if rot.shape != (3, 3):
        raise ValueError("a rotation matrix must be 3x3")
    trace = rot[0, 0] + rot[1, 1] + rot[2, 2]
    w_norm = float(np.arccos(np.clip((trace - 1.0) / 2.0, -1.0, 1.0)))
    if w_norm < _FLOAT_EPS:
        return np.zeros(3)
    d = 1.0 / (2.0 * np.sin(w_norm)) * w_norm
    return d * np.array(
        [
            rot[2, 1] - rot[1, 2],
            rot[0, 2] - rot[2, 0],
            rot[1, 0] - rot[0, 1],
        ]
    )


def rt_matrix(rvec, tvec) -> np.ndarray:
    """Build a 4x4 homogeneous transform from a rotation and a translation.

    The rotation may be an axis-angle vector (3 values) or a matrix (9 values).
    """
    r = np.asarray(rvec, dtype=float)
    t = np.asarray(tvec, dtype=float).ravel()
    if t.size != 3:
        raise ValueError("a translation needs exactly three elements")
    m = np.eye(4)
    if r.size == 3:
        m[:3, :3] = rodrigues(r)
    elif r.size == 9:
        m[:3, :3] = r.reshape(3, 3)
    else:
        raise ValueError("rotation must have 3 or 9 elements")
    m[:3, 3] = t
    return m


def project_points(
    object_points,
    rvec,
    tvec,
    camera_matrix: Optional[np.ndarray] = None,
    dist_coeffs: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Project 3D points into the image; returns an (N, 2) array.

    Without a camera matrix the result is in normalized image coordinates.
    """
    pts = _points(object_points, 3)
    rot = rodrigues(rvec)
    t = np.asarray(tvec, dtype=float).ravel()
    cam = pts @ rot.T + t
    z = cam[:, 2]
    with np.errstate(divide="ignore", invalid="ignore"):
        inv_z = np.where(z != 0, 1.0 / z, 1.0)
    x = cam[:, 0] * inv_z
    y = cam[:, 1] * inv_z

    k1, k2, p1, p2, k3, k4, k5, k6 = _distortion(dist_coeffs)
    r2 = x * x + y * y
    r4 = r2 * r2
    r6 = r4 * r2
    radial = (1 + k1 * r2 + k2 * r4 + k3 * r6) / (1 + k4 * r2 + k5 * r4 + k6 * r6)
    xd = x * radial + 2 * p1 * x * y + p2 * (r2 + 2 * x * x)
    yd = y * radial + p1 * (r2 + 2 * y * y) + 2 * p2 * x * y

    fx, fy, cx, cy = _intrinsics(camera_matrix)
    return np.column_stack((xd * fx + cx, yd * fy + cy))


def undistort_points(
    image_points,
    camera_matrix: Optional[np.ndarray] = None,
    dist_coeffs: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Map pixel coordinates to undistorted normalized coordinates, shape (N, 2)."""
    pts = _points(image_points, 2)
    fx, fy, cx, cy = _intrinsics(camera_matrix)
    x0 = (pts[:, 0] - cx) / fx
    y0 = (pts[:, 1] - cy) / fy
    k1, k2, p1, p2, k3, k4, k5, k6 = _distortion(dist_coeffs)
    x, y = x0.copy(), y0.copy()
    if np.any(np.array([k1, k2, p1, p2, k3, k4, k5, k6]) != 0):
        for _ in range(_UNDISTORT_ITERATIONS):
            r2 = x * x + y * y
            r4 = r2 * r2
            r6 = r4 * r2
            icdist = (1 + k4 * r2 + k5 * r4 + k6 * r6) / (1 + k1 * r2 + k2 * r4 + k3 * r6)
            delta_x = 2 * p1 * x * y + p2 * (r2 + 2 * x * x)
            delta_y = p1 * (r2 + 2 * y * y) + 2 * p2 * x * y
            x = (x0 - delta_x) * icdist
            y = (y0 - delta_y) * icdist
    return np.column_stack((x, y))