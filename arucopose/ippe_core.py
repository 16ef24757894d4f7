"""Core steps of infinitesimal plane-based pose estimation (IPPE).

The functions here work on canonical, normalized data: object points lying
on the plane z=0 centred at the origin and image points in normalized camera
coordinates.
"""

from __future__ import annotations

import numpy as np

_SMALL = 1e-7
_FLOAT_EPS = float(np.finfo(np.float32).eps)


def square_object_corners_2d(square_length: float) -> np.ndarray:
    """Corners of a square centred at the origin, shape (4, 2)."""
    h = square_length / 2.0
    return np.array([[-h, h], [h, h], [h, -h], [-h, -h]], dtype=float)


def square_object_corners_3d(square_length: float) -> np.ndarray:
    """Corners of a square centred at the origin on the plane z=0, shape (4, 3)."""
    return np.column_stack((square_object_corners_2d(square_length), np.zeros(4)))


def rotate_vec_to_z_axis(a) -> np.ndarray:
    """Rotation matrix that takes the direction of ``a`` onto the positive z axis."""
    v = np.asarray(a, dtype=float).ravel()
    if v.size != 3:
        raise ValueError("a vector of three elements is required")
    nrm = float(np.linalg.norm(v))
    if nrm == 0:
        raise ValueError("cannot rotate a zero vector")
    ax, ay, az = v / nrm
    c = az
    if abs(1.0 + c) < _FLOAT_EPS:
        return np.diag([1.0, 1.0, -1.0])
    d = 1.0 / (1.0 + c)
    ax2, ay2, axay = ax * ax, ay * ay, ax * ay
    return np.array(
        [
            [-ax2 * d + 1.0, -axay * d, -ax],
            [-axay * d, -ay2 * d + 1.0, -ay],
            [ax, ay, 1.0 - (ax2 + ay2) * d],
        ]
    )


def compute_rotations(
    j00: float, j01: float, j10: float, j11: float, p: float, q: float
) -> tuple[np.ndarray, np.ndarray]:
    """The two rotations consistent with the homography Jacobian at the origin.

    ``(j00, j01, j10, j11)`` is the Jacobian and ``(p, q)`` the image of the
    object origin, both in normalized coordinates.
    """
    rv = rotate_vec_to_z_axis([p, q, 1.0]).T
    rv00, rv01, rv02 = rv[0]
    rv10, rv11, rv12 = rv[1]
    rv20, rv21, rv22 = rv[2]

    b00 = rv00 - p * rv20
    b01 = rv01 - p * rv21
    b10 = rv10 - q * rv20
    b11 = rv11 - q * rv21

    dtinv = 1.0 / (b00 * b11 - b01 * b10)
    binv00 = dtinv * b11
    binv01 = -dtinv * b01
    binv10 = -dtinv * b10
    binv11 = dtinv * b00

    a00 = binv00 * j00 + binv01 * j10
    a01 = binv00 * j01 + binv01 * j11
    a10 = binv10 * j00 + binv11 * j10
    a11 = binv10 * j01 + binv11 * j11

    ata00 = a00 * a00 + a01 * a01
    ata01 = a00 * a10 + a01 * a11
    ata11 = a10 * a10 + a11 * a11
    gamma = np.sqrt(
        0.5 * (ata00 + ata11 + np.sqrt((ata00 - ata11) ** 2 + 4.0 * ata01 * ata01))
    )

    r00, r01, r10, r11 = a00 / gamma, a01 / gamma, a10 / gamma, a11 / gamma
    b0 = np.sqrt(max(0.0, 1.0 - r00 * r00 - r10 * r10))
    b1 = np.sqrt(max(0.0, 1.0 - r01 * r01 - r11 * r11))
    if -r00 * r01 - r10 * r11 < 0:
        b1 = -b1

    det = r00 * r11 - r01 * r10
    c1 = np.array(
        [
            [r00, r01, b1 * r10 - b0 * r11],
            [r10, r11, b0 * r01 - b1 * r00],
            [b0, b1, det],
        ]
    )
    c2 = np.array(
        [
            [r00, r01, b0 * r11 - b1 * r10],
            [r10, r11, b1 * r00 - b0 * r01],
            [-b0, -b1, det],
        ]
    )
    return rv @ c1, rv @ c2


def compute_translation(object_points, normalized_image_points, rotation) -> np.ndarray:
    """Least-squares translation for planar points under a known rotation."""
    obj = np.asarray(object_points, dtype=float).reshape(-1, 2)
    img = np.asarray(normalized_image_points, dtype=float).reshape(-1, 2)
    r = np.asarray(rotation, dtype=float)
    if r.shape != (3, 3):
        raise ValueError("rotation must be 3x3")
    n = obj.shape[0]
    if img.shape[0] != n:
        raise ValueError("object and image points must have the same count")

    rx = r[0, 0] * obj[:, 0] + r[0, 1] * obj[:, 1]
    ry = r[1, 0] * obj[:, 0] + r[1, 1] * obj[:, 1]
    rz = r[2, 0] * obj[:, 0] + r[2, 1] * obj[:, 1]
    a2 = -img[:, 0]
    b2 = -img[:, 1]

    ata00 = float(n)
    ata11 = float(n)
    ata02 = ata20 = float(a2.sum())
    ata12 = ata21 = float(b2.sum())
    ata22 = float(np.sum(a2 * a2 + b2 * b2))

    bx = -a2 * rz - rx
    by = -b2 * rz - ry
    atb0 = float(bx.sum())
    atb1 = float(by.sum())
    atb2 = float(np.sum(a2 * bx + b2 * by))

    det_inv = 1.0 / (ata00 * ata11 * ata22 - ata00 * ata12 * ata21 - ata02 * ata11 * ata20)
    s = np.array(
        [
            [ata11 * ata22 - ata12 * ata21, ata02 * ata21, -ata02 * ata11],
            [ata12 * ata20, ata00 * ata22 - ata02 * ata20, -ata00 * ata12],
            [-ata11 * ata20, -ata00 * ata21, ata00 * ata11],
        ]
    )
    return det_inv * (s @ np.array([atb0, atb1, atb2]))


def _rotation_from_three_points(points: np.ndarray):
    p1, p2, p3 = points[0], points[1], points[2]
    normal = np.array(
        [
            (p1[1] - p2[1]) * (p1[2] - p3[2]) - (p1[1] - p3[1]) * (p1[2] - p2[2]),
            (p1[0] - p3[0]) * (p1[2] - p2[2]) - (p1[0] - p2[0]) * (p1[2] - p3[2]),
            (p1[0] - p2[0]) * (p1[1] - p3[1]) - (p1[0] - p3[0]) * (p1[1] - p2[1]),
        ]
    )
    nrm = float(np.linalg.norm(normal))
    if nrm <= _SMALL:
        return None
    return rotate_vec_to_z_axis(normal / nrm)


def _rotation_from_svd(centred: np.ndarray) -> np.ndarray:
    u, w, _ = np.linalg.svd(centred @ centred.T)
    if w[1] == 0 or w[2] / w[1] >= _SMALL:
        raise ValueError("object points are not coplanar")
    rot = u.T.copy()
    if np.linalg.det(rot) < 0:
        rot[2] = -rot[2]
    return rot


def make_canonical_object_points(object_points) -> tuple[np.ndarray, np.ndarray]:
    """Move planar object points onto z=0 centred at the origin.

    Returns the canonical points, shape (N, 2), and the 4x4 transform that
    takes the model points to their canonical position.
    """
    pts = np.asarray(object_points, dtype=float).reshape(-1, 3)
    mean = pts.mean(axis=0)
    centred = (pts - mean).T

    m_center = np.eye(4)
    m_center[:3, 3] = -mean

    if np.all(np.abs(pts[:, 2]) <= _SMALL):
        return centred[:2].T.copy(), m_center

    rot = _rotation_from_three_points(pts)
    if rot is None:
        rot = _rotation_from_svd(centred)
    aligned = rot @ centred
    scale = max(1.0, float(np.abs(centred).max()))
    if np.any(np.abs(aligned[2]) > _SMALL * scale):
        raise ValueError("object points are not coplanar")

    m_rot = np.eye(4)
    m_rot[:3, :3] = rot
    return aligned[:2].T.copy(), m_rot @ m_center


def solve_canonical_form(
    canonical_points, normalized_points, homography
) -> tuple[np.ndarray, np.ndarray]:
    """The two candidate 4x4 poses of the canonical plane."""
    h = np.asarray(homography, dtype=float)
    j00 = h[0, 0] - h[2, 0] * h[0, 2]
    j01 = h[0, 1] - h[2, 1] * h[0, 2]
    j10 = h[1, 0] - h[2, 0] * h[1, 2]
    j11 = h[1, 1] - h[2, 1] * h[1, 2]
    v0, v1 = h[0, 2], h[1, 2]

    poses = []
    for rot in compute_rotations(j00, j01, j10, j11, v0, v1):
        m = np.eye(4)
        m[:3, :3] = rot
        m[:3, 3] = compute_translation(canonical_points, normalized_points, rot)
        poses.append(m)
    return poses[0], poses[1]