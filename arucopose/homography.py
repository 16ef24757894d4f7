"""Planar homography estimation (harker-O'Leary) and the analytic square case."""

from __future__ import annotations

import numpy as np


def _xy(points) -> np.ndarray:
    arr = np.asarray(points, dtype=float)
    if arr.ndim == 1 or arr.shape[-1] not in (2, 3):
        raise ValueError("points must have two or three coordinates each")
    return arr.reshape(-1, arr.shape[-1])[:, :2]


def normalize_data_isotropic(data) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Centre and scale points so their mean squared distance to the origin is 2.

    Returns the normalized points as a 2xN array, the 3x3 transform back to the
    original coordinates and its inverse.
    """
    xy = _xy(data)
    n = xy.shape[0]
    if n < 4:
        raise ValueError("at least four points are required")
    mean = xy.mean(axis=0)
    centred = (xy - mean).T
    kappa = float(np.sum(centred * centred))
    beta = np.sqrt(2 * n / kappa)
    data_n = centred * beta

    t = np.zeros((3, 3))
    t[0, 0] = t[1, 1] = 1.0 / beta
    t[0, 2], t[1, 2] = mean
    t[2, 2] = 1.0

    ti = np.zeros((3, 3))
    ti[0, 0] = ti[1, 1] = beta
    ti[0, 2], ti[1, 2] = -beta * mean
    ti[2, 2] = 1.0
    return data_n, t, ti


def homography_ho(src_points, target_points) -> np.ndarray:
    """Estimate the homography mapping ``src_points`` onto ``target_points``."""
    data_a, _, tai = normalize_data_isotropic(src_points)
    data_b, tb, _ = normalize_data_isotropic(target_points)
    n = data_a.shape[1]
    if n != data_b.shape[1]:
        raise ValueError("source and target must hold the same number of points")

    c1 = -data_b[0] * data_a[0]
    c2 = -data_b[0] * data_a[1]
    c3 = -data_b[1] * data_a[0]
    c4 = -data_b[1] * data_a[1]
    mc1, mc2, mc3, mc4 = c1.mean(), c2.mean(), c3.mean(), c4.mean()

    mx = np.column_stack((c1 - mc1, c2 - mc2, -data_b[0]))
    my = np.column_stack((c3 - mc3, c4 - mc4, -data_b[1]))

    aat = data_a @ data_a.T
    dt = aat[0, 0] * aat[1, 1] - aat[0, 1] * aat[1, 0]
    aat_inv = np.array([[aat[1, 1], -aat[0, 1]], [-aat[1, 0], aat[0, 0]]]) / dt

    pp = aat_inv @ data_a
    bx = pp @ mx
    by = pp @ my
    ex = data_a.T @ bx
    ey = data_a.T @ by

    d = np.vstack((mx - ex, my - ey))
    _, vectors = np.linalg.eigh(d.T @ d)
    h789 = vectors[:, 0]

    h12 = -bx @ h789
    h45 = -by @ h789
    h3 = -(mc1 * h789[0] + mc2 * h789[1])
    h6 = -(mc3 * h789[0] + mc4 * h789[1])

    h = np.array(
        [
            [h12[0], h12[1], h3],
            [h45[0], h45[1], h6],
            [h789[0], h789[1], h789[2]],
        ]
    )
    h = tb @ h @ tai
    return h / h[2, 2]


def homography_from_square_points(target_points, half_length: float) -> np.ndarray:
    """Homography taking the square corners (-h,h), (h,h), (h,-h), (-h,-h) to the targets."""
    pts = _xy(target_points)
    if pts.shape[0] != 4:
        raise ValueError("exactly four target points are required")
    (p1x, p1y), (p2x, p2y), (p3x, p3y), (p4x, p4y) = -pts

    dets_inv = -1 / (
        half_length
        * (
            p1x * p2y - p2x * p1y - p1x * p4y + p2x * p3y
            - p3x * p2y + p4x * p1y + p3x * p4y - p4x * p3y
        )
    )
    h = np.empty((3, 3))
    h[0, 0] = dets_inv * (
        p1x * p3x * p2y - p2x * p3x * p1y - p1x * p4x * p2y + p2x * p4x * p1y
        - p1x * p3x * p4y + p1x * p4x * p3y + p2x * p3x * p4y - p2x * p4x * p3y
    )
    h[0, 1] = dets_inv * (
        p1x * p2x * p3y - p1x * p3x * p2y - p1x * p2x * p4y + p2x * p4x * p1y
        + p1x * p3x * p4y - p3x * p4x * p1y - p2x * p4x * p3y + p3x * p4x * p2y
    )
    h[0, 2] = dets_inv * half_length * (
        p1x * p2x * p3y - p2x * p3x * p1y - p1x * p2x * p4y + p1x * p4x * p2y
        - p1x * p4x * p3y + p3x * p4x * p1y + p2x * p3x * p4y - p3x * p4x * p2y
    )
    h[1, 0] = dets_inv * (
        p1x * p2y * p3y - p2x * p1y * p3y - p1x * p2y * p4y + p2x * p1y * p4y
        - p3x * p1y * p4y + p4x * p1y * p3y + p3x * p2y * p4y - p4x * p2y * p3y
    )
    h[1, 1] = dets_inv * (
        p2x * p1y * p3y - p3x * p1y * p2y - p1x * p2y * p4y + p4x * p1y * p2y
        + p1x * p3y * p4y - p4x * p1y * p3y - p2x * p3y * p4y + p3x * p2y * p4y
    )
    h[1, 2] = dets_inv * half_length * (
        p1x * p2y * p3y - p3x * p1y * p2y - p2x * p1y * p4y + p4x * p1y * p2y
        - p1x * p3y * p4y + p3x * p1y * p4y + p2x * p3y * p4y - p4x * p2y * p3y
    )
    h[2, 0] = -dets_inv * (
        p1x * p3y - p3x * p1y - p1x * p4y - p2x * p3y
        + p3x * p2y + p4x * p1y + p2x * p4y - p4x * p2y
    )
    h[2, 1] = dets_inv * (
        p1x * p2y - p2x * p1y - p1x * p3y + p3x * p1y
        + p2x * p4y - p4x * p2y - p3x * p4y + p4x * p3y
    )
    h[2, 2] = 1.0
    return h