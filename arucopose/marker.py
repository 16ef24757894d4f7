"""Detected square markers: image corners, pose and binary serialisation."""

from __future__ import annotations

import math
import struct
from typing import Iterable, Optional

import numpy as np

from .geometry import project_points, rodrigues, rotation_to_vector
from .ippe import solve_generic
from .levmarq import LevMarq

_UNSET = -999999.0
_HALF_PI = 3.14159265359 / 2.0
_HEADER = struct.Struct("<if3f3fI")
_POINT2F = struct.Struct("<2f")
_POINT2I = struct.Struct("<2i")
_UINT32 = struct.Struct("<I")


def marker_3d_points(size: float) -> np.ndarray:
    """Corners of a marker of side ``size`` in its own frame, shape (4, 3).

    The order is top-left, top-right, bottom-right, bottom-left on the plane z=0.
    """
    h = size / 2.0
    return np.array(
        [[-h, h, 0.0], [h, h, 0.0], [h, -h, 0.0], [-h, -h, 0.0]], dtype=np.float32
    )


def _matrix_to_rvec(rot: np.ndarray) -> np.ndarray:
    """Axis-angle vector of a rotation matrix, also valid for angles near pi."""
    rot = np.asarray(rot, dtype=float)
    trace = rot[0, 0] + rot[1, 1] + rot[2, 2]
    theta = float(np.arccos(np.clip((trace - 1.0) / 2.0, -1.0, 1.0)))
    if math.pi - theta > 1e-6:
        return rotation_to_vector(rot)
    axis = np.sqrt(np.maximum(0.0, (np.diag(rot) + 1.0) / 2.0))
    k = int(np.argmax(axis))
    sym = rot + rot.T
    for i in range(3):
        if i != k and sym[k, i] < 0:
            axis[i] = -axis[i]
    return axis / np.linalg.norm(axis) * theta


def rotate_x_axis(rvec) -> np.ndarray:
    """Rotate a pose a quarter turn about its own x axis, so y is normal to the marker."""
    rot = rodrigues(rvec)
    c, s = math.cos(_HALF_PI), math.sin(_HALF_PI)
    rx = np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]])
    return _matrix_to_rvec(rot @ rx)


def gl_model_view_matrix(rvec, tvec) -> np.ndarray:
    """OpenGL model-view matrix of a pose, 16 values in column-major order."""
    rot = rodrigues(np.asarray(rvec, dtype=np.float32))
    t = np.asarray(tvec, dtype=np.float32).astype(float).ravel()
    para = np.column_stack((rot, t))
    m = np.zeros((4, 4))
    m[0] = para[0]
    m[1] = para[1]
    m[2] = -para[2]
    m[3] = [0.0, 0.0, 0.0, 1.0]
    return m.T.ravel()


def ogre_pose_parameters(rvec, tvec) -> tuple[np.ndarray, np.ndarray]:
    """Position and orientation quaternion (w, x, y, z) in Ogre's conventions."""
    t = np.asarray(tvec, dtype=np.float32).astype(float).ravel()
    position = np.array([-t[0], -t[1], t[2]])

    rot = rodrigues(np.asarray(rvec, dtype=np.float32))
    x_axis = np.array([-rot[0, 0], -rot[1, 0], rot[2, 0]])
    y_axis = np.array([-rot[0, 1], -rot[1, 1], rot[2, 1]])
    z_axis = np.array(
        [
            x_axis[1] * y_axis[2] - x_axis[2] * y_axis[1],
            -x_axis[0] * y_axis[2] + x_axis[2] * y_axis[0],
            x_axis[0] * y_axis[1] - x_axis[1] * y_axis[0],
        ]
    )
    axes = np.vstack((x_axis, y_axis, z_axis)).T

    orientation = np.zeros(4)
    trace = axes[0, 0] + axes[1, 1] + axes[2, 2]
    if trace > 0.0:
        root = math.sqrt(trace + 1.0)
        orientation[0] = 0.5 * root
        root = 0.5 / root
        orientation[1] = (axes[2, 1] - axes[1, 2]) * root
        orientation[2] = (axes[0, 2] - axes[2, 0]) * root
        orientation[3] = (axes[1, 0] - axes[0, 1]) * root
    else:
        following = (1, 2, 0)
        i = 0
        if axes[1, 1] > axes[0, 0]:
            i = 1
        if axes[2, 2] > axes[i, i]:
            i = 2
        j = following[i]
        k = following[j]
        root = math.sqrt(axes[i, i] - axes[j, j] - axes[k, k] + 1.0)
        quat = np.zeros(3)
        quat[i] = 0.5 * root
        root = 0.5 / root
        orientation[0] = (axes[k, j] - axes[j, k]) * root
        quat[j] = (axes[j, i] + axes[i, j]) * root
        quat[k] = (axes[k, i] + axes[i, k]) * root
        orientation[1:] = quat
    return position, orientation


class Marker:
    """A marker seen in an image: its corners, id and optional pose."""

    def __init__(self, corners: Iterable = (), id: int = -1) -> None:
        self.corners = np.asarray(list(corners) if not isinstance(corners, np.ndarray) else corners,
                                  dtype=np.float32).reshape(-1, 2)
        self.id = int(id)
        self.ssize = -1.0
        self.rvec = np.full(3, _UNSET, dtype=np.float32)
        self.tvec = np.full(3, _UNSET, dtype=np.float32)
        self.dict_info = ""
        self.contour_points: list[tuple[int, int]] = []

    def __len__(self) -> int:
        return self.corners.shape[0]

    def __repr__(self) -> str:
        return f"Marker(id={self.id}, corners={self.corners.tolist()})"

    def is_valid(self) -> bool:
        """True when the marker has an id and four corners."""
        return self.id != -1 and len(self) == 4

    def _require_four(self) -> None:
        if len(self) != 4:
            raise ValueError("the marker must have exactly four corners")

    def center(self) -> np.ndarray:
        """Mean of the corners."""
        return self.corners.astype(float).mean(axis=0)

    def area(self) -> float:
        """Area of the quadrilateral formed by the four corners."""
        self._require_four()
        c = self.corners.astype(float)
        v01, v03 = c[1] - c[0], c[3] - c[0]
        area1 = abs(v01[0] * v03[1] - v01[1] * v03[0])
        v21, v23 = c[1] - c[2], c[3] - c[2]
        area2 = abs(v21[0] * v23[1] - v21[1] * v23[0])
        return (area1 + area2) / 2.0

    def perimeter(self) -> float:
        """Sum of the four side lengths."""
        self._require_four()
        c = self.corners.astype(float)
        return float(np.sum(np.linalg.norm(c - np.roll(c, -1, axis=0), axis=1)))

    def radius(self) -> float:
        """Largest distance from the centre to a corner."""
        if len(self) == 0:
            return 0.0
        return float(np.max(np.linalg.norm(self.corners.astype(float) - self.center(), axis=1)))

    def transform_matrix(self) -> np.ndarray:
        """The pose as a float32 4x4 homogeneous transform."""
        m = np.eye(4, dtype=np.float32)
        m[:3, :3] = rodrigues(self.rvec)
        m[:3, 3] = self.tvec
        return m

    def gl_model_view_matrix(self) -> np.ndarray:
        return gl_model_view_matrix(self.rvec, self.tvec)

    def ogre_pose_parameters(self) -> tuple[np.ndarray, np.ndarray]:
        return ogre_pose_parameters(self.rvec, self.tvec)

    def calculate_extrinsics(
        self,
        marker_size: float,
        camera_matrix,
        dist_coeffs: Optional[np.ndarray] = None,
        extrinsics: Optional[np.ndarray] = None,
        set_y_perpendicular: bool = False,
    ) -> None:
        """Estimate the marker pose relative to the camera and store it."""
        if not self.is_valid():
            raise ValueError("invalid marker: it is not possible to calculate extrinsics")
        if marker_size <= 0:
            raise ValueError("marker size must be positive")
        if camera_matrix is None or np.asarray(camera_matrix).size == 0:
            raise ValueError("camera matrix is empty")
        cam = np.asarray(camera_matrix, dtype=float).reshape(3, 3)
        obj = marker_3d_points(marker_size).astype(float)
        img = self.corners.astype(float)

        best = solve_generic(obj, img, cam, dist_coeffs)[0]
        rvec, tvec = self._refine(obj, img, cam, dist_coeffs, best.rvec, best.tvec, best.error)

        tvec = tvec.astype(np.float32)
        offsets = np.zeros(3) if extrinsics is None else np.asarray(extrinsics, dtype=float).ravel()
        if offsets.size >= 3:
            for i in range(3):
                tvec[i] += np.float32(-(offsets[i] / cam[i, i]))
        if set_y_perpendicular:
            rvec = rotate_x_axis(rvec)
        self.rvec = np.asarray(rvec, dtype=np.float32)
        self.tvec = tvec
        self.ssize = float(marker_size)

    @staticmethod
    def _refine(obj, img, cam, dist, rvec, tvec, error):
        def residuals(z):
            return (project_points(obj, z[:3], z[3:], cam, dist) - img).ravel()

        solver = LevMarq(max_iters=50, min_error=0.0, min_step_error_diff=1e-14, der_epsilon=1e-6)
        z0 = np.concatenate((np.asarray(rvec, dtype=float), np.asarray(tvec, dtype=float)))
        z, _ = solver.solve(z0, residuals)
        if not np.all(np.isfinite(z)):
            return z0[:3], z0[3:]
        res = residuals(z)
        refined_error = math.sqrt(float(res @ res) / (2.0 * obj.shape[0]))
        if refined_error <= error:
            return z[:3], z[3:]
        return z0[:3], z0[3:]

    def to_bytes(self) -> bytes:
        """Serialise to the little-endian binary layout."""
        parts = [
            _HEADER.pack(
                self.id,
                self.ssize,
                *np.asarray(self.rvec, dtype=np.float32).ravel()[:3],
                *np.asarray(self.tvec, dtype=np.float32).ravel()[:3],
                len(self),
            )
        ]
        parts.extend(_POINT2F.pack(float(x), float(y)) for x, y in self.corners)
        info = self.dict_info.encode("utf-8")
        parts.append(_UINT32.pack(len(info)))
        parts.append(info)
        parts.append(_UINT32.pack(len(self.contour_points)))
        parts.extend(_POINT2I.pack(int(x), int(y)) for x, y in self.contour_points)
        return b"".join(parts)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Marker":
        """Read a marker written by :meth:`to_bytes`."""
        view = memoryview(data)
        try:
            header = _HEADER.unpack_from(view, 0)
            offset = _HEADER.size
            npoints = header[8]
            corners = []
            for _ in range(npoints):
                corners.append(_POINT2F.unpack_from(view, offset))
                offset += _POINT2F.size
            (info_len,) = _UINT32.unpack_from(view, offset)
            offset += _UINT32.size
            if offset + info_len > len(view):
                raise ValueError("truncated marker data")
            info = bytes(view[offset:offset + info_len]).decode("utf-8")
            offset += info_len
            (ncontour,) = _UINT32.unpack_from(view, offset)
            offset += _UINT32.size
            contour = []
            for _ in range(ncontour):
                contour.append(_POINT2I.unpack_from(view, offset))
                offset += _POINT2I.size
        except struct.error as exc:
            raise ValueError("truncated marker data") from exc

        marker = cls(corners, header[0])
        marker.ssize = header[1]
        marker.rvec = np.array(header[2:5], dtype=np.float32)
        marker.tvec = np.array(header[5:8], dtype=np.float32)
        marker.dict_info = info
        marker.contour_points = [tuple(p) for p in contour]
        return marker