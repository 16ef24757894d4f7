"""Sets of markers fixed to a common reference frame."""

from __future__ import annotations

import math
from enum import IntEnum
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

import numpy as np
import yaml

from .geometry import project_points, rotation_to_vector, undistort_points
from .ippe import solve_generic
from .levmarq import LevMarq

PathLike = Union[str, Path]


class InfoType(IntEnum):
    """Units in which the corners of a marker map are expressed."""

    NONE = -1
    PIX = 0
    METERS = 1


class Marker3DInfo:
    """The 3D corners of one marker of a map. Two infos are equal when their ids are."""

    def __init__(self, id: int = -1, points: Iterable = ()) -> None:
        self.id = int(id)
        pts = np.asarray(list(points) if not isinstance(points, np.ndarray) else points,
                         dtype=np.float32)
        self.points = pts.reshape(-1, 3)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Marker3DInfo):
            return self.id == other.id
        if isinstance(other, int):
            return self.id == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.id)

    def __len__(self) -> int:
        return self.points.shape[0]

    def __getitem__(self, idx: int) -> np.ndarray:
        return self.points[idx]

    def __repr__(self) -> str:
        return f"Marker3DInfo(id={self.id}, points={self.points.tolist()})"

    def copy(self) -> "Marker3DInfo":
        return Marker3DInfo(self.id, self.points.copy())

    def marker_size(self) -> float:
        """Length of the side between the first two corners."""
        if len(self) < 2:
            raise ValueError("a marker needs at least two corners to have a size")
        return float(np.linalg.norm(self.points[0].astype(float) - self.points[1].astype(float)))

    def to_text(self) -> str:
        """Whitespace-separated form: id, number of points, then x y z of each."""
        parts = [str(self.id), str(len(self))]
        for x, y, z in self.points:
            parts.extend((f"{float(x):g}", f"{float(y):g}", f"{float(z):g}"))
        return " ".join(parts) + " "

    @classmethod
    def _from_tokens(cls, tokens: Iterator[str]) -> "Marker3DInfo":
        marker_id = int(next(tokens))
        count = int(next(tokens))
        if count < 0:
            raise ValueError("negative point count")
        points = [(float(next(tokens)), float(next(tokens)), float(next(tokens)))
                  for _ in range(count)]
        return cls(marker_id, np.array(points, dtype=np.float32).reshape(-1, 3))


class MarkerMap(list):
    """A list of :class:`Marker3DInfo` whose positions share one reference frame.

    ``info_type`` tells whether the corners are in pixels or in meters and
    ``dictionary`` names the dictionary the markers belong to.
    """

    def __init__(
        self,
        markers: Iterable[Marker3DInfo] = (),
        info_type: InfoType = InfoType.NONE,
        dictionary: str = "",
    ) -> None:
        super().__init__(markers)
        self.info_type = InfoType(info_type)
        self.dictionary = dictionary

    def __repr__(self) -> str:
        return (f"MarkerMap({list.__repr__(self)}, info_type={self.info_type.name}, "
                f"dictionary={self.dictionary!r})")

    @property
    def is_expressed_in_meters(self) -> bool:
        return self.info_type == InfoType.METERS

    @property
    def is_expressed_in_pixels(self) -> bool:
        return self.info_type == InfoType.PIX

    def index_of(self, marker_id: int) -> int:
        """Position of the marker with this id, or -1 when it is not in the map."""
        for i, info in enumerate(self):
            if info.id == marker_id:
                return i
        return -1

    def marker_info(self, marker_id: int) -> Marker3DInfo:
        """The marker with this id; raises KeyError when it is not in the map."""
        idx = self.index_of(marker_id)
        if idx < 0:
            raise KeyError(f"marker with id {marker_id} is not found")
        return self[idx]

    def ids(self) -> list[int]:
        """Ids of all markers, in map order."""
        return [info.id for info in self]

    def indices(self, markers) -> list[int]:
        """Positions in ``markers`` of those whose id belongs to this map."""
        known = set(self.ids())
        return [i for i, m in enumerate(markers) if m.id in known]

    def convert_to_meters(self, marker_size: float) -> "MarkerMap":
        """A copy in meters, assuming every marker has side ``marker_size``."""
        if not self.is_expressed_in_pixels:
            raise ValueError("the board is not expressed in pixels")
        if not self:
            raise ValueError("the board has no markers")
        size_pix = int(self[0].marker_size())
        if size_pix == 0:
            raise ValueError("the first marker has zero size")
        pix_size = np.float32(marker_size / float(size_pix))
        converted = MarkerMap((info.copy() for info in self), InfoType.METERS, self.dictionary)
        for info in converted:
            info.points[:4] *= pix_size
        return converted

    def save(self, path: PathLike) -> None:
        """Write the map to a YAML file."""
        data = {
            "aruco_bc_dict": self.dictionary,
            "aruco_bc_nmarkers": len(self),
            "aruco_bc_mInfoType": int(self.info_type),
            "aruco_bc_markers": [
                {"id": info.id,
                 "corners": [[float(v) for v in p] for p in info.points]}
                for info in self
            ],
        }
        with open(path, "w", encoding="utf-8") as fh:
            yaml.safe_dump(data, fh, sort_keys=False, default_flow_style=None)

    @classmethod
    def load(cls, path: PathLike) -> "MarkerMap":
        """Read a map written by :meth:`save` or in the same layout."""
        with open(path, encoding="utf-8") as fh:
            lines = [ln for ln in fh.read().splitlines() if not ln.startswith("%YAML")]
        try:
            data = yaml.safe_load("\n".join(lines))
        except yaml.YAMLError as exc:
            raise ValueError(f"invalid file type: {path}") from exc
        if not isinstance(data, dict) or "aruco_bc_nmarkers" not in data:
            raise ValueError(f"invalid file type: {path}")

        count = int(data["aruco_bc_nmarkers"])
        infos = [Marker3DInfo() for _ in range(count)]
        for i, entry in enumerate(data.get("aruco_bc_markers") or []):
            if i >= count:
                raise ValueError("more markers than declared")
            points = []
            for corner in entry.get("corners") or []:
                if len(corner) != 3:
                    raise ValueError("invalid file type: corners need three coordinates")
                points.append([float(v) for v in corner])
            infos[i] = Marker3DInfo(int(entry["id"]), np.array(points, dtype=np.float32).reshape(-1, 3))
        info_type = InfoType(int(data.get("aruco_bc_mInfoType", InfoType.NONE)))
        dictionary = str(data.get("aruco_bc_dict") or "")
        return cls(infos, info_type, dictionary)

    def to_text(self) -> str:
        """Whitespace-separated form: info type, count, each marker, dictionary."""
        return (f"{int(self.info_type)} {len(self)} "
                + "".join(info.to_text() for info in self) + self.dictionary)

    @classmethod
    def from_text(cls, text: str) -> "MarkerMap":
        """Parse the form written by :meth:`to_text`."""
        tokens = iter(text.split())
        try:
            info_type = InfoType(int(next(tokens)))
            count = int(next(tokens))
            infos = [Marker3DInfo._from_tokens(tokens) for _ in range(count)]
        except StopIteration as exc:
            raise ValueError("truncated marker map text") from exc
        dictionary = next(tokens, "")
        return cls(infos, info_type, dictionary)

    def calculate_extrinsics(
        self,
        markers,
        marker_size: float,
        camera_matrix,
        dist_coeffs: Optional[np.ndarray] = None,
    ) -> tuple[Optional[np.ndarray], Optional[np.ndarray]]:
        """Camera pose relative to the map as ``(rvec, tvec)``.

        Only markers whose id is in the map are used. Returns ``(None, None)``
        when none of them is.
        """
        in_meters = self.convert_to_meters(marker_size) if self.is_expressed_in_pixels else self
        p2d, p3d = [], []
        for marker in markers:
            idx = in_meters.index_of(marker.id)
            if idx < 0:
                continue
            corners = np.asarray(marker.corners, dtype=float).reshape(-1, 2)
            points = in_meters[idx].points.astype(float)
            if corners.shape[0] != points.shape[0]:
                raise ValueError(f"marker {marker.id} has a different number of corners than the map")
            p2d.extend(corners)
            p3d.extend(points)
        if not p2d:
            return None, None

        img = np.array(p2d)
        obj = np.array(p3d)
        cam = np.asarray(camera_matrix, dtype=float).reshape(3, 3)
        try:
            best = solve_generic(obj, img, cam, dist_coeffs)[0]
            rvec, tvec = best.rvec, best.tvec
        except ValueError:
            if obj.shape[0] < 6:
                raise
            rvec, tvec = _dlt_pose(obj, img, cam, dist_coeffs)
        return _refine_pose(obj, img, cam, dist_coeffs, rvec, tvec)


def _dlt_pose(obj: np.ndarray, img: np.ndarray, cam: np.ndarray, dist) -> tuple[np.ndarray, np.ndarray]:
    """Initial pose of non-coplanar points by the direct linear transform."""
    norm = undistort_points(img, cam, dist)
    rows = []
    for (x, y, z), (u, v) in zip(obj, norm):
        rows.append([x, y, z, 1.0, 0.0, 0.0, 0.0, 0.0, -u * x, -u * y, -u * z, -u])
        rows.append([0.0, 0.0, 0.0, 0.0, x, y, z, 1.0, -v * x, -v * y, -v * z, -v])
    _, _, vt = np.linalg.svd(np.array(rows))
    p = vt[-1].reshape(3, 4)
    if np.linalg.det(p[:, :3]) < 0:
        p = -p
    u, s, vt3 = np.linalg.svd(p[:, :3])
    rot = u @ vt3
    tvec = p[:, 3] / s.mean()
    return rotation_to_vector(rot), tvec


def _refine_pose(obj, img, cam, dist, rvec, tvec) -> tuple[np.ndarray, np.ndarray]:
    def residuals(z):
        return (project_points(obj, z[:3], z[3:], cam, dist) - img).ravel()

    z0 = np.concatenate((np.asarray(rvec, dtype=float).ravel(), np.asarray(tvec, dtype=float).ravel()))
    solver = LevMarq(max_iters=100, min_error=0.0, min_step_error_diff=1e-16, der_epsilon=1e-6)
    z, _ = solver.solve(z0, residuals)
    if not np.all(np.isfinite(z)):
        return z0[:3], z0[3:]
    start = residuals(z0)
    end = residuals(z)
    if math.isfinite(float(end @ end)) and float(end @ end) <= float(start @ start):
        return z[:3], z[3:]
    return z0[:3], z0[3:]