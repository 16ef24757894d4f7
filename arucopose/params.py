"""Operating parameters of the marker detector and their stored forms."""

from __future__ import annotations

import struct
from dataclasses import dataclass, fields
from enum import IntEnum
from pathlib import Path
from typing import Any, Mapping, Union

import yaml

PathLike = Union[str, Path]


class DetectionMode(IntEnum):
    """Trade-off between detection speed and robustness."""

    NORMAL = 0
    FAST = 1
    VIDEO_FAST = 2

    @property
    def label(self) -> str:
        return "DM_" + self.name

    @classmethod
    def parse(cls, text: str) -> "DetectionMode":
        """Mode named by ``text``; unknown names give NORMAL."""
        for member in cls:
            if member.label == text:
                return member
        return cls.NORMAL


class CornerRefinementMethod(IntEnum):
    """How corner locations are refined after detection."""

    SUBPIX = 0
    LINES = 1
    NONE = 2

    @property
    def label(self) -> str:
        return "CORNER_" + self.name

    @classmethod
    def parse(cls, text: str) -> "CornerRefinementMethod":
        """Method named by ``text``; unknown names give SUBPIX."""
        for member in cls:
            if member.label == text:
                return member
        return cls.SUBPIX


class ThresMethod(IntEnum):
    """Image thresholding strategy."""

    ADAPTIVE = 0
    AUTO_FIXED = 1

    @property
    def label(self) -> str:
        return "THRES_" + self.name

    @classmethod
    def parse(cls, text: str) -> "ThresMethod":
        """Method named by ``text``; unknown names give ADAPTIVE."""
        for member in cls:
            if member.label == text:
                return member
        return cls.ADAPTIVE


_LAYOUT = struct.Struct("<iififi?7i?ff2i")
_UINT32 = struct.Struct("<I")

# (stored key, attribute, converter) for the plain numeric and text fields.
_KEYS: tuple[tuple[str, str, Any], ...] = (
    ("aruco-maxThreads", "max_threads", int),
    ("aruco-borderDistThres", "border_dist_thres", float),
    ("aruco-lowResMarkerSize", "low_res_marker_size", int),
    ("aruco-minSize", "min_size", float),
    ("aruco-minSize_pix", "min_size_pix", int),
    ("aruco-enclosedMarker", "enclosed_marker", bool),
    ("aruco-NAttemptsAutoThresFix", "n_attempts_auto_thres_fix", int),
    ("aruco-AdaptiveThresWindowSize", "adaptive_thres_window_size", int),
    ("aruco-ThresHold", "threshold", int),
    ("aruco-AdaptiveThresWindowSize_range", "adaptive_thres_window_size_range", int),
    ("aruco-markerWarpPixSize", "marker_warp_pix_size", int),
    ("aruco-autoSize", "auto_size", bool),
    ("aruco-ts", "ts", float),
    ("aruco-pyrfactor", "pyrfactor", float),
    ("aruco-error_correction_rate", "error_correction_rate", float),
    ("aruco-dictionary", "dictionary", str),
    ("aruco-trackingMinDetections", "tracking_min_detections", int),
    ("aruco-closingSize", "closing_size", int),
)


@dataclass
class DetectorParams:
    """Settings that control how markers are searched for in an image."""

    detect_mode: DetectionMode = DetectionMode.NORMAL
    max_threads: int = 1
    border_dist_thres: float = 0.015
    low_res_marker_size: int = 20
    min_size: float = 0.0
    min_size_pix: int = -1
    enclosed_marker: bool = False
    thres_method: ThresMethod = ThresMethod.ADAPTIVE
    n_attempts_auto_thres_fix: int = 3
    adaptive_thres_window_size: int = -1
    threshold: int = 7
    adaptive_thres_window_size_range: int = 0
    marker_warp_pix_size: int = 5
    corner_refinement: CornerRefinementMethod = CornerRefinementMethod.SUBPIX
    auto_size: bool = False
    ts: float = 0.25
    pyrfactor: float = 2.0
    error_correction_rate: float = 0.0
    dictionary: str = "ALL_DICTS"
    tracking_min_detections: int = 0
    closing_size: int = 0

    def set_detection_mode(self, mode: DetectionMode, min_marker_size: float = 0.0) -> None:
        """Select a detection mode and the thresholding and sizing it implies."""
        self.detect_mode = DetectionMode(mode)
        self.min_size = float(min_marker_size)
        if self.detect_mode == DetectionMode.NORMAL:
            self.auto_size = False
            self.set_threshold_method(ThresMethod.ADAPTIVE)
        elif self.detect_mode == DetectionMode.FAST:
            self.auto_size = False
            self.set_threshold_method(ThresMethod.AUTO_FIXED)
        else:
            self.set_threshold_method(ThresMethod.AUTO_FIXED)
            self.auto_size = True
            self.ts = 0.3

    def set_threshold_method(
        self,
        method: ThresMethod,
        threshold: int = -1,
        window_size: int = -1,
        window_size_range: int = 0,
    ) -> None:
        """Choose the thresholding method; a threshold of -1 picks the method's default."""
        self.adaptive_thres_window_size = int(window_size)
        self.thres_method = ThresMethod(method)
        if threshold == -1:
            self.threshold = 100 if self.thres_method == ThresMethod.AUTO_FIXED else 7
        else:
            self.threshold = int(threshold)
        self.adaptive_thres_window_size_range = int(window_size_range)

    def set_corner_refinement_method(self, method: CornerRefinementMethod) -> None:
        """Choose the corner refinement; anything but SUBPIX clears the minimum size."""
        self.corner_refinement = CornerRefinementMethod(method)
        if self.corner_refinement != CornerRefinementMethod.SUBPIX:
            self.min_size = 0.0

    def to_bytes(self) -> bytes:
        """Serialise to the little-endian binary layout."""
        head = _LAYOUT.pack(
            int(self.detect_mode),
            self.max_threads,
            self.border_dist_thres,
            self.low_res_marker_size,
            self.min_size,
            self.min_size_pix,
            bool(self.enclosed_marker),
            int(self.thres_method),
            self.n_attempts_auto_thres_fix,
            self.adaptive_thres_window_size,
            self.threshold,
            self.adaptive_thres_window_size_range,
            self.marker_warp_pix_size,
            int(self.corner_refinement),
            bool(self.auto_size),
            self.ts,
            self.error_correction_rate,
            self.tracking_min_detections,
            self.closing_size,
        )
        name = self.dictionary.encode("utf-8")
        return head + _UINT32.pack(len(name)) + name

    @classmethod
    def from_bytes(cls, data: bytes) -> "DetectorParams":
        """Read parameters written by :meth:`to_bytes`."""
        view = memoryview(data)
        try:
            values = _LAYOUT.unpack_from(view, 0)
            (length,) = _UINT32.unpack_from(view, _LAYOUT.size)
        except struct.error as exc:
            raise ValueError("truncated parameter data") from exc
        start = _LAYOUT.size + _UINT32.size
        if start + length > len(view):
            raise ValueError("truncated parameter data")
        (mode, max_threads, border, low_res, min_size, min_pix, enclosed, thres,
         attempts, wsize, threshold, wrange, warp, corner, auto_size, ts, ecr,
         tracking, closing) = values
        return cls(
            detect_mode=DetectionMode(mode),
            max_threads=max_threads,
            border_dist_thres=border,
            low_res_marker_size=low_res,
            min_size=min_size,
            min_size_pix=min_pix,
            enclosed_marker=enclosed,
            thres_method=ThresMethod(thres),
            n_attempts_auto_thres_fix=attempts,
            adaptive_thres_window_size=wsize,
            threshold=threshold,
            adaptive_thres_window_size_range=wrange,
            marker_warp_pix_size=warp,
            corner_refinement=CornerRefinementMethod(corner),
            auto_size=auto_size,
            ts=ts,
            error_correction_rate=ecr,
            dictionary=bytes(view[start:start + length]).decode("utf-8"),
            tracking_min_detections=tracking,
            closing_size=closing,
        )

    def to_dict(self) -> dict[str, Any]:
        """Mapping of stored keys to values; enums are written by name."""
        data: dict[str, Any] = {
            "aruco-dictionary": self.dictionary,
            "aruco-detectMode": self.detect_mode.label,
            "aruco-cornerRefinementM": self.corner_refinement.label,
            "aruco-thresMethod": self.thres_method.label,
        }
        for key, attr, conv in _KEYS:
            if key in data:
                continue
            value = getattr(self, attr)
            data[key] = int(value) if conv is bool else conv(value)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DetectorParams":
        """Build parameters from a mapping; missing keys keep their defaults."""
        params = cls()
        for key, attr, conv in _KEYS:
            if data.get(key) is not None:
                setattr(params, attr, conv(data[key]))
        if data.get("aruco-detectMode") is not None:
            params.detect_mode = DetectionMode.parse(str(data["aruco-detectMode"]))
        if data.get("aruco-thresMethod") is not None:
            params.thres_method = ThresMethod.parse(str(data["aruco-thresMethod"]))
        if data.get("aruco-cornerRefinementM") is not None:
            params.corner_refinement = CornerRefinementMethod.parse(
                str(data["aruco-cornerRefinementM"])
            )
        return params

    def save(self, path: PathLike) -> None:
        """Write the parameters to a YAML file."""
        with open(path, "w", encoding="utf-8") as fh:
            yaml.safe_dump(self.to_dict(), fh, sort_keys=False)

    @classmethod
    def load(cls, path: PathLike) -> "DetectorParams":
        """Read parameters from a YAML file written by :meth:`save` or alike."""
        with open(path, encoding="utf-8") as fh:
            lines = [ln for ln in fh.read().splitlines() if not ln.startswith("%YAML")]
        try:
            data = yaml.safe_load("\n".join(lines))
        except yaml.YAMLError as exc:
            raise ValueError(f"invalid parameter file: {path}") from exc
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(f"invalid parameter file: {path}")
        return cls.from_dict(data)

    def copy(self) -> "DetectorParams":
        return DetectorParams(**{f.name: getattr(self, f.name) for f in fields(self)})