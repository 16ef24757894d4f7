"""Pose estimation, homographies, marker maps and detector parameters for square fiducial markers."""

__version__ = "0.1.0"

__all__ = [
    "geometry",
    "homography",
    "ippe",
    "ippe_core",
    "levmarq",
    "marker",
    "markermap",
    "params",
]