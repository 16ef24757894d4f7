[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "arucopose"
version = "0.1.0"
description = "Planar pose estimation (IPPE), marker maps and detector parameters for square fiducial markers"
requires-python = ">=3.10"
keywords = ["fiducial", "marker", "pose-estimation", "ippe", "homography", "levenberg-marquardt"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Image Recognition",
]
dependencies = [
    "numpy",
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["arucopose"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
