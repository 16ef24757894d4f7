# arucopose

Geometry tools for square fiducial markers. It covers pose estimation from
planar points, boards of markers in a shared frame, and detector settings.
Everything is built on NumPy. Files are read and written with PyYAML.

## Installation

```
pip install .
```

To run the tests, install the `test` extra with `pip install .[test]` and then run `pytest`.

## Modules

- `arucopose.ippe`: pose of a planar object by Infinitesimal Plane-based Pose
  Estimation.
  - `solve_generic(object_points, image_points, camera_matrix, dist_coeffs)`
    takes four or more coplanar points.
  - `solve_square(square_length, image_points, camera_matrix, dist_coeffs)`
    takes the four corners of a square.
  - Both return two `PoseSolution` candidates (`rvec`, `tvec`, `error`, and a
    `matrix` property), best first.
  - `solve_pnp` and `solve_pnp_square` return the same two poses as float32
    4x4 matrices, each paired with its error.
  - `eval_reproj_error`, `sort_poses_by_reproj_error` and `mean_scene_depth`
    are also available.
- `arucopose.ippe_core`: the lower-level IPPE steps.
  - `square_object_corners_2d` and `square_object_corners_3d`
  - `rotate_vec_to_z_axis`
  - `compute_rotations` and `compute_translation`
  - `make_canonical_object_points` and `solve_canonical_form`
- `arucopose.homography`:
  - `normalize_data_isotropic`
  - `homography_ho`, a general estimator for four or more points
  - `homography_from_square_points`, a closed-form solution for a square
- `arucopose.geometry`:
  - `rodrigues` and `rotation_to_vector`, which convert between an
    axis-angle vector and a rotation matrix
  - `rt_matrix`, which builds a 4x4 transform
  - `project_points` and `undistort_points`, for a pinhole camera with radial
    and tangential distortion (0, 4, 5 or 8 coefficients)
- `arucopose.levmarq`: `LevMarq`, a Levenberg–Marquardt least-squares solver.
  - `solve(z, f, jacobian=None)` minimises `||f(z)||²`. Without a Jacobian
    function, it estimates the Jacobian by central differences.
  - `init`, `step` and `current_solution` let you run the search one step at
    a time.
  - Set `step_callback` or `stop_function` to watch or control the iteration.
- `arucopose.marker`: `Marker` holds the image corners, the id and an
  optional pose.
  - Measurements: `center`, `area`, `perimeter` and `radius`.
  - `calculate_extrinsics` estimates the pose with IPPE and refines it with
    `LevMarq`.
  - Pose output: `transform_matrix`, plus OpenGL and Ogre forms from
    `gl_model_view_matrix` and `ogre_pose_parameters`.
  - `to_bytes` and `from_bytes` use a little-endian binary format.
  - Module-level helpers: `marker_3d_points` and `rotate_x_axis`.
- `arucopose.markermap`: `MarkerMap` is a list of `Marker3DInfo`. Its
  `InfoType` is `PIX`, `METERS` or `NONE`, and it names a dictionary.
  - Lookup: `index_of`, `marker_info`, `ids` and `indices`.
  - `convert_to_meters` turns a board in pixels into one in meters.
  - YAML files: `save` and `load`. Plain text: `to_text` and `from_text`.
  - `calculate_extrinsics` finds the camera pose relative to the map from
    detected markers. It returns `(None, None)` when no marker belongs to the
    map.
- `arucopose.params`: `DetectorParams` with the `DetectionMode`,
  `ThresMethod` and `CornerRefinementMethod` enums.
  - Setters: `set_detection_mode`, `set_threshold_method` and
    `set_corner_refinement_method`.
  - Conversions: `to_bytes` / `from_bytes`, `to_dict` / `from_dict`, and
    YAML `save` / `load`.

## Example

```python
import numpy as np
from arucopose.ippe import solve_square

corners = np.array([[-0.05, 0.05], [0.05, 0.05], [0.05, -0.05], [-0.05, -0.05]])
best, other = solve_square(0.1, corners, None, None)
print(best.rvec, best.tvec, best.error)
```

When the camera matrix is `None`, the image points are taken to be normalised
coordinates already.

## What it does not do

The package does not find markers in images. It has no thresholding, no
contour search and no decoding of marker ids against a dictionary.
`DetectorParams` only holds and stores the settings for such a search. The
corners of a `Marker` must come from elsewhere.

The package also does not draw markers or render board images. It has no
command-line program.