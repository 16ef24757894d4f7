import math
import struct

import numpy as np
import pytest

from arucopose.geometry import project_points, rodrigues
from arucopose.marker import (
    Marker,
    gl_model_view_matrix,
    marker_3d_points,
    ogre_pose_parameters,
    rotate_x_axis,
)

CAMERA = np.array([[800.0, 0.0, 320.0], [0.0, 800.0, 240.0], [0.0, 0.0, 1.0]])
TRUE_RVEC = np.array([0.1, -0.2, 0.05])
TRUE_TVEC = np.array([0.02, -0.01, 0.5])
SIZE = 0.1


def _observed_marker(marker_id=5):
    corners = project_points(marker_3d_points(SIZE), TRUE_RVEC, TRUE_TVEC, CAMERA)
    return Marker(corners, marker_id)


def test_marker_3d_points_layout():
    pts = marker_3d_points(2.0)
    assert pts.tolist() == [[-1, 1, 0], [1, 1, 0], [1, -1, 0], [-1, -1, 0]]


def test_default_marker_is_unset():
    m = Marker()
    assert m.id == -1
    assert m.rvec.tolist() == [-999999.0] * 3
    assert m.tvec.tolist() == [-999999.0] * 3
    assert not m.is_valid()


def test_valid_marker():
    m = Marker([(0, 0), (1, 0), (1, 1), (0, 1)], 3)
    assert m.is_valid()
    assert not Marker([(0, 0), (1, 0), (1, 1)], 3).is_valid()


@pytest.mark.parametrize("side", [2.0, 10.0, 37.5])
def test_square_measures(side):
    m = Marker([(0, 0), (side, 0), (side, side), (0, side)], 1)
    assert m.center() == pytest.approx([side / 2, side / 2])
    assert m.area() == pytest.approx(side * side)
    assert m.perimeter() == pytest.approx(4 * side)
    assert m.radius() == pytest.approx(side * math.sqrt(2) / 2)


def test_area_requires_four_corners():
    with pytest.raises(ValueError):
        Marker([(0, 0), (1, 0), (1, 1)], 1).area()


def test_bytes_round_trip():
    m = Marker([(1.5, 2.5), (3, 4), (5, 6), (7, 8)], 42)
    m.ssize = 0.25
    m.rvec = np.array([0.1, 0.2, 0.3], dtype=np.float32)
    m.tvec = np.array([1.0, 2.0, 3.0], dtype=np.float32)
    m.dict_info = "ARUCO_MIP_36h12"
    m.contour_points = [(1, 2), (3, 4), (5, 6)]
    data = m.to_bytes()
    assert data[:4] == struct.pack("<i", 42)
    assert len(data) == 4 + 4 + 12 + 12 + 4 + 8 * 4 + 4 + len(m.dict_info) + 4 + 8 * 3
    back = Marker.from_bytes(data)
    assert back.id == 42
    assert back.ssize == pytest.approx(0.25)
    assert np.allclose(back.corners, m.corners)
    assert np.allclose(back.rvec, m.rvec)
    assert np.allclose(back.tvec, m.tvec)
    assert back.dict_info == m.dict_info
    assert back.contour_points == m.contour_points


def test_from_bytes_truncated():
    data = Marker([(0, 0), (1, 0), (1, 1), (0, 1)], 7).to_bytes()
    with pytest.raises(ValueError):
        Marker.from_bytes(data[:-3])


def test_calculate_extrinsics_recovers_pose():
    m = _observed_marker()
    m.calculate_extrinsics(SIZE, CAMERA)
    assert np.allclose(m.tvec, TRUE_TVEC, atol=1e-3)
    assert np.allclose(rodrigues(m.rvec), rodrigues(TRUE_RVEC), atol=1e-3)
    assert m.ssize == pytest.approx(SIZE)


def test_calculate_extrinsics_applies_extrinsic_offset():
    plain = _observed_marker()
    plain.calculate_extrinsics(SIZE, CAMERA)
    shifted = _observed_marker()
    shifted.calculate_extrinsics(SIZE, CAMERA, None, np.array([[8.0, 0.0, 0.0]]))
    assert shifted.tvec[0] == pytest.approx(plain.tvec[0] - 8.0 / CAMERA[0, 0], abs=1e-6)
    assert shifted.tvec[1:] == pytest.approx(plain.tvec[1:], abs=1e-6)


def test_calculate_extrinsics_y_perpendicular():
    plain = _observed_marker()
    plain.calculate_extrinsics(SIZE, CAMERA)
    turned = _observed_marker()
    turned.calculate_extrinsics(SIZE, CAMERA, set_y_perpendicular=True)
    assert np.allclose(turned.rvec, rotate_x_axis(plain.rvec), atol=1e-5)


def test_calculate_extrinsics_errors():
    with pytest.raises(ValueError):
        Marker([(0, 0), (1, 0), (1, 1), (0, 1)]).calculate_extrinsics(SIZE, CAMERA)
    with pytest.raises(ValueError):
        _observed_marker().calculate_extrinsics(0.0, CAMERA)
    with pytest.raises(ValueError):
        _observed_marker().calculate_extrinsics(SIZE, np.zeros((0, 0)))


def test_transform_matrix_matches_pose():
    m = _observed_marker()
    m.calculate_extrinsics(SIZE, CAMERA)
    t = m.transform_matrix()
    assert t.dtype == np.float32
    assert np.allclose(t[:3, 3], m.tvec)
    assert t[3].tolist() == [0.0, 0.0, 0.0, 1.0]
    assert np.allclose(t[:3, :3], rodrigues(m.rvec), atol=1e-6)


def test_rotate_x_axis_quarter_turn():
    assert np.allclose(rotate_x_axis(np.zeros(3)), [math.pi / 2, 0.0, 0.0], atol=1e-9)


def test_rotate_x_axis_four_times_is_identity():
    start = np.array([0.3, -0.4, 0.2])
    r = start
    for _ in range(4):
        r = rotate_x_axis(r)
    assert np.allclose(rodrigues(r), rodrigues(start), atol=1e-6)


def test_rotate_x_axis_through_half_turn():
    r = rotate_x_axis(rotate_x_axis(np.zeros(3)))
    assert np.allclose(rodrigues(r), np.diag([1.0, -1.0, -1.0]), atol=1e-6)


def test_gl_model_view_matrix_identity_rotation():
    m = gl_model_view_matrix(np.zeros(3), [1.0, 2.0, 3.0])
    expected = [1, 0, 0, 0, 0, 1, 0, 0, 0, 0, -1, 0, 1, 2, -3, 1]
    assert np.allclose(m, expected)


def test_marker_gl_matrix_uses_pose():
    m = _observed_marker()
    m.calculate_extrinsics(SIZE, CAMERA)
    gl = m.gl_model_view_matrix().reshape(4, 4).T
    assert np.allclose(gl[:2, 3], m.tvec[:2], atol=1e-6)
    assert gl[2, 3] == pytest.approx(-m.tvec[2], abs=1e-6)


def test_ogre_pose_parameters():
    position, orientation = ogre_pose_parameters([0.3, -0.2, 0.4], [1.0, 2.0, 3.0])
    assert position.tolist() == [-1.0, -2.0, 3.0]
    assert np.linalg.norm(orientation) == pytest.approx(1.0, abs=1e-6)
    _, identity_q = ogre_pose_parameters(np.zeros(3), np.zeros(3))
    assert np.linalg.norm(identity_q) == pytest.approx(1.0)