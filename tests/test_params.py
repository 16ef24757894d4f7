import struct

import pytest

from arucopose.params import (
    CornerRefinementMethod,
    DetectionMode,
    DetectorParams,
    ThresMethod,
)


def _exact_params():
    # floats chosen to be exactly representable in single precision
    return DetectorParams(
        detect_mode=DetectionMode.FAST,
        max_threads=4,
        border_dist_thres=0.25,
        low_res_marker_size=30,
        min_size=0.5,
        min_size_pix=12,
        enclosed_marker=True,
        thres_method=ThresMethod.AUTO_FIXED,
        n_attempts_auto_thres_fix=5,
        adaptive_thres_window_size=15,
        threshold=100,
        adaptive_thres_window_size_range=2,
        marker_warp_pix_size=6,
        corner_refinement=CornerRefinementMethod.LINES,
        auto_size=True,
        ts=0.125,
        pyrfactor=2.0,
        error_correction_rate=0.5,
        dictionary="ARUCO_MIP_36h12",
        tracking_min_detections=3,
        closing_size=1,
    )


@pytest.mark.parametrize(
    "text, expected",
    [
        ("DM_FAST", DetectionMode.FAST),
        ("DM_NORMAL", DetectionMode.NORMAL),
        ("DM_VIDEO_FAST", DetectionMode.VIDEO_FAST),
        ("bogus", DetectionMode.NORMAL),
    ],
)
def test_detection_mode_parse(text, expected):
    assert DetectionMode.parse(text) is expected


@pytest.mark.parametrize(
    "text, expected",
    [
        ("CORNER_LINES", CornerRefinementMethod.LINES),
        ("CORNER_SUBPIX", CornerRefinementMethod.SUBPIX),
        ("CORNER_NONE", CornerRefinementMethod.NONE),
        ("", CornerRefinementMethod.SUBPIX),
    ],
)
def test_corner_refinement_parse(text, expected):
    assert CornerRefinementMethod.parse(text) is expected


@pytest.mark.parametrize(
    "text, expected",
    [
        ("THRES_ADAPTIVE", ThresMethod.ADAPTIVE),
        ("THRES_AUTO_FIXED", ThresMethod.AUTO_FIXED),
        ("nothing", ThresMethod.ADAPTIVE),
    ],
)
def test_thres_method_parse(text, expected):
    assert ThresMethod.parse(text) is expected


@pytest.mark.parametrize("enum_cls", [DetectionMode, CornerRefinementMethod, ThresMethod])
def test_labels_parse_back(enum_cls):
    for member in enum_cls:
        assert enum_cls.parse(member.label) is member


def test_set_detection_mode_normal():
    p = DetectorParams()
    p.set_detection_mode(DetectionMode.FAST)
    p.set_detection_mode(DetectionMode.NORMAL, 0.02)
    assert p.detect_mode is DetectionMode.NORMAL
    assert p.min_size == 0.02
    assert p.auto_size is False
    assert p.thres_method is ThresMethod.ADAPTIVE
    assert p.threshold == 7


def test_set_detection_mode_fast():
    p = DetectorParams()
    p.set_detection_mode(DetectionMode.FAST)
    assert p.thres_method is ThresMethod.AUTO_FIXED
    assert p.threshold == 100
    assert p.auto_size is False


def test_set_detection_mode_video_fast():
    p = DetectorParams()
    p.set_detection_mode(DetectionMode.VIDEO_FAST, 0.1)
    assert p.thres_method is ThresMethod.AUTO_FIXED
    assert p.auto_size is True
    assert p.ts == pytest.approx(0.3)
    assert p.min_size == 0.1


def test_set_threshold_method_explicit_values():
    p = DetectorParams()
    p.set_threshold_method(ThresMethod.ADAPTIVE, 9, 21, 3)
    assert p.threshold == 9
    assert p.adaptive_thres_window_size == 21
    assert p.adaptive_thres_window_size_range == 3
    assert p.thres_method is ThresMethod.ADAPTIVE


def test_set_threshold_method_defaults():
    p = DetectorParams()
    p.set_threshold_method(ThresMethod.AUTO_FIXED)
    assert p.threshold == 100
    assert p.adaptive_thres_window_size == -1
    assert p.adaptive_thres_window_size_range == 0


def test_corner_refinement_clears_min_size_unless_subpix():
    p = DetectorParams(min_size=0.3)
    p.set_corner_refinement_method(CornerRefinementMethod.SUBPIX)
    assert p.min_size == 0.3
    p.set_corner_refinement_method(CornerRefinementMethod.LINES)
    assert p.corner_refinement is CornerRefinementMethod.LINES
    assert p.min_size == 0.0


def test_bytes_round_trip():
    p = _exact_params()
    assert DetectorParams.from_bytes(p.to_bytes()) == p


def test_bytes_layout_starts_with_mode_and_ends_with_dictionary():
    p = _exact_params()
    data = p.to_bytes()
    assert struct.unpack_from("<i", data, 0)[0] == int(DetectionMode.FAST)
    assert struct.unpack_from("<i", data, 4)[0] == 4
    assert data.endswith(b"ARUCO_MIP_36h12")
    length = struct.unpack_from("<I", data, len(data) - len(b"ARUCO_MIP_36h12") - 4)[0]
    assert length == len("ARUCO_MIP_36h12")


def test_bytes_do_not_carry_pyrfactor():
    p = _exact_params()
    p.pyrfactor = 3.0
    assert DetectorParams.from_bytes(p.to_bytes()).pyrfactor == DetectorParams().pyrfactor


def test_truncated_bytes_raise():
    data = _exact_params().to_bytes()
    with pytest.raises(ValueError):
        DetectorParams.from_bytes(data[:-3])
    with pytest.raises(ValueError):
        DetectorParams.from_bytes(data[:10])


def test_to_dict_uses_labels():
    d = _exact_params().to_dict()
    assert d["aruco-detectMode"] == "DM_FAST"
    assert d["aruco-thresMethod"] == "THRES_AUTO_FIXED"
    assert d["aruco-cornerRefinementM"] == "CORNER_LINES"
    assert d["aruco-dictionary"] == "ARUCO_MIP_36h12"


def test_dict_round_trip():
    p = _exact_params()
    assert DetectorParams.from_dict(p.to_dict()) == p


def test_from_dict_keeps_missing_defaults():
    p = DetectorParams.from_dict({"aruco-maxThreads": 8, "aruco-detectMode": "DM_VIDEO_FAST"})
    default = DetectorParams()
    assert p.max_threads == 8
    assert p.detect_mode is DetectionMode.VIDEO_FAST
    assert p.dictionary == default.dictionary
    assert p.threshold == default.threshold


def test_file_round_trip(tmp_path):
    path = tmp_path / "params.yml"
    p = _exact_params()
    p.save(path)
    assert DetectorParams.load(path) == p


def test_load_accepts_yaml_directive(tmp_path):
    path = tmp_path / "params.yml"
    path.write_text('%YAML:1.0\n---\naruco-ThresHold: 42\naruco-thresMethod: "THRES_AUTO_FIXED"\n')
    p = DetectorParams.load(path)
    assert p.threshold == 42
    assert p.thres_method is ThresMethod.AUTO_FIXED


def test_load_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        DetectorParams.load(tmp_path / "absent.yml")


def test_load_rejects_non_mapping(tmp_path):
    path = tmp_path / "bad.yml"
    path.write_text("- 1\n- 2\n")
    with pytest.raises(ValueError):
        DetectorParams.load(path)