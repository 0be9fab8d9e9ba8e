import numpy as np
import pytest

from unicam.core.camera import CameraType
from unicam.core.distortion import RadTanDistortion
from unicam.core.undistort import (
    MAP_SENTINEL,
    InterpolationMethod,
    MappedUndistorter,
    build_undistort_map,
    get_optimal_new_camera_matrix,
)
from unicam.core.unified_projection import UnifiedProjectionCamera
from unicam.errors import CameraContractError


def _distorted_camera() -> UnifiedProjectionCamera:
    return UnifiedProjectionCamera.create_test_camera(RadTanDistortion.create_test_distortion())


def _assert_map_in_bounds(map_u: np.ndarray, map_v: np.ndarray, width: int, height: int) -> np.ndarray:
    assert map_u.dtype == np.float32 and map_v.dtype == np.float32
    sentinel = (map_u == MAP_SENTINEL) & (map_v == MAP_SENTINEL)
    ok = ~sentinel
    assert np.all(np.isfinite(map_u[ok])) and np.all(np.isfinite(map_v[ok]))
    assert np.all((map_u[ok] >= 0.0) & (map_u[ok] < width))
    assert np.all((map_v[ok] >= 0.0) & (map_v[ok] < height))
    return ok


def test_optimal_camera_matrix_without_distortion_is_identity_mapping():
    cam = UnifiedProjectionCamera.create_test_camera()
    for alpha in (0.0, 0.5, 1.0):
        K = get_optimal_new_camera_matrix(cam, alpha, 1.0, undistort_to_pinhole=False)
        np.testing.assert_allclose(K, cam.camera_matrix(), atol=1e-9)


def test_optimal_camera_matrix_scales_with_output_size():
    cam = UnifiedProjectionCamera.create_test_camera()
    K = get_optimal_new_camera_matrix(cam, 0.0, 0.5, undistort_to_pinhole=False)
    assert abs(K[0, 0] - 400.0 * 319.0 / 639.0) < 1e-9
    assert abs(K[0, 2] - 320.0 * 319.0 / 639.0) < 1e-9


def test_optimal_camera_matrix_rejects_bad_arguments():
    cam = UnifiedProjectionCamera.create_test_camera()
    with pytest.raises(CameraContractError):
        get_optimal_new_camera_matrix(cam, 1.5, 1.0, undistort_to_pinhole=False)
    with pytest.raises(CameraContractError):
        get_optimal_new_camera_matrix(cam, 0.5, 0.0, undistort_to_pinhole=True)


def test_map_between_identical_cameras_is_identity():
    cam = UnifiedProjectionCamera.create_test_camera()
    map_u, map_v = build_undistort_map(cam, cam.clone())
    assert map_u.shape == (480, 640)
    vv, uu = np.mgrid[0:480, 0:640]
    # Row/column 0 may round to just outside the image and carry the sentinel.
    assert np.max(np.abs(map_u[1:, 1:] - uu[1:, 1:])) < 1e-3
    assert np.max(np.abs(map_v[1:, 1:] - vv[1:, 1:])) < 1e-3
    _assert_map_in_bounds(map_u, map_v, 640, 480)


@pytest.mark.parametrize("alpha", [0.0, 1.0])
def test_undistorter_removes_distortion(alpha):
    cam = _distorted_camera()
    undistorter = cam.create_mapped_undistorter(alpha=alpha, scale=0.25)

    out = undistorter.output_camera
    assert out.camera_type is CameraType.UNIFIED_PROJECTION
    assert not out.has_distortion
    assert out.xi == cam.xi
    assert (out.image_width, out.image_height) == (160, 120)
    assert undistorter.input_camera == cam

    ok = _assert_map_in_bounds(undistorter.map_u, undistorter.map_v, 640, 480)
    assert ok[60, 80]
    if alpha == 0.0:
        assert np.count_nonzero(ok) > 0.95 * ok.size


@pytest.mark.parametrize("xi", [1.5, 3.0])
@pytest.mark.parametrize("to_pinhole", [False, True])
@pytest.mark.parametrize("alpha", [0.0, 1.0])
def test_undistorter_for_large_xi(xi, to_pinhole, alpha):
    # The liftable disk of these cameras misses most of the image border.
    cam = UnifiedProjectionCamera.from_parameters(xi, 150.0, 150.0, 320.0, 240.0, 640, 480)
    if to_pinhole:
        undistorter = cam.create_mapped_undistorter_to_pinhole(alpha=alpha, scale=0.25)
    else:
        undistorter = cam.create_mapped_undistorter(alpha=alpha, scale=0.25)

    out = undistorter.output_camera
    assert (out.image_width, out.image_height) == (160, 120)
    assert np.all(np.isfinite(out.parameters))
    ok = _assert_map_in_bounds(undistorter.map_u, undistorter.map_v, 640, 480)
    assert ok[60, 80]


def test_undistorter_ignores_folded_lens_region():
    cam = UnifiedProjectionCamera.from_parameters(
        1.2, 150.0, 150.0, 320.0, 240.0, 640, 480, RadTanDistortion(k1=-0.1)
    )
    undistorter = cam.create_mapped_undistorter(alpha=0.0, scale=0.5)
    out = undistorter.output_camera
    assert out.fu > 30.0 and out.fv > 30.0
    ok = _assert_map_in_bounds(undistorter.map_u, undistorter.map_v, 640, 480)
    assert np.count_nonzero(ok) > 0.5 * ok.size


def test_optimal_camera_matrix_without_liftable_region():
    cam = UnifiedProjectionCamera.from_parameters(3.0, 150.0, 150.0, 5000.0, 240.0, 640, 480)
    with pytest.raises(CameraContractError):
        get_optimal_new_camera_matrix(cam, 0.0, 0.25, undistort_to_pinhole=False)


def test_optimal_camera_matrix_emits_no_warnings(recwarn):
    cam = UnifiedProjectionCamera.from_parameters(1.5, 150.0, 150.0, 320.0, 240.0, 640, 480)
    K = get_optimal_new_camera_matrix(cam, 0.0, 1.0, undistort_to_pinhole=True)
    assert np.all(np.isfinite(K))
    assert not [w for w in recwarn if issubclass(w.category, RuntimeWarning)]


def test_undistorter_to_pinhole():
    cam = _distorted_camera()
    undistorter = cam.create_mapped_undistorter_to_pinhole(alpha=0.0, scale=0.25)
    out = undistorter.output_camera
    assert out.camera_type is CameraType.PINHOLE
    assert out.image_width == 160 and out.image_height == 120

    ok = _assert_map_in_bounds(undistorter.map_u, undistorter.map_v, 640, 480)
    assert ok[60, 80]

    # A valid output pixel samples the input pixel the same scene ray lands on.
    kp_out = np.array([80.0, 60.0])
    bearing, valid = out.back_project3(kp_out)
    assert valid
    kp_in, _res = cam.project3(bearing)
    assert abs(float(undistorter.map_u[60, 80]) - kp_in[0]) < 1e-3
    assert abs(float(undistorter.map_v[60, 80]) - kp_in[1]) < 1e-3


def test_undistorter_rejects_bad_arguments():
    cam = _distorted_camera()
    with pytest.raises(CameraContractError):
        cam.create_mapped_undistorter(alpha=-0.1)
    with pytest.raises(CameraContractError):
        cam.create_mapped_undistorter_to_pinhole(scale=0.0)


def test_process_image_fills_missing_samples():
    pytest.importorskip("cv2")
    cam = _distorted_camera()
    undistorter = cam.create_mapped_undistorter(alpha=1.0, scale=0.25, interpolation="linear")
    assert undistorter.interpolation is InterpolationMethod.LINEAR

    image = np.full((480, 640), 200, dtype=np.uint8)
    out = undistorter.process_image(image, fill_value=7)
    assert out.shape == (120, 160)

    map_u, map_v = undistorter.map_u, undistorter.map_v
    sentinel = map_u == MAP_SENTINEL
    interior = (map_u >= 1.0) & (map_u <= 638.0) & (map_v >= 1.0) & (map_v <= 478.0)
    assert np.all(out[sentinel] == 7)
    assert np.all(out[interior] == 200)

    with pytest.raises(CameraContractError):
        undistorter.process_image(np.zeros((10, 10), dtype=np.uint8))


def test_mapped_undistorter_checks_map_shapes():
    cam = UnifiedProjectionCamera.create_test_camera()
    with pytest.raises(CameraContractError):
        MappedUndistorter(cam, cam, np.zeros((480, 640)), np.zeros((480, 639)))
