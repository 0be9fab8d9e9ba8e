"""
Unified projection (omnidirectional / catadioptric) camera with optional distortion.

Intrinsic parameters ordering: xi, fu, fv, cu, cv.

A 3D point p = (x, y, z) with d = |p| maps to the normalized plane as

    m = (x, y) / (z + xi * d)

then through the distortion model and the pixel mapping (fu*mx + cu, fv*my + cv).

References:
  C. Geyer and K. Daniilidis. A unifying theory for central panoramic systems
  and practical implications. ECCV 2000.
  J. P. Barreto and H. Araujo. Issues on the geometry of central catadioptric
  image formation. CVPR 2001.
"""
from __future__ import annotations

import logging

import numpy as np

from unicam.core.camera import Camera, CameraType, Projection, ProjectionResult, classify_projection
from unicam.core.distortion import Distortion
from unicam.core.undistort import (
    InterpolationMethod,
    MappedUndistorter,
    build_undistort_map,
    get_optimal_new_camera_matrix,
)
from unicam.core.validity import fov_parameter, is_in_projection_domain, is_undistorted_keypoint_valid
from unicam.errors import require

logger = logging.getLogger(__name__)


class UnifiedProjectionCamera(Camera):
    CAMERA_TYPE = CameraType.UNIFIED_PROJECTION
    PARAMETER_NAMES = ("xi", "fu", "fv", "cu", "cv")

    @classmethod
    def from_parameters(
        cls,
        xi: float,
        fu: float,
        fv: float,
        cu: float,
        cv: float,
        image_width: int,
        image_height: int,
        distortion: Distortion | None = None,
    ) -> "UnifiedProjectionCamera":
        return cls(np.array([xi, fu, fv, cu, cv], dtype=np.float64), image_width, image_height, distortion)

    @classmethod
    def create_test_camera(cls, distortion: Distortion | None = None) -> "UnifiedProjectionCamera":
        return cls.from_parameters(0.9, 400.0, 400.0, 320.0, 240.0, 640, 480, distortion)

    @classmethod
    def intrinsics_valid(cls, intrinsics: np.ndarray) -> bool:
        intrinsics = np.asarray(intrinsics, dtype=np.float64).reshape(-1)
        if intrinsics.shape[0] != cls.parameter_count():
            return False
        xi, fu, fv, cu, cv = intrinsics
        return bool(xi >= 0.0 and fu > 0.0 and fv > 0.0 and cu > 0.0 and cv > 0.0)

    @property
    def xi(self) -> float:
        return float(self._intrinsics[0])

    @property
    def fu(self) -> float:
        return float(self._intrinsics[1])

    @property
    def fv(self) -> float:
        return float(self._intrinsics[2])

    @property
    def cu(self) -> float:
        return float(self._intrinsics[3])

    @property
    def cv(self) -> float:
        return float(self._intrinsics[4])

    def fov_parameter(self) -> float:
        return float(fov_parameter(self.xi))

    def project3_functional(
        self,
        point_3d: np.ndarray,
        intrinsics_external: np.ndarray | None = None,
        distortion_external: np.ndarray | None = None,
        *,
        jacobian_point: bool = False,
        jacobian_intrinsics: bool = False,
        jacobian_distortion: bool = False,
    ) -> Projection:
        """
        Project a point given in the camera frame.

        `intrinsics_external` / `distortion_external` replace the camera's own
        parameters for this call (the latter is ignored without a distortion
        model). Each Jacobian is computed only when its flag is set:

          jacobian_point:       d(keypoint)/d(point_3d), (2,3)
          jacobian_intrinsics:  d(keypoint)/d(xi,fu,fv,cu,cv), (2,5)
          jacobian_distortion:  d(keypoint)/d(distortion parameters), (2,D)
        """
        p = np.asarray(point_3d, dtype=np.float64).reshape(3)
        xi, fu, fv, cu, cv = (float(v) for v in self._resolve_intrinsics(intrinsics_external))
        dist_params = self._resolve_distortion(distortion_external)
        lens = self._lens()

        if not is_in_projection_domain(p, xi):
            return self._invalid_projection(jacobian_point, jacobian_intrinsics, jacobian_distortion)

        x, y, z = (float(v) for v in p)
        d = float(np.linalg.norm(p))
        rz = 1.0 / (z + xi * d)
        m = np.array([x * rz, y * rz], dtype=np.float64)

        # The distortion Jacobian enters both the point and the xi derivative.
        if jacobian_point or jacobian_intrinsics:
            md, J_dist = lens.distort_with_jacobian(m, dist_params)
        else:
            md, J_dist = lens.distort(m, dist_params), None

        J_point = None
        if jacobian_point:
            rz2 = rz * rz / d
            J_m = np.empty((2, 3), dtype=np.float64)
            J_m[0, 0] = rz2 * (d * z + xi * (y * y + z * z))
            J_m[1, 0] = -rz2 * xi * x * y
            J_m[0, 1] = J_m[1, 0]
            J_m[1, 1] = rz2 * (d * z + xi * (x * x + z * z))
            rz2 = rz2 * (-xi * z - d)
            J_m[0, 2] = x * rz2
            J_m[1, 2] = y * rz2
            J_point = np.diag([fu, fv]) @ J_dist @ J_m

        J_intr = None
        if jacobian_intrinsics:
            J_intr = np.zeros((2, self.parameter_count()), dtype=np.float64)
            dm_dxi = -m * d * rz
            J_intr[:, 0] = np.diag([fu, fv]) @ J_dist @ dm_dxi
            J_intr[0, 1] = md[0]
            J_intr[1, 2] = md[1]
            J_intr[0, 3] = 1.0
            J_intr[1, 4] = 1.0

        J_dparams = None
        if jacobian_distortion:
            J_dparams = lens.distort_parameter_jacobian(m, dist_params)
            J_dparams[0, :] *= fu
            J_dparams[1, :] *= fv

        keypoint = np.array([fu * md[0] + cu, fv * md[1] + cv], dtype=np.float64)
        return Projection(
            keypoint=keypoint,
            result=self.evaluate_projection_result(keypoint, p),
            jacobian_point=J_point,
            jacobian_intrinsics=J_intr,
            jacobian_distortion=J_dparams,
        )

    def project3_vectorized(self, points_3d: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        P = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)
        xi = self.xi
        keypoints = np.zeros((P.shape[0], 2), dtype=np.float64)
        ok = np.asarray(is_in_projection_domain(P, xi), dtype=bool).reshape(-1)
        if np.any(ok):
            Q = P[ok]
            d = np.linalg.norm(Q, axis=1)
            m = Q[:, :2] / (Q[:, 2] + xi * d)[:, None]
            md = self._lens().distort(m)
            keypoints[ok, 0] = self.fu * md[:, 0] + self.cu
            keypoints[ok, 1] = self.fv * md[:, 1] + self.cv
        results = classify_projection(keypoints, P, self._image_width, self._image_height)
        results = np.where(ok, results, ProjectionResult.INVALID.value).astype(np.int8)
        return keypoints, results

    def back_project3_vectorized(self, keypoints: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        kp = np.asarray(keypoints, dtype=np.float64).reshape(-1, 2)
        xi = self.xi
        m = self.normalize_keypoints(kp)
        rho2 = np.sum(m * m, axis=1)
        with np.errstate(invalid="ignore"):
            t = np.maximum(1.0 + (1.0 - xi * xi) * rho2, 0.0)
            z = 1.0 - xi * (rho2 + 1.0) / (xi + np.sqrt(t))
        bearings = np.concatenate([m, z[:, None]], axis=1)
        valid = np.asarray(is_undistorted_keypoint_valid(rho2, xi), dtype=bool).reshape(-1)
        return bearings, valid

    def is_liftable(self, keypoint: np.ndarray) -> bool:
        """Whether a keypoint lies inside the region that maps back onto the unit sphere."""
        m = self.normalize_keypoints(np.asarray(keypoint, dtype=np.float64).reshape(2))
        return bool(is_undistorted_keypoint_valid(float(np.dot(m, m)), self.xi))

    def create_random_keypoint(self, rng: np.random.Generator | None = None, max_tries: int = 100) -> np.ndarray:
        """
        Random keypoint that is both visible and liftable.

        For xi > 1 the liftable region is the disk rho^2 <= 1/(xi^2 - 1) of the
        normalized plane, so candidates are drawn inside it; otherwise uniformly
        over the image. Returns the principal point if no candidate is accepted
        within `max_tries`.
        """
        rng = np.random.default_rng() if rng is None else rng
        w, h = self._image_width, self._image_height
        xi = self.xi
        for _ in range(int(max_tries)):
            if xi > 1.0:
                theta = rng.uniform(-np.pi, np.pi)
                r = rng.uniform(0.0, 1.0) * np.sqrt(1.0 / (xi * xi - 1.0))
                m = self._lens().distort(np.array([r * np.cos(theta), r * np.sin(theta)]))
                kp = np.array([self.fu * m[0] + self.cu, self.fv * m[1] + self.cv], dtype=np.float64)
            else:
                kp = np.array([rng.uniform(0.0, w), rng.uniform(0.0, h)], dtype=np.float64)
            if self.is_keypoint_visible(kp) and self.is_liftable(kp):
                return kp
        logger.debug("create_random_keypoint: no valid keypoint after %d tries, using image center", max_tries)
        return np.array([self.cu, self.cv], dtype=np.float64)

    def create_random_visible_point(self, depth: float, rng: np.random.Generator | None = None) -> np.ndarray:
        """Random 3D point at distance `depth` from the projection center that projects into the image."""
        require(depth > 0.0, "depth must be > 0")
        kp = self.create_random_keypoint(rng)
        bearing, ok = self.back_project3(kp)
        if not ok:
            raise RuntimeError(f"back-projection of random keypoint {kp} failed")
        return bearing / np.linalg.norm(bearing) * float(depth)

    def _create_mapped_undistorter(
        self,
        alpha: float,
        scale: float,
        interpolation: InterpolationMethod,
        undistort_to_pinhole: bool,
    ) -> MappedUndistorter:
        # Lazy: the factory depends on this module.
        from unicam.core.factory import create_camera

        require(0.0 <= alpha <= 1.0, "alpha must be in [0, 1]")
        require(scale > 0.0, "scale must be > 0")

        input_camera = self.clone()
        K = get_optimal_new_camera_matrix(input_camera, alpha, scale, undistort_to_pinhole)
        fuv_cuv = [K[0, 0], K[1, 1], K[0, 2], K[1, 2]]
        if undistort_to_pinhole:
            camera_type, intrinsics = CameraType.PINHOLE, fuv_cuv
        else:
            camera_type, intrinsics = CameraType.UNIFIED_PROJECTION, [self.xi] + fuv_cuv

        output_camera = create_camera(
            camera_type,
            np.asarray(intrinsics, dtype=np.float64),
            int(scale * self._image_width),
            int(scale * self._image_height),
        )
        map_u, map_v = build_undistort_map(input_camera, output_camera)
        return MappedUndistorter(input_camera, output_camera, map_u, map_v, interpolation)

    def create_mapped_undistorter(
        self,
        alpha: float = 1.0,
        scale: float = 1.0,
        interpolation: InterpolationMethod = InterpolationMethod.LINEAR,
    ) -> MappedUndistorter:
        """Remove the distortion only: the output camera is a unified projection camera without distortion."""
        return self._create_mapped_undistorter(alpha, scale, interpolation, undistort_to_pinhole=False)

    def create_mapped_undistorter_to_pinhole(
        self,
        alpha: float = 1.0,
        scale: float = 1.0,
        interpolation: InterpolationMethod = InterpolationMethod.LINEAR,
    ) -> MappedUndistorter:
        """Rectify to a distortion-free pinhole camera."""
        return self._create_mapped_undistorter(alpha, scale, interpolation, undistort_to_pinhole=True)
