from __future__ import annotations

import numpy as np

from unicam.core.camera import Camera, CameraType, Projection, ProjectionResult, classify_projection
from unicam.core.distortion import Distortion
from unicam.core.validity import MIN_DEPTH


class PinholeCamera(Camera):
    """
    Pinhole camera with optional distortion; intrinsics ordering: fu, fv, cu, cv.

    Used as the output model when rectifying other cameras.
    """

    CAMERA_TYPE = CameraType.PINHOLE
    PARAMETER_NAMES = ("fu", "fv", "cu", "cv")

    @classmethod
    def from_parameters(
        cls,
        fu: float,
        fv: float,
        cu: float,
        cv: float,
        image_width: int,
        image_height: int,
        distortion: Distortion | None = None,
    ) -> "PinholeCamera":
        return cls(np.array([fu, fv, cu, cv], dtype=np.float64), image_width, image_height, distortion)

    @classmethod
    def intrinsics_valid(cls, intrinsics: np.ndarray) -> bool:
        intrinsics = np.asarray(intrinsics, dtype=np.float64).reshape(-1)
        return intrinsics.shape[0] == cls.parameter_count() and bool(np.all(intrinsics > 0.0))

    @property
    def fu(self) -> float:
        return float(self._intrinsics[0])

    @property
    def fv(self) -> float:
        return float(self._intrinsics[1])

    @property
    def cu(self) -> float:
        return float(self._intrinsics[2])

    @property
    def cv(self) -> float:
        return float(self._intrinsics[3])

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
        p = np.asarray(point_3d, dtype=np.float64).reshape(3)
        fu, fv, cu, cv = (float(v) for v in self._resolve_intrinsics(intrinsics_external))
        dist_params = self._resolve_distortion(distortion_external)
        lens = self._lens()

        x, y, z = (float(v) for v in p)
        if z <= MIN_DEPTH:
            return self._invalid_projection(jacobian_point, jacobian_intrinsics, jacobian_distortion)

        rz = 1.0 / z
        m = np.array([x * rz, y * rz], dtype=np.float64)
        if jacobian_point:
            md, J_dist = lens.distort_with_jacobian(m, dist_params)
        else:
            md, J_dist = lens.distort(m, dist_params), None

        J_point = None
        if jacobian_point:
            J_m = np.array([[rz, 0.0, -x * rz * rz], [0.0, rz, -y * rz * rz]], dtype=np.float64)
            J_point = np.diag([fu, fv]) @ J_dist @ J_m

        J_intr = None
        if jacobian_intrinsics:
            J_intr = np.array([[md[0], 0.0, 1.0, 0.0], [0.0, md[1], 0.0, 1.0]], dtype=np.float64)

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
        keypoints = np.zeros((P.shape[0], 2), dtype=np.float64)
        ok = P[:, 2] > MIN_DEPTH
        if np.any(ok):
            Q = P[ok]
            m = Q[:, :2] / Q[:, 2:3]
            md = self._lens().distort(m)
            keypoints[ok, 0] = self.fu * md[:, 0] + self.cu
            keypoints[ok, 1] = self.fv * md[:, 1] + self.cv
        results = classify_projection(keypoints, P, self._image_width, self._image_height)
        results = np.where(ok, results, ProjectionResult.INVALID.value).astype(np.int8)
        return keypoints, results

    def back_project3_vectorized(self, keypoints: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        kp = np.asarray(keypoints, dtype=np.float64).reshape(-1, 2)
        m = self.normalize_keypoints(kp)
        bearings = np.concatenate([m, np.ones((kp.shape[0], 1), dtype=np.float64)], axis=1)
        return bearings, np.all(np.isfinite(m), axis=1)
