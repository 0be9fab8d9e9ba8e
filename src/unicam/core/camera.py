from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import ClassVar, Optional

import numpy as np

from unicam.core.distortion import Distortion, IdentityDistortion
from unicam.core.validity import has_minimum_depth
from unicam.errors import require


class ProjectionResult(IntEnum):
    VISIBLE = 0
    OUTSIDE_IMAGE_BOUNDS = 1
    INVALID = 2

    @property
    def is_visible(self) -> bool:
        return self is ProjectionResult.VISIBLE


class CameraType(str, Enum):
    PINHOLE = "pinhole"
    UNIFIED_PROJECTION = "unified_projection"


@dataclass(frozen=True)
class Projection:
    """
    Output of a functional projection call.

    Jacobians that were not requested are None. On an invalid projection the
    keypoint is zero and requested Jacobians are zero matrices.
    """

    keypoint: np.ndarray  # (2,)
    result: ProjectionResult
    jacobian_point: Optional[np.ndarray] = None  # (2,3)
    jacobian_intrinsics: Optional[np.ndarray] = None  # (2,P)
    jacobian_distortion: Optional[np.ndarray] = None  # (2,D)


def _inside_image(keypoints: np.ndarray, width: int, height: int):
    kp = np.asarray(keypoints, dtype=np.float64)
    u = kp[..., 0]
    v = kp[..., 1]
    return (u >= 0.0) & (u < width) & (v >= 0.0) & (v < height)


def classify_projection(keypoints: np.ndarray, points_3d: np.ndarray, width: int, height: int) -> np.ndarray:
    """
    Outcome codes (ProjectionResult values) for projected keypoints.

    A point closer than MIN_DEPTH to the projection center is INVALID whatever
    its keypoint; otherwise the keypoint decides between VISIBLE (inside
    [0,width) x [0,height)) and OUTSIDE_IMAGE_BOUNDS.
    """
    visible = _inside_image(keypoints, width, height)
    out = np.where(visible, ProjectionResult.VISIBLE.value, ProjectionResult.OUTSIDE_IMAGE_BOUNDS.value)
    out = np.where(has_minimum_depth(points_3d), out, ProjectionResult.INVALID.value)
    return out.astype(np.int8)


_IDENTITY = IdentityDistortion()


class Camera(ABC):
    """
    Common state of the camera models: intrinsics vector, image size and an
    optional owned distortion model.

    Intrinsics are validated once and stored read-only.
    """

    CAMERA_TYPE: ClassVar[CameraType]
    PARAMETER_NAMES: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        intrinsics: np.ndarray,
        image_width: int,
        image_height: int,
        distortion: Distortion | None = None,
    ) -> None:
        intrinsics = np.array(intrinsics, dtype=np.float64).reshape(-1)
        require(self.intrinsics_valid(intrinsics), f"invalid {self.CAMERA_TYPE.value} intrinsics: {intrinsics}")
        require(int(image_width) > 0 and int(image_height) > 0, "image width/height must be > 0")
        intrinsics.setflags(write=False)
        self._intrinsics = intrinsics
        self._image_width = int(image_width)
        self._image_height = int(image_height)
        if isinstance(distortion, IdentityDistortion):
            distortion = None
        self._distortion = distortion.clone() if distortion is not None else None

    @classmethod
    def parameter_count(cls) -> int:
        return len(cls.PARAMETER_NAMES)

    @classmethod
    @abstractmethod
    def intrinsics_valid(cls, intrinsics: np.ndarray) -> bool:
        ...

    @property
    def camera_type(self) -> CameraType:
        return self.CAMERA_TYPE

    @property
    def parameters(self) -> np.ndarray:
        return self._intrinsics

    @property
    def image_width(self) -> int:
        return self._image_width

    @property
    def image_height(self) -> int:
        return self._image_height

    @property
    def distortion(self) -> Distortion | None:
        """The attached distortion model, or None."""
        return self._distortion

    @property
    def has_distortion(self) -> bool:
        return self._distortion is not None

    def _lens(self) -> Distortion:
        # The only place where "no distortion" is special-cased.
        return self._distortion if self._distortion is not None else _IDENTITY

    @property
    @abstractmethod
    def fu(self) -> float: ...

    @property
    @abstractmethod
    def fv(self) -> float: ...

    @property
    @abstractmethod
    def cu(self) -> float: ...

    @property
    @abstractmethod
    def cv(self) -> float: ...

    def camera_matrix(self) -> np.ndarray:
        return np.array(
            [[self.fu, 0.0, self.cu], [0.0, self.fv, self.cv], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    def _resolve_intrinsics(self, intrinsics_external: np.ndarray | None) -> np.ndarray:
        if intrinsics_external is None:
            return self._intrinsics
        intrinsics = np.asarray(intrinsics_external, dtype=np.float64).reshape(-1)
        require(
            intrinsics.shape[0] == self.parameter_count(),
            f"intrinsics: expected {self.parameter_count()} entries, got {intrinsics.shape[0]}",
        )
        return intrinsics

    def _resolve_distortion(self, distortion_external: np.ndarray | None) -> np.ndarray | None:
        # External coefficients are ignored when no distortion is attached.
        if self._distortion is None:
            return None
        return distortion_external

    def _invalid_projection(
        self, jacobian_point: bool, jacobian_intrinsics: bool, jacobian_distortion: bool
    ) -> Projection:
        return Projection(
            keypoint=np.zeros((2,), dtype=np.float64),
            result=ProjectionResult.INVALID,
            jacobian_point=np.zeros((2, 3), dtype=np.float64) if jacobian_point else None,
            jacobian_intrinsics=np.zeros((2, self.parameter_count()), dtype=np.float64)
            if jacobian_intrinsics
            else None,
            jacobian_distortion=np.zeros((2, self._lens().parameter_count), dtype=np.float64)
            if jacobian_distortion
            else None,
        )

    def is_keypoint_visible(self, keypoint: np.ndarray):
        out = _inside_image(keypoint, self._image_width, self._image_height)
        return bool(out) if np.ndim(out) == 0 else out

    def evaluate_projection_result(self, keypoint: np.ndarray, point_3d: np.ndarray) -> ProjectionResult:
        code = classify_projection(
            np.asarray(keypoint, dtype=np.float64).reshape(2),
            np.asarray(point_3d, dtype=np.float64).reshape(3),
            self._image_width,
            self._image_height,
        )
        return ProjectionResult(int(code))

    def normalize_keypoints(self, keypoints: np.ndarray) -> np.ndarray:
        """Pixel keypoints -> undistorted normalized image-plane coordinates, shape preserved."""
        kp = np.asarray(keypoints, dtype=np.float64)
        m = np.stack([(kp[..., 0] - self.cu) / self.fu, (kp[..., 1] - self.cv) / self.fv], axis=-1)
        return self._lens().undistort(m)

    @abstractmethod
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
        ...

    @abstractmethod
    def project3_vectorized(self, points_3d: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Project (N,3) points; returns keypoints (N,2) and ProjectionResult codes (N,)."""

    @abstractmethod
    def back_project3_vectorized(self, keypoints: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Back-project (N,2) keypoints; returns bearings (N,3) and validity flags (N,)."""

    def project3(self, point_3d: np.ndarray) -> tuple[np.ndarray, ProjectionResult]:
        proj = self.project3_functional(point_3d)
        return proj.keypoint, proj.result

    def back_project3(self, keypoint: np.ndarray) -> tuple[np.ndarray, bool]:
        """
        Bearing vector (not normalized) of a keypoint, plus whether the keypoint
        could be lifted. The bearing is returned even when invalid.
        """
        bearings, valid = self.back_project3_vectorized(np.asarray(keypoint, dtype=np.float64).reshape(1, 2))
        return bearings[0], bool(valid[0])

    def clone(self) -> "Camera":
        return type(self)(self._intrinsics.copy(), self._image_width, self._image_height, self._distortion)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Camera):
            return NotImplemented
        if type(other) is not type(self):
            return False
        if self._image_width != other._image_width or self._image_height != other._image_height:
            return False
        if not np.array_equal(self._intrinsics, other._intrinsics):
            return False
        # Both absent, or both present and equal.
        return self._distortion == other._distortion

    __hash__ = None  # type: ignore[assignment]

    def print_parameters(self, text: str = "") -> str:
        lines = [
            f"{text}Camera({self.CAMERA_TYPE.value})",
            f"  image (width,height): {self._image_width}, {self._image_height}",
        ]
        lines += [f"  {k}: {v:g}" for k, v in zip(self.PARAMETER_NAMES, self._intrinsics)]
        if self._distortion is not None:
            lines.append(f"  distortion: {self._distortion.print_parameters()}")
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.print_parameters()

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self._intrinsics.tolist()!r}, {self._image_width}, "
            f"{self._image_height}, distortion={self._distortion!r})"
        )
