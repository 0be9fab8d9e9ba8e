from __future__ import annotations

import numpy as np

from unicam.core.camera import Camera, CameraType
from unicam.core.distortion import Distortion
from unicam.core.pinhole import PinholeCamera
from unicam.core.unified_projection import UnifiedProjectionCamera

_CAMERAS: dict[CameraType, type[Camera]] = {
    CameraType.PINHOLE: PinholeCamera,
    CameraType.UNIFIED_PROJECTION: UnifiedProjectionCamera,
}


def create_camera(
    camera_type: CameraType | str,
    intrinsics: np.ndarray,
    image_width: int,
    image_height: int,
    distortion: Distortion | None = None,
) -> Camera:
    """Construct a camera of the given family; `camera_type` may be the enum or its string value."""
    try:
        cls = _CAMERAS[CameraType(camera_type)]
    except ValueError as e:
        raise ValueError(f"unknown camera type: {camera_type}") from e
    return cls(intrinsics, image_width, image_height, distortion)
