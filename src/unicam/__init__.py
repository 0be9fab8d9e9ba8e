from unicam.camera_io import load_camera, parse_camera, save_camera
from unicam.core.camera import Camera, CameraType, Projection, ProjectionResult
from unicam.core.distortion import Distortion, RadTanDistortion
from unicam.core.factory import create_camera
from unicam.core.pinhole import PinholeCamera
from unicam.core.undistort import InterpolationMethod, MappedUndistorter
from unicam.core.unified_projection import UnifiedProjectionCamera
from unicam.errors import CameraConfigError, CameraContractError

__all__ = [
    "Camera",
    "CameraType",
    "Projection",
    "ProjectionResult",
    "Distortion",
    "RadTanDistortion",
    "PinholeCamera",
    "UnifiedProjectionCamera",
    "create_camera",
    "InterpolationMethod",
    "MappedUndistorter",
    "load_camera",
    "parse_camera",
    "save_camera",
    "CameraConfigError",
    "CameraContractError",
]
