from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from unicam.core.camera import Camera, CameraType
from unicam.core.distortion import distortion_from_dict, distortion_to_dict
from unicam.core.factory import create_camera
from unicam.core.pinhole import PinholeCamera
from unicam.core.unified_projection import UnifiedProjectionCamera
from unicam.errors import CameraConfigError, CameraContractError

SCHEMA_VERSION = "unicam.camera.v0"

_PARAMETER_NAMES = {
    CameraType.PINHOLE: PinholeCamera.PARAMETER_NAMES,
    CameraType.UNIFIED_PROJECTION: UnifiedProjectionCamera.PARAMETER_NAMES,
}


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise CameraConfigError(msg)


def load_camera(path: Path) -> Camera:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_camera(data)


def parse_camera(data: dict[str, Any]) -> Camera:
    _require(isinstance(data, dict), "camera description must be an object")
    _require(data.get("schema_version") == SCHEMA_VERSION, f"schema_version must be {SCHEMA_VERSION}")

    type_raw = data.get("type")
    _require(type_raw is not None, "type is required")
    try:
        camera_type = CameraType(str(type_raw))
    except ValueError:
        raise CameraConfigError(f"unsupported camera type: {type_raw}") from None

    image = data.get("image", {})
    w_raw = image.get("width_px")
    h_raw = image.get("height_px")
    _require(w_raw is not None and h_raw is not None, "image.width_px and image.height_px are required")
    w = int(w_raw)
    h = int(h_raw)
    _require(w > 0 and h > 0, "image.width_px and image.height_px must be > 0")

    intr = data.get("intrinsics", {})
    names = _PARAMETER_NAMES[camera_type]
    missing = [k for k in names if k not in intr]
    _require(not missing, f"intrinsics missing: {', '.join(missing)}")
    intrinsics = [float(intr[k]) for k in names]

    dist_raw = data.get("distortion")
    _require(dist_raw is None or isinstance(dist_raw, dict), "distortion must be an object or null")
    try:
        distortion = distortion_from_dict(dist_raw)
        return create_camera(camera_type, intrinsics, w, h, distortion)
    except CameraContractError as e:
        raise CameraConfigError(f"invalid camera: {e}") from e
    except ValueError as e:
        raise CameraConfigError(str(e)) from e


def camera_to_dict(camera: Camera) -> dict[str, Any]:
    names = _PARAMETER_NAMES[camera.camera_type]
    return {
        "schema_version": SCHEMA_VERSION,
        "type": camera.camera_type.value,
        "image": {"width_px": int(camera.image_width), "height_px": int(camera.image_height)},
        "intrinsics": {k: float(v) for k, v in zip(names, camera.parameters)},
        "distortion": distortion_to_dict(camera.distortion),
    }


def save_camera(path: Path, camera: Camera) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(camera_to_dict(camera), indent=2, sort_keys=True), encoding="utf-8")
    return path
