"""
Undistortion / rectification remaps between two camera models.

A map sends every pixel of an output image to the source pixel it should be
sampled from in the input image:

    output pixel --(output camera back-projection)--> bearing
                 --(input camera projection)--------> input pixel

Pixels with no valid source carry the sentinel -1, which lies outside any image
and is therefore filled with the border value by `cv2.remap`.
"""
from __future__ import annotations

import logging
from enum import Enum

import cv2
import numpy as np

from unicam.core.camera import Camera, ProjectionResult
from unicam.core.validity import MIN_DEPTH
from unicam.errors import require

logger = logging.getLogger(__name__)

MAP_SENTINEL = -1.0


class InterpolationMethod(str, Enum):
    NEAREST = "nearest"
    LINEAR = "linear"
    CUBIC = "cubic"
    LANCZOS4 = "lanczos4"

    def to_cv(self) -> int:
        return {
            InterpolationMethod.NEAREST: cv2.INTER_NEAREST,
            InterpolationMethod.LINEAR: cv2.INTER_LINEAR,
            InterpolationMethod.CUBIC: cv2.INTER_CUBIC,
            InterpolationMethod.LANCZOS4: cv2.INTER_LANCZOS4,
        }[self]


def _undistorted_grid(camera: Camera, undistort_to_pinhole: bool, nu: int, nv: int) -> np.ndarray:
    """
    Undistort an nv x nu grid spanning the image. Returns (nv,nu,2), row index = v,
    with nan where a grid point is not liftable or has no undistorted counterpart.
    """
    us = np.linspace(0.0, camera.image_width - 1.0, nu)
    vs = np.linspace(0.0, camera.image_height - 1.0, nv)
    vv, uu = np.meshgrid(vs, us, indexing="ij")
    kp = np.stack([uu.reshape(-1), vv.reshape(-1)], axis=-1)

    bearings, valid = camera.back_project3_vectorized(kp)
    valid = valid & np.all(np.isfinite(bearings), axis=1)
    if undistort_to_pinhole:
        valid = valid & (bearings[:, 2] > MIN_DEPTH)
        z = np.where(valid, bearings[:, 2], 1.0)
        xy = bearings[:, :2] / z[:, None]
    else:
        xy = bearings[:, :2]
    xy = np.where(valid[:, None], xy, np.nan)
    return xy.reshape(nv, nu, 2)


def _finite_extreme(values: np.ndarray, reduce) -> float:
    finite = values[np.isfinite(values)]
    return float(reduce(finite)) if finite.size else float("nan")


def _rectangles(grid: np.ndarray):
    """
    Inner and outer rectangles (x0, x1, y0, y1) of an undistorted grid, or None
    when the finite points do not span a rectangle.
    """
    x = grid[..., 0]
    y = grid[..., 1]
    ox0, ox1 = _finite_extreme(x, np.min), _finite_extreme(x, np.max)
    oy0, oy1 = _finite_extreme(y, np.min), _finite_extreme(y, np.max)
    outer = (ox0, ox1, oy0, oy1)
    if not np.all(np.isfinite(outer)) or ox1 <= ox0 or oy1 <= oy0:
        return None

    # Inner rectangle: bounded by the image border columns/rows.
    inner = (
        _finite_extreme(x[:, 0], np.max),
        _finite_extreme(x[:, -1], np.min),
        _finite_extreme(y[0, :], np.max),
        _finite_extreme(y[-1, :], np.min),
    )
    ix0, ix1, iy0, iy1 = inner
    if not np.all(np.isfinite(inner)) or ix1 <= ix0 or iy1 <= iy0:
        # Image border not liftable: fall back to the outer rectangle.
        inner = outer
    return inner, outer


def get_optimal_new_camera_matrix(
    camera: Camera,
    alpha: float,
    scale: float,
    undistort_to_pinhole: bool,
) -> np.ndarray:
    """
    Camera matrix of a distortion-free output camera of size scale*(w,h).

    alpha=0 keeps only pixels that are valid everywhere (inner rectangle of the
    undistorted image border), alpha=1 keeps every source pixel (outer
    rectangle); values in between blend both matrices linearly.

    The image is sampled on a 9x9 grid. When the liftable region is too small
    for that grid (large xi), it is sampled again at pixel pitch.
    """
    require(0.0 <= alpha <= 1.0, "alpha must be in [0, 1]")
    require(scale > 0.0, "scale must be > 0")

    rects = _rectangles(_undistorted_grid(camera, undistort_to_pinhole, 9, 9))
    if rects is None:
        logger.debug("liftable region misses the 9x9 grid, resampling at pixel pitch")
        rects = _rectangles(
            _undistorted_grid(camera, undistort_to_pinhole, camera.image_width, camera.image_height)
        )
    require(rects is not None, "no liftable image region to build an undistorted camera from")
    (ix0, ix1, iy0, iy1), (ox0, ox1, oy0, oy1) = rects

    out_w = int(scale * camera.image_width)
    out_h = int(scale * camera.image_height)

    fx0 = (out_w - 1) / (ix1 - ix0)
    fy0 = (out_h - 1) / (iy1 - iy0)
    cx0 = -fx0 * ix0
    cy0 = -fy0 * iy0

    fx1 = (out_w - 1) / (ox1 - ox0)
    fy1 = (out_h - 1) / (oy1 - oy0)
    cx1 = -fx1 * ox0
    cy1 = -fy1 * oy0

    fx = fx0 * (1.0 - alpha) + fx1 * alpha
    fy = fy0 * (1.0 - alpha) + fy1 * alpha
    cx = cx0 * (1.0 - alpha) + cx1 * alpha
    cy = cy0 * (1.0 - alpha) + cy1 * alpha
    return np.array([[fx, 0.0, cx], [0.0, fy, cy], [0.0, 0.0, 1.0]], dtype=np.float64)


def build_undistort_map(input_camera: Camera, output_camera: Camera) -> tuple[np.ndarray, np.ndarray]:
    """
    Dense remap LUTs (map_u, map_v), float32 arrays shaped (H_out, W_out).

    Every entry is either a source coordinate inside the input image or the
    sentinel -1.
    """
    H, W = output_camera.image_height, output_camera.image_width
    vv, uu = np.meshgrid(np.arange(H, dtype=np.float64), np.arange(W, dtype=np.float64), indexing="ij")
    kp = np.stack([uu.reshape(-1), vv.reshape(-1)], axis=-1)

    bearings, valid = output_camera.back_project3_vectorized(kp)
    src, results = input_camera.project3_vectorized(np.where(valid[:, None], bearings, 0.0))

    src_u = src[:, 0].astype(np.float32)
    src_v = src[:, 1].astype(np.float32)
    ok = valid & (results == ProjectionResult.VISIBLE.value)
    # float32 rounding may push a coordinate onto the far image border.
    ok &= (src_u >= 0.0) & (src_u < input_camera.image_width) & (src_v >= 0.0) & (src_v < input_camera.image_height)

    map_u = np.full((H * W,), MAP_SENTINEL, dtype=np.float32)
    map_v = np.full((H * W,), MAP_SENTINEL, dtype=np.float32)
    map_u[ok] = src_u[ok]
    map_v[ok] = src_v[ok]
    logger.debug("undistort map %dx%d: %d of %d pixels without source", W, H, int(np.count_nonzero(~ok)), ok.size)
    return map_u.reshape(H, W), map_v.reshape(H, W)


class MappedUndistorter:
    """
    Precomputed remap from an input camera to an output camera.

    Holds its own copies of both cameras; `process_image` applies the map with
    `cv2.remap`, filling pixels without source with `fill_value`.
    """

    def __init__(
        self,
        input_camera: Camera,
        output_camera: Camera,
        map_u: np.ndarray,
        map_v: np.ndarray,
        interpolation: InterpolationMethod = InterpolationMethod.LINEAR,
    ) -> None:
        map_u = np.asarray(map_u, dtype=np.float32)
        map_v = np.asarray(map_v, dtype=np.float32)
        require(map_u.shape == map_v.shape, "map_u and map_v must have the same shape")
        require(
            map_u.shape == (output_camera.image_height, output_camera.image_width),
            "maps must match the output camera image size",
        )
        self.input_camera = input_camera.clone()
        self.output_camera = output_camera.clone()
        self.map_u = map_u
        self.map_v = map_v
        self.interpolation = InterpolationMethod(interpolation)

    def process_image(self, image: np.ndarray, fill_value: float = 0.0) -> np.ndarray:
        image = np.asarray(image)
        require(
            image.shape[:2] == (self.input_camera.image_height, self.input_camera.image_width),
            "image size must match the input camera",
        )
        return cv2.remap(
            image,
            self.map_u,
            self.map_v,
            interpolation=self.interpolation.to_cv(),
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=fill_value,
        )
