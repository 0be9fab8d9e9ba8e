"""
Domain checks of the unified projection model.

All functions accept Python scalars or numpy arrays (broadcast elementwise), so
the scalar and vectorized projection paths share the exact same gates.
"""
from __future__ import annotations

import numpy as np

# Minimal distance to the projection center for a valid projection.
MIN_DEPTH = 1e-10
MIN_DEPTH_SQUARED = MIN_DEPTH * MIN_DEPTH


def fov_parameter(xi):
    """xi for xi <= 1, 1/xi otherwise."""
    xi = np.asarray(xi, dtype=np.float64)
    out = np.where(xi <= 1.0, xi, 1.0 / np.where(xi <= 1.0, 1.0, xi))
    return out[()] if out.ndim == 0 else out


def is_undistorted_keypoint_valid(rho2, xi):
    """
    Whether a point of the (undistorted) normalized plane with squared norm rho2
    can be lifted to the unit sphere: xi <= 1 or rho2 <= 1 / (xi^2 - 1).

    A non-finite rho2 (failed undistortion) is never valid.
    """
    rho2 = np.asarray(rho2, dtype=np.float64)
    xi = np.asarray(xi, dtype=np.float64)
    denom = np.where(xi <= 1.0, 1.0, xi * xi - 1.0)
    out = np.isfinite(rho2) & ((xi <= 1.0) | (rho2 <= 1.0 / denom))
    return bool(out) if out.ndim == 0 else out


def is_in_projection_domain(points_3d: np.ndarray, xi):
    """
    True where z > -fov_parameter(xi) * |p|; points failing this lie behind the
    mirror and have no image.
    """
    p = np.asarray(points_3d, dtype=np.float64)
    d = np.linalg.norm(p, axis=-1)
    out = p[..., 2] > -(fov_parameter(xi) * d)
    return bool(out) if np.ndim(out) == 0 else out


def has_minimum_depth(points_3d: np.ndarray):
    p = np.asarray(points_3d, dtype=np.float64)
    out = np.sum(p * p, axis=-1) > MIN_DEPTH_SQUARED
    return bool(out) if np.ndim(out) == 0 else out
