from __future__ import annotations

import dataclasses
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar

import numpy as np

from unicam.errors import require

# Squared residual above which an undistorted point is treated as unsolved.
_MAX_RESIDUAL_SQUARED = 1e-16


class Distortion(ABC):
    """
    Lens distortion acting on normalized image-plane coordinates.

    Concrete models implement the elementwise math (`_distort`, `_jacobian_point`,
    `_jacobian_params`); this base class provides the public capability set used
    by the cameras: forward distortion (optionally with external coefficients and
    the 2x2 point Jacobian), iterative undistortion, the parameter Jacobian, a
    parameter accessor and cloning.

    Points are either a single (2,) vector or an (N,2) array.
    """

    NAME: ClassVar[str] = ""
    PARAMETER_NAMES: ClassVar[tuple[str, ...]] = ()

    @property
    def parameter_count(self) -> int:
        return len(self.PARAMETER_NAMES)

    @property
    def parameters(self) -> np.ndarray:
        return np.array([getattr(self, k) for k in self.PARAMETER_NAMES], dtype=np.float64)

    def _resolve(self, params: np.ndarray | None) -> np.ndarray:
        if params is None:
            return self.parameters
        params = np.asarray(params, dtype=np.float64).reshape(-1)
        require(
            params.shape[0] == self.parameter_count,
            f"{self.NAME}: expected {self.parameter_count} distortion parameters, got {params.shape[0]}",
        )
        return params

    @abstractmethod
    def _distort(self, x: np.ndarray, y: np.ndarray, params: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        ...

    @abstractmethod
    def _jacobian_point(
        self, x: np.ndarray, y: np.ndarray, params: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Entries (dxd/dx, dxd/dy, dyd/dx, dyd/dy), broadcast like x and y."""

    @abstractmethod
    def _jacobian_params(self, x: float, y: float, params: np.ndarray) -> np.ndarray:
        ...

    def distort(self, points: np.ndarray, params: np.ndarray | None = None) -> np.ndarray:
        pts = np.asarray(points, dtype=np.float64)
        p = self._resolve(params)
        xd, yd = self._distort(pts[..., 0], pts[..., 1], p)
        return np.stack([xd, yd], axis=-1)

    def distort_with_jacobian(
        self, point: np.ndarray, params: np.ndarray | None = None
    ) -> tuple[np.ndarray, np.ndarray]:
        """Distort a single point and return (distorted, d(distorted)/d(point))."""
        pt = np.asarray(point, dtype=np.float64).reshape(2)
        p = self._resolve(params)
        xd, yd = self._distort(pt[0], pt[1], p)
        a, b, c, d = self._jacobian_point(pt[0], pt[1], p)
        J = np.array([[a, b], [c, d]], dtype=np.float64)
        return np.array([xd, yd], dtype=np.float64), J

    def _solution_valid(self, x: np.ndarray, y: np.ndarray, params: np.ndarray) -> np.ndarray:
        """Whether (x, y) lies where the distortion is locally invertible and orientation-preserving."""
        a, b, c, d = self._jacobian_point(x, y, params)
        return a * d - b * c > 0.0

    def undistort(self, points: np.ndarray, max_iterations: int = 30, tol: float = 1e-24) -> np.ndarray:
        """
        Inverse of distort() by Gauss-Newton, run for all points at once.

        The iteration stops when the squared residual of every point is below `tol`.
        Points without a solution inside the invertible region of the model come
        back as nan, including roots on the folded-over branch of the mapping.
        """
        target = np.asarray(points, dtype=np.float64)
        xd = target[..., 0]
        yd = target[..., 1]
        p = self.parameters
        x = np.array(xd, dtype=np.float64, copy=True)
        y = np.array(yd, dtype=np.float64, copy=True)
        # Far outside the lens domain the iteration can diverge; those entries end as nan/inf.
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            for _ in range(int(max_iterations)):
                x_est, y_est = self._distort(x, y, p)
                ex = xd - x_est
                ey = yd - y_est
                if np.all(ex * ex + ey * ey < tol):
                    break
                a, b, c, d = self._jacobian_point(x, y, p)
                det = a * d - b * c
                det = np.where(np.abs(det) < 1e-12, np.nan, det)
                x = x + (d * ex - b * ey) / det
                y = y + (a * ey - c * ex) / det
            x_est, y_est = self._distort(x, y, p)
            residual = (xd - x_est) ** 2 + (yd - y_est) ** 2
            ok = (residual < _MAX_RESIDUAL_SQUARED) & self._solution_valid(x, y, p)
        x = np.where(ok, x, np.nan)
        y = np.where(ok, y, np.nan)
        return np.stack([x, y], axis=-1)

    def distort_parameter_jacobian(self, point: np.ndarray, params: np.ndarray | None = None) -> np.ndarray:
        """d(distorted point)/d(distortion parameters), shape (2, parameter_count)."""
        pt = np.asarray(point, dtype=np.float64).reshape(2)
        p = self._resolve(params)
        return self._jacobian_params(float(pt[0]), float(pt[1]), p)

    def clone(self) -> "Distortion":
        return dataclasses.replace(self)

    def print_parameters(self, text: str = "") -> str:
        vals = ", ".join(f"{k}={v:g}" for k, v in zip(self.PARAMETER_NAMES, self.parameters))
        return f"{text}{self.NAME}({vals})"


@dataclass(frozen=True)
class IdentityDistortion(Distortion):
    """Stand-in for a camera without distortion: no parameters, identity mapping."""

    NAME: ClassVar[str] = "none"

    def _distort(self, x, y, params):
        return np.array(x, dtype=np.float64, copy=True), np.array(y, dtype=np.float64, copy=True)

    def _jacobian_point(self, x, y, params):
        one = np.ones_like(np.asarray(x, dtype=np.float64))
        zero = np.zeros_like(one)
        return one, zero, zero, one

    def _jacobian_params(self, x, y, params):
        return np.zeros((2, 0), dtype=np.float64)

    def undistort(self, points: np.ndarray, max_iterations: int = 30, tol: float = 1e-24) -> np.ndarray:
        return np.array(points, dtype=np.float64, copy=True)


@dataclass(frozen=True)
class RadTanDistortion(Distortion):
    """
    Radial-tangential (Brown-Conrady) distortion on normalized coordinates.

    Parameters follow common OpenCV naming:
      radial: k1, k2
      tangential: p1, p2
    """

    NAME: ClassVar[str] = "radtan"
    PARAMETER_NAMES: ClassVar[tuple[str, ...]] = ("k1", "k2", "p1", "p2")

    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0

    @classmethod
    def create_test_distortion(cls) -> "RadTanDistortion":
        return cls(k1=-0.28340811, k2=0.07395907, p1=0.00019359, p2=1.76187114e-05)

    def _distort(self, x, y, params):
        k1, k2, p1, p2 = params
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        x2 = x * x
        y2 = y * y
        xy = x * y
        r2 = x2 + y2
        radial = 1.0 + k1 * r2 + k2 * r2 * r2
        xd = x * radial + 2.0 * p1 * xy + p2 * (r2 + 2.0 * x2)
        yd = y * radial + p1 * (r2 + 2.0 * y2) + 2.0 * p2 * xy
        return xd, yd

    def _jacobian_point(self, x, y, params):
        k1, k2, p1, p2 = params
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        x2 = x * x
        y2 = y * y
        r2 = x2 + y2
        radial = 1.0 + k1 * r2 + k2 * r2 * r2
        # d(radial)/dr2
        dr = k1 + 2.0 * k2 * r2
        dxd_dx = radial + 2.0 * dr * x2 + 2.0 * p1 * y + 6.0 * p2 * x
        dxd_dy = 2.0 * dr * x * y + 2.0 * p1 * x + 2.0 * p2 * y
        dyd_dx = 2.0 * dr * x * y + 2.0 * p1 * x + 2.0 * p2 * y
        dyd_dy = radial + 2.0 * dr * y2 + 6.0 * p1 * y + 2.0 * p2 * x
        return dxd_dx, dxd_dy, dyd_dx, dyd_dy

    def _solution_valid(self, x, y, params):
        k1, k2, _p1, _p2 = params
        r2 = x * x + y * y
        radial = 1.0 + k1 * r2 + k2 * r2 * r2
        return (radial > 0.0) & super()._solution_valid(x, y, params)

    def _jacobian_params(self, x, y, params):
        x2 = x * x
        y2 = y * y
        xy = x * y
        r2 = x2 + y2
        return np.array(
            [
                [x * r2, x * r2 * r2, 2.0 * xy, r2 + 2.0 * x2],
                [y * r2, y * r2 * r2, r2 + 2.0 * y2, 2.0 * xy],
            ],
            dtype=np.float64,
        )


_DISTORTIONS: dict[str, type[Distortion]] = {
    IdentityDistortion.NAME: IdentityDistortion,
    RadTanDistortion.NAME: RadTanDistortion,
}


def distortion_from_dict(d: dict | None) -> Distortion | None:
    """Build a distortion model from its dict form; None or type 'none' means no distortion."""
    if d is None:
        return None
    name = str(d.get("type", RadTanDistortion.NAME))
    if name == IdentityDistortion.NAME:
        return None
    cls = _DISTORTIONS.get(name)
    if cls is None:
        raise ValueError(f"unknown distortion type: {name}")
    return cls(**{k: float(d.get(k, 0.0)) for k in cls.PARAMETER_NAMES})


def distortion_to_dict(m: Distortion | None) -> dict | None:
    if m is None or isinstance(m, IdentityDistortion):
        return None
    out: dict = {"type": m.NAME}
    out.update({k: float(v) for k, v in zip(m.PARAMETER_NAMES, m.parameters)})
    return out
