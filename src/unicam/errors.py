from __future__ import annotations


class CameraContractError(ValueError):
    """Raised when a caller violates an API contract (bad vector size, bad scale, ...)."""


class CameraConfigError(ValueError):
    pass


def require(cond: bool, msg: str) -> None:
    if not cond:
        raise CameraContractError(msg)
