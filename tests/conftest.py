import numpy as np
import pytest


def _central_difference(f, x0, h=1e-6):
    x0 = np.asarray(x0, dtype=np.float64)
    cols = []
    for i in range(x0.shape[0]):
        dx = np.zeros_like(x0)
        dx[i] = h
        cols.append((np.asarray(f(x0 + dx)) - np.asarray(f(x0 - dx))) / (2.0 * h))
    return np.stack(cols, axis=-1)


@pytest.fixture
def numeric_jacobian():
    """Central finite-difference Jacobian of f at x0, one column per entry of x0."""
    return _central_difference
