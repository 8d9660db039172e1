"""Shared fixtures: seeded random generator and tensor builders."""

import numpy as np
import pytest

from layerwise.core.tensor import Tensor


@pytest.fixture
def rng():
    return np.random.default_rng(1701)


@pytest.fixture
def make_tensor(rng):
    """Build a float64 tensor of the given shape filled with N(0, 1) values."""
    def _make(*shape, fill=None):
        tensor = Tensor(shape, dtype=np.float64)
        tensor.data = rng.standard_normal(tensor.shape) if fill is None else fill
        return tensor
    return _make


@pytest.fixture
def empty():
    """Build an empty float64 tensor to be shaped by a layer."""
    def _empty():
        return Tensor(dtype=np.float64)
    return _empty
