"""
Tensor abstraction for layerwise.
Provides a 4-D NumPy-backed tensor with a paired gradient buffer and
explicit buffer sharing between tensors.
"""

import logging
import os
import numpy as np
from typing import Optional, Union, Tuple, Sequence

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

_default_dtype = np.dtype(os.environ.get("LAYERWISE_DTYPE", "float32"))


def get_default_dtype() -> np.dtype:
    """Return the dtype used for tensors created without an explicit dtype."""
    return _default_dtype


def set_default_dtype(dtype) -> None:
    """Change the dtype used for tensors created without an explicit dtype."""
    global _default_dtype
    _default_dtype = np.dtype(dtype)


def _as_shape(shape) -> Tuple[int, int, int, int]:
    if len(shape) == 1 and isinstance(shape[0], (tuple, list)):
        shape = shape[0]
    shape = tuple(int(d) for d in shape)
    if len(shape) > 4:
        raise ConfigurationError(f"Tensors have at most 4 dimensions, got shape {shape}")
    if any(d < 0 for d in shape):
        raise ConfigurationError(f"Negative dimension in shape {shape}")
    return shape + (1,) * (4 - len(shape))


class Tensor:
    """
    A 4-D (num, channels, height, width) array with a gradient buffer.

    ``data`` and ``grad`` always have the same shape. Either buffer can be
    borrowed from another tensor with :meth:`share_data` / :meth:`share_grad`;
    writes through one tensor are then visible through the other until one of
    them is reshaped to a different element count, which reallocates its
    storage and severs the alias.
    """

    def __init__(self, shape: Optional[Sequence[int]] = None,
                 dtype: Optional[np.dtype] = None,
                 data: Optional[Union[np.ndarray, list, float, int]] = None):
        """
        Initialize a tensor.

        Args:
            shape: Shape of the tensor, padded with trailing ones to 4-D
            dtype: Data type for both buffers
            data: Initial contents; when given without a shape, the shape is
                  taken from it
        """
        self.dtype = np.dtype(get_default_dtype() if dtype is None else dtype)
        if data is not None:
            array = np.asarray(data, dtype=self.dtype)
            if shape is None:
                shape = array.shape
        self._shape = _as_shape(shape if shape is not None else (0, 0, 0, 0))
        self._data = np.zeros(self._shape, dtype=self.dtype)
        self._grad = np.zeros(self._shape, dtype=self.dtype)
        if data is not None:
            self._data[...] = array.reshape(self._shape)

    @property
    def shape(self) -> Tuple[int, int, int, int]:
        """Return the (num, channels, height, width) shape."""
        return self._shape

    @property
    def num(self) -> int:
        return self._shape[0]

    @property
    def channels(self) -> int:
        return self._shape[1]

    @property
    def height(self) -> int:
        return self._shape[2]

    @property
    def width(self) -> int:
        return self._shape[3]

    @property
    def count(self) -> int:
        """Return the total number of elements."""
        return int(np.prod(self._shape))

    @property
    def data(self) -> np.ndarray:
        return self._data

    @data.setter
    def data(self, value):
        # In-place so that tensors sharing this buffer see the new values.
        self._data[...] = self._conform(value)

    @property
    def grad(self) -> np.ndarray:
        return self._grad

    @grad.setter
    def grad(self, value):
        self._grad[...] = self._conform(value)

    def _conform(self, value) -> np.ndarray:
        value = np.asarray(value)
        if value.ndim > 0 and value.shape != self._shape and value.size == self.count:
            return value.reshape(self._shape)
        return value

    def offset(self, n: int, c: int = 0, h: int = 0, w: int = 0) -> int:
        """Return the flat offset of element (n, c, h, w)."""
        return ((n * self.channels + c) * self.height + h) * self.width + w

    def reshape(self, *shape) -> 'Tensor':
        """
        Change the shape of the tensor.

        Keeping the element count keeps the storage (and any sharing);
        changing it allocates fresh zeroed buffers.
        """
        new_shape = _as_shape(shape)
        if new_shape == self._shape:
            return self
        if int(np.prod(new_shape)) == self.count:
            self._data = self._data.reshape(new_shape)
            self._grad = self._grad.reshape(new_shape)
        else:
            logger.debug("Reallocating tensor %s -> %s", self._shape, new_shape)
            self._data = np.zeros(new_shape, dtype=self.dtype)
            self._grad = np.zeros(new_shape, dtype=self.dtype)
        self._shape = new_shape
        return self

    def reshape_like(self, other: 'Tensor') -> 'Tensor':
        """Reshape to the shape of another tensor."""
        return self.reshape(other.shape)

    def share_data(self, other: 'Tensor'):
        """Make this tensor's data buffer alias ``other``'s data buffer."""
        if other.count != self.count:
            raise ConfigurationError(
                f"Cannot share data of {other.shape} with tensor of shape {self.shape}")
        self._data = other._data.reshape(self._shape)

    def share_grad(self, other: 'Tensor'):
        """Make this tensor's gradient buffer alias ``other``'s gradient buffer."""
        if other.count != self.count:
            raise ConfigurationError(
                f"Cannot share grad of {other.shape} with tensor of shape {self.shape}")
        self._grad = other._grad.reshape(self._shape)

    def shares_data_with(self, other: 'Tensor') -> bool:
        return np.shares_memory(self._data, other._data)

    def shares_grad_with(self, other: 'Tensor') -> bool:
        return np.shares_memory(self._grad, other._grad)

    def zero_grad(self):
        """Reset gradients to zero."""
        self._grad.fill(0)

    def copy_from(self, other: 'Tensor', copy_grad: bool = False, reshape: bool = False):
        """
        Copy data (or gradients) from another tensor.

        Args:
            other: Source tensor
            copy_grad: Copy the gradient buffer instead of the data buffer
            reshape: Reshape this tensor to match ``other`` first
        """
        if other.count != self.count or other.shape != self.shape:
            if not reshape:
                raise ConfigurationError(
                    f"Trying to copy tensors of different sizes: {other.shape} vs {self.shape}")
            self.reshape_like(other)
        if copy_grad:
            np.copyto(self._grad, other._grad)
        else:
            np.copyto(self._data, other._data)

    def numpy(self) -> np.ndarray:
        """Return the underlying data array."""
        return self._data

    def __repr__(self) -> str:
        return f"Tensor(shape={self._shape}, dtype={self.dtype})"


# Utility functions for tensor creation
def zeros(*shape, dtype: Optional[np.dtype] = None) -> Tensor:
    """Create a tensor filled with zeros."""
    return Tensor(_as_shape(shape), dtype=dtype)


def ones(*shape, dtype: Optional[np.dtype] = None) -> Tensor:
    """Create a tensor filled with ones."""
    tensor = Tensor(_as_shape(shape), dtype=dtype)
    tensor.data = 1
    return tensor


def randn(*shape, dtype: Optional[np.dtype] = None,
          rng: Optional[np.random.Generator] = None) -> Tensor:
    """Create a tensor with random normal distribution."""
    shape = _as_shape(shape)
    rng = rng or np.random.default_rng()
    return Tensor(shape, dtype=dtype, data=rng.standard_normal(shape))


def rand(*shape, dtype: Optional[np.dtype] = None,
         rng: Optional[np.random.Generator] = None) -> Tensor:
    """Create a tensor with random uniform distribution [0, 1)."""
    shape = _as_shape(shape)
    rng = rng or np.random.default_rng()
    return Tensor(shape, dtype=dtype, data=rng.random(shape))


def from_array(array, dtype: Optional[np.dtype] = None) -> Tensor:
    """Create a tensor holding a copy of ``array``."""
    return Tensor(dtype=dtype, data=array)
