"""
Structural layers: Concat, Split, Slice and Flatten.
These reshape, partition or replicate tensors without arithmetic.
"""

import logging
import warnings
import numpy as np
from typing import List, Optional, Sequence

from ..core.errors import ConfigurationError
from ..core.layers import Layer, LayerType, register_layer
from ..core.tensor import Tensor

logger = logging.getLogger(__name__)


def _check_dim(dim: int, what: str) -> int:
    if dim not in (0, 1):
        raise ConfigurationError(f"{what} must be 0 (num) or 1 (channels), got {dim}")
    return dim


@register_layer
class Concat(Layer):
    """
    Concatenate two or more tensors along the num (0) or channel (1) axis.

    All inputs must agree on every other dimension.
    """

    layer_type = LayerType.CONCAT
    min_bottom = 2
    exact_num_top = 1

    def __init__(self, concat_dim: int = 1, name: Optional[str] = None):
        """
        Initialize Concat layer.

        Args:
            concat_dim: Axis to concatenate along (0 = num, 1 = channels)
            name: Layer name
        """
        super().__init__(name)
        self.concat_dim = _check_dim(concat_dim, "concat_dim")

    def reshape(self, bottom, top):
        first = bottom[0].shape
        for i, b in enumerate(bottom[1:], start=1):
            for axis in range(4):
                if axis != self.concat_dim and b.shape[axis] != first[axis]:
                    raise ConfigurationError(
                        f"{self.name}: bottom {i} has shape {b.shape}, incompatible with "
                        f"{first} outside concat_dim {self.concat_dim}")
        shape = list(first)
        shape[self.concat_dim] = sum(b.shape[self.concat_dim] for b in bottom)
        top[0].reshape(shape)
        super().reshape(bottom, top)

    def _forward(self, bottom, top):
        np.concatenate([b.data for b in bottom], axis=self.concat_dim, out=top[0].data)

    def _backward(self, top, propagate_down, bottom):
        offset = 0
        for b, down in zip(bottom, propagate_down):
            size = b.shape[self.concat_dim]
            if down:
                index = [slice(None)] * 4
                index[self.concat_dim] = slice(offset, offset + size)
                b.grad = top[0].grad[tuple(index)]
            offset += size

    def get_config(self) -> dict:
        config = super().get_config()
        config['concat_dim'] = self.concat_dim
        return config


@register_layer
class Split(Layer):
    """
    Replicate one tensor into one or more tops.

    The tops share the bottom's data buffer; backward sums every top's
    gradient into the bottom's gradient.
    """

    layer_type = LayerType.SPLIT
    exact_num_bottom = 1
    min_top = 1

    def reshape(self, bottom, top):
        for t in top:
            if t is bottom[0]:
                raise ConfigurationError(f"{self.name}: top cannot be the bottom tensor")
            t.reshape_like(bottom[0])
            t.share_data(bottom[0])
        super().reshape(bottom, top)

    def _forward(self, bottom, top):
        for t in top:
            t.share_data(bottom[0])

    def _backward(self, top, propagate_down, bottom):
        if not propagate_down[0]:
            return
        grad = bottom[0].grad
        np.copyto(grad, top[0].grad)
        for t in top[1:]:
            grad += t.grad


@register_layer
class Slice(Layer):
    """
    Partition one tensor along the num (0) or channel (1) axis.

    Without explicit slice points the axis is divided evenly among the tops.
    """

    layer_type = LayerType.SLICE
    exact_num_bottom = 1
    min_top = 2

    def __init__(self, slice_dim: int = 1, slice_point: Optional[Sequence[int]] = None,
                 name: Optional[str] = None):
        """
        Initialize Slice layer.

        Args:
            slice_dim: Axis to slice along (0 = num, 1 = channels)
            slice_point: Strictly increasing boundaries, one fewer than tops
            name: Layer name
        """
        super().__init__(name)
        self.slice_dim = _check_dim(slice_dim, "slice_dim")
        self.slice_point = [int(p) for p in slice_point] if slice_point else []
        for a, b in zip(self.slice_point, self.slice_point[1:]):
            if b <= a:
                raise ConfigurationError(
                    f"slice_point must be strictly increasing, got {self.slice_point}")
        self._sizes: List[int] = []

    def layer_setup(self, bottom, top):
        if self.slice_point and len(self.slice_point) != len(top) - 1:
            raise ConfigurationError(
                f"{self.name}: {len(self.slice_point)} slice points for {len(top)} tops")

    def reshape(self, bottom, top):
        extent = bottom[0].shape[self.slice_dim]
        if self.slice_point:
            if self.slice_point[0] <= 0 or self.slice_point[-1] >= extent:
                raise ConfigurationError(
                    f"{self.name}: slice points {self.slice_point} out of range (0, {extent})")
            bounds = [0] + self.slice_point + [extent]
            self._sizes = [b - a for a, b in zip(bounds, bounds[1:])]
        else:
            if extent % len(top) != 0:
                raise ConfigurationError(
                    f"{self.name}: dimension {extent} is not divisible by {len(top)} tops")
            if extent == 0:
                warnings.warn(f"{self.name}: slicing an empty dimension")
            self._sizes = [extent // len(top)] * len(top)
        for t, size in zip(top, self._sizes):
            shape = list(bottom[0].shape)
            shape[self.slice_dim] = size
            t.reshape(shape)
        super().reshape(bottom, top)

    def _regions(self):
        offset = 0
        for size in self._sizes:
            index = [slice(None)] * 4
            index[self.slice_dim] = slice(offset, offset + size)
            yield tuple(index)
            offset += size

    def _forward(self, bottom, top):
        for t, region in zip(top, self._regions()):
            t.data = bottom[0].data[region]

    def _backward(self, top, propagate_down, bottom):
        if not propagate_down[0]:
            return
        for t, region in zip(top, self._regions()):
            bottom[0].grad[region] = t.grad

    def get_config(self) -> dict:
        config = super().get_config()
        config.update({'slice_dim': self.slice_dim, 'slice_point': list(self.slice_point)})
        return config


@register_layer
class Flatten(Layer):
    """
    Reshape (N, C, H, W) to (N, C*H*W, 1, 1) without copying.

    Forward makes the top borrow the bottom's data; backward makes the bottom
    borrow the top's gradient.
    """

    layer_type = LayerType.FLATTEN
    exact_num_bottom = 1
    exact_num_top = 1

    def reshape(self, bottom, top):
        b = bottom[0]
        top[0].reshape(b.num, b.channels * b.height * b.width, 1, 1)
        super().reshape(bottom, top)

    def _forward(self, bottom, top):
        top[0].share_data(bottom[0])

    def _backward(self, top, propagate_down, bottom):
        if propagate_down[0]:
            bottom[0].share_grad(top[0])
