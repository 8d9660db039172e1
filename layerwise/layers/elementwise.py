"""
Elementwise and reduction layers: Eltwise, MVN, Softmax and ArgMax.
"""

import logging
import numpy as np
from enum import Enum
from typing import Optional, Sequence, Union

from ..core.errors import ConfigurationError, NotImplementedLayerError
from ..core.layers import Layer, LayerType, register_layer

logger = logging.getLogger(__name__)


class EltwiseOp(str, Enum):
    PROD = "PROD"
    SUM = "SUM"
    MAX = "MAX"

    @classmethod
    def parse(cls, value: Union['EltwiseOp', str]) -> 'EltwiseOp':
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).upper()]
        except KeyError:
            raise ConfigurationError(
                f"Unknown eltwise operation {value!r}, expected one of "
                f"{[op.value for op in cls]}") from None


@register_layer
class Eltwise(Layer):
    """
    Combine two or more same-shaped tensors elementwise by SUM, PROD or MAX.

    SUM takes optional per-input coefficients. PROD has two gradient modes:
    the default divides the output by each input (cheap, but not safe when an
    input is zero); ``stable_prod_grad`` multiplies the other inputs directly.
    MAX records which input won every element and routes the gradient there.
    """

    layer_type = LayerType.ELTWISE
    min_bottom = 2
    exact_num_top = 1

    def __init__(self, operation: Union[EltwiseOp, str] = EltwiseOp.SUM,
                 coeff: Optional[Sequence[float]] = None,
                 stable_prod_grad: bool = False, name: Optional[str] = None):
        """
        Initialize Eltwise layer.

        Args:
            operation: One of 'SUM', 'PROD', 'MAX'
            coeff: Per-input coefficients (SUM only)
            stable_prod_grad: Compute the PROD gradient without division
            name: Layer name
        """
        super().__init__(name)
        self.operation = EltwiseOp.parse(operation)
        if coeff is not None and self.operation is not EltwiseOp.SUM:
            raise ConfigurationError("Eltwise layer only takes coefficients for summation")
        self.coeff = [float(c) for c in coeff] if coeff is not None else None
        self.stable_prod_grad = bool(stable_prod_grad)
        self.max_idx = None

    def layer_setup(self, bottom, top):
        if self.coeff is not None and len(self.coeff) != len(bottom):
            raise ConfigurationError(
                f"{self.name}: {len(self.coeff)} coefficients for {len(bottom)} bottoms")
        if self.coeff is None:
            self.coeff = [1.0] * len(bottom)

    def reshape(self, bottom, top):
        shape = bottom[0].shape
        for i, b in enumerate(bottom[1:], start=1):
            if b.shape != shape:
                raise ConfigurationError(
                    f"{self.name}: bottom {i} has shape {b.shape}, expected {shape}")
        top[0].reshape(shape)
        if self.operation is EltwiseOp.MAX:
            self.max_idx = np.zeros(shape, dtype=np.int64)
        super().reshape(bottom, top)

    def _forward(self, bottom, top):
        out = top[0].data
        if self.operation is EltwiseOp.SUM:
            np.multiply(bottom[0].data, self.coeff[0], out=out)
            for b, c in zip(bottom[1:], self.coeff[1:]):
                out += c * b.data
        elif self.operation is EltwiseOp.PROD:
            np.copyto(out, bottom[0].data)
            for b in bottom[1:]:
                out *= b.data
        else:
            np.copyto(out, bottom[0].data)
            self.max_idx.fill(0)
            for i, b in enumerate(bottom[1:], start=1):
                # Strict comparison keeps the first input on ties.
                wins = b.data > out
                out[wins] = b.data[wins]
                self.max_idx[wins] = i

    def _backward(self, top, propagate_down, bottom):
        top_grad = top[0].grad
        for i, (b, down) in enumerate(zip(bottom, propagate_down)):
            if not down:
                continue
            if self.operation is EltwiseOp.SUM:
                np.multiply(top_grad, self.coeff[i], out=b.grad)
            elif self.operation is EltwiseOp.PROD:
                if self.stable_prod_grad:
                    others = np.ones_like(b.data)
                    for j, other in enumerate(bottom):
                        if j != i:
                            others *= other.data
                else:
                    others = top[0].data / b.data
                np.multiply(others, top_grad, out=b.grad)
            else:
                b.grad = np.where(self.max_idx == i, top_grad, 0)

    def get_config(self) -> dict:
        config = super().get_config()
        config.update({
            'operation': self.operation.value,
            'stable_prod_grad': self.stable_prod_grad,
        })
        if self.operation is EltwiseOp.SUM and self.coeff is not None:
            config['coeff'] = list(self.coeff)
        return config


@register_layer
class MVN(Layer):
    """
    Mean-variance normalization.

    Each group, one (n, c) plane or a whole sample when ``across_channels`` is
    set, has its mean subtracted and, with ``normalize_variance``, is divided
    by ``sqrt(variance + eps)``.
    """

    layer_type = LayerType.MVN
    exact_num_bottom = 1
    exact_num_top = 1

    def __init__(self, normalize_variance: bool = True, across_channels: bool = False,
                 eps: float = 1e-9, name: Optional[str] = None):
        super().__init__(name)
        if eps < 0:
            raise ConfigurationError(f"eps must be non-negative, got {eps}")
        self.normalize_variance = bool(normalize_variance)
        self.across_channels = bool(across_channels)
        self.eps = float(eps)
        self.mean = None
        self.std = None

    def _groups(self, array: np.ndarray) -> np.ndarray:
        n, c, h, w = array.shape
        if self.across_channels:
            return array.reshape(n, c * h * w)
        return array.reshape(n * c, h * w)

    def reshape(self, bottom, top):
        top[0].reshape_like(bottom[0])
        super().reshape(bottom, top)

    def _forward(self, bottom, top):
        x = self._groups(bottom[0].data)
        self.mean = x.mean(axis=1, keepdims=True)
        centered = x - self.mean
        if self.normalize_variance:
            variance = np.mean(centered ** 2, axis=1, keepdims=True)
            self.std = np.sqrt(variance + self.eps)
            centered = centered / self.std
        top[0].data = centered.reshape(top[0].shape)

    def _backward(self, top, propagate_down, bottom):
        if not propagate_down[0]:
            return
        g = self._groups(top[0].grad)
        g_centered = g - g.mean(axis=1, keepdims=True)
        if self.normalize_variance:
            y = self._groups(top[0].data)
            projection = np.mean(g * y, axis=1, keepdims=True)
            dx = (g_centered - y * projection) / self.std
        else:
            dx = g_centered
        bottom[0].grad = dx.reshape(bottom[0].shape)

    def get_config(self) -> dict:
        config = super().get_config()
        config.update({
            'normalize_variance': self.normalize_variance,
            'across_channels': self.across_channels,
            'eps': self.eps,
        })
        return config


@register_layer
class Softmax(Layer):
    """
    Softmax over channels, independently for every sample and spatial position.
    """

    layer_type = LayerType.SOFTMAX
    exact_num_bottom = 1
    exact_num_top = 1

    def reshape(self, bottom, top):
        top[0].reshape_like(bottom[0])
        super().reshape(bottom, top)

    def _forward(self, bottom, top):
        x = bottom[0].data
        # Subtract the channel max for numerical stability
        exp_x = np.exp(x - x.max(axis=1, keepdims=True))
        top[0].data = exp_x / exp_x.sum(axis=1, keepdims=True)

    def _backward(self, top, propagate_down, bottom):
        if not propagate_down[0]:
            return
        y = top[0].data
        g = top[0].grad
        dot = np.sum(g * y, axis=1, keepdims=True)
        bottom[0].grad = y * (g - dot)


@register_layer
class ArgMax(Layer):
    """
    Indices of the ``top_k`` largest values of every sample over C*H*W.

    Output is (N, 1, K, 1), or (N, 2, K, 1) with the values in channel 1 when
    ``out_max_val`` is set. Ties go to the smaller index. Not differentiable.
    """

    layer_type = LayerType.ARGMAX
    exact_num_bottom = 1
    exact_num_top = 1

    def __init__(self, top_k: int = 1, out_max_val: bool = False, name: Optional[str] = None):
        """
        Initialize ArgMax layer.

        Args:
            top_k: Number of maximal items to output
            out_max_val: Also output the maximal values
            name: Layer name
        """
        super().__init__(name)
        if int(top_k) < 1:
            raise ConfigurationError(f"top_k must be at least 1, got {top_k}")
        self.top_k = int(top_k)
        self.out_max_val = bool(out_max_val)

    def reshape(self, bottom, top):
        b = bottom[0]
        dim = b.channels * b.height * b.width
        if self.top_k > dim:
            raise ConfigurationError(
                f"{self.name}: top_k ({self.top_k}) must be at most the number of "
                f"values per sample ({dim})")
        top[0].reshape(bottom[0].num, 2 if self.out_max_val else 1, self.top_k, 1)
        super().reshape(bottom, top)

    def _forward(self, bottom, top):
        b = bottom[0]
        flat = b.data.reshape(b.num, b.channels * b.height * b.width)
        order = np.argsort(-flat, axis=1, kind='stable')[:, :self.top_k]
        out = top[0].data
        out[:, 0, :, 0] = order
        if self.out_max_val:
            out[:, 1, :, 0] = np.take_along_axis(flat, order, axis=1)

    def _backward(self, top, propagate_down, bottom):
        raise NotImplementedLayerError(f"{self.name}: ArgMax is not differentiable")

    def get_config(self) -> dict:
        config = super().get_config()
        config.update({'top_k': self.top_k, 'out_max_val': self.out_max_val})
        return config
