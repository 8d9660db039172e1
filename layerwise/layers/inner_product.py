"""
Fully connected (inner product) layer.
"""

import logging
import numpy as np
from typing import Optional, Union

from ..core.errors import ConfigurationError
from ..core.fillers import Filler, get_filler
from ..core.layers import Layer, LayerType, register_layer
from ..core.tensor import Tensor

logger = logging.getLogger(__name__)


@register_layer
class InnerProduct(Layer):
    """
    Fully connected layer.

    Performs the operation: output = dot(flatten(input), weight.T) + bias,
    where weight is a (num_output x C*H*W) matrix stored as a (1, 1, N, K)
    tensor and bias a (1, 1, 1, N) tensor. The output has shape (M, N, 1, 1).
    """

    layer_type = LayerType.INNER_PRODUCT
    exact_num_bottom = 1
    exact_num_top = 1

    def __init__(self, num_output: int, bias_term: bool = True,
                 weight_filler: Union[str, dict, Filler, None] = 'xavier',
                 bias_filler: Union[str, dict, Filler, None] = 'constant',
                 rng: Optional[np.random.Generator] = None,
                 name: Optional[str] = None):
        """
        Initialize InnerProduct layer.

        Args:
            num_output: Number of output units
            bias_term: Whether to use bias
            weight_filler: Weight initialization (name, config dict or Filler)
            bias_filler: Bias initialization (name, config dict or Filler)
            rng: Random number generator shared by the fillers
            name: Layer name
        """
        super().__init__(name)
        if int(num_output) <= 0:
            raise ConfigurationError(f"num_output must be positive, got {num_output}")
        self.num_output = int(num_output)
        self.bias_term = bool(bias_term)
        self.weight_filler = get_filler(weight_filler, default='xavier', rng=rng)
        self.bias_filler = get_filler(bias_filler, default='constant', rng=rng)

        self.weight: Optional[Tensor] = None
        self.bias: Optional[Tensor] = None
        self.K = None
        self.M = None

    def layer_setup(self, bottom, top):
        b = bottom[0]
        self.K = b.channels * b.height * b.width
        self.weight = Tensor((1, 1, self.num_output, self.K), dtype=b.dtype)
        self.weight_filler.fill(self.weight)
        self.params = [self.weight]
        if self.bias_term:
            self.bias = Tensor((1, 1, 1, self.num_output), dtype=b.dtype)
            self.bias_filler.fill(self.bias)
            self.params.append(self.bias)
        logger.debug("%s: weight (%d x %d), bias=%s", self.name, self.num_output, self.K,
                     self.bias_term)

    def reshape(self, bottom, top):
        b = bottom[0]
        k = b.channels * b.height * b.width
        if k != self.K:
            raise ConfigurationError(
                f"{self.name}: input size incompatible with inner product parameters "
                f"(expected {self.K} values per sample, got {k})")
        self.M = b.num
        top[0].reshape(self.M, self.num_output, 1, 1)
        super().reshape(bottom, top)

    def _weight_matrix(self) -> np.ndarray:
        return self.weight.data.reshape(self.num_output, self.K)

    def _forward(self, bottom, top):
        x = bottom[0].data.reshape(self.M, self.K)
        out = x @ self._weight_matrix().T
        if self.bias_term:
            out = out + self.bias.data.reshape(1, self.num_output)
        top[0].data = out.reshape(top[0].shape)

    def _backward(self, top, propagate_down, bottom):
        g = top[0].grad.reshape(self.M, self.num_output)
        if self.param_propagate_down[0]:
            x = bottom[0].data.reshape(self.M, self.K)
            self.weight.grad = (g.T @ x).reshape(self.weight.shape)
        if self.bias_term and self.param_propagate_down[1]:
            self.bias.grad = g.sum(axis=0).reshape(self.bias.shape)
        if propagate_down[0]:
            bottom[0].grad = (g @ self._weight_matrix()).reshape(bottom[0].shape)

    def get_config(self) -> dict:
        config = super().get_config()
        config.update({
            'num_output': self.num_output,
            'bias_term': self.bias_term,
            'weight_filler': self.weight_filler.get_config(),
            'bias_filler': self.bias_filler.get_config(),
        })
        return config
