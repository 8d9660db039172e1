"""
Control layers: Filter and Silence.
"""

import logging
import warnings
import numpy as np
from typing import Optional

from ..core.errors import ConfigurationError
from ..core.layers import Layer, LayerType, register_layer

logger = logging.getLogger(__name__)

PASS_ON_MODES = ('equal', 'different')
OUTPUT_MODES = ('labels', 'indices')


@register_layer
class Filter(Layer):
    """
    Forward only the batch items whose condition passes.

    Bottoms are (condition, payload, labels). For every item the argmax of
    the flattened condition is compared to a reference: ``conditional_index``
    when configured, otherwise the item's label. With ``pass_on='equal'`` an
    item passes when they match, with ``pass_on='different'`` when they
    differ. Tops are (passed labels or original indices, passed payload), both
    holding the S passed items in their original order.

    Only the payload receives gradient; blocked items get zero.
    """

    layer_type = LayerType.FILTER
    exact_num_bottom = 3
    exact_num_top = 2

    def __init__(self, conditional_index: Optional[int] = None, pass_on: str = 'equal',
                 output: str = 'labels', name: Optional[str] = None):
        """
        Initialize Filter layer.

        Args:
            conditional_index: Fixed class index to compare against; None uses labels
            pass_on: 'equal' or 'different'
            output: What top 0 holds, 'labels' or 'indices'
            name: Layer name
        """
        super().__init__(name)
        if pass_on not in PASS_ON_MODES:
            raise ConfigurationError(f"pass_on must be one of {PASS_ON_MODES}, got {pass_on!r}")
        if output not in OUTPUT_MODES:
            raise ConfigurationError(f"output must be one of {OUTPUT_MODES}, got {output!r}")
        self.conditional_index = None if conditional_index is None else int(conditional_index)
        self.pass_on = pass_on
        self.output = output
        self.indices_to_forward = np.zeros(0, dtype=np.int64)

    def select(self, condition: np.ndarray, labels: np.ndarray) -> np.ndarray:
        """Return the batch indices that pass, in ascending order."""
        num = condition.shape[0]
        if num == 0:
            return np.zeros(0, dtype=np.int64)
        predicted = condition.reshape(num, -1).argmax(axis=1)
        if self.conditional_index is not None:
            reference = np.full(num, self.conditional_index)
        else:
            reference = np.rint(labels.reshape(num, -1)[:, 0]).astype(np.int64)
        passes = predicted == reference
        if self.pass_on == 'different':
            passes = ~passes
        return np.flatnonzero(passes)

    def reshape(self, bottom, top):
        condition, payload, labels = bottom
        num = condition.num
        if payload.num != num or labels.num != num:
            raise ConfigurationError(
                f"{self.name}: condition, payload and labels must have the same num, got "
                f"{condition.num}, {payload.num}, {labels.num}")
        self.indices_to_forward = self.select(condition.data, labels.data)
        selected = len(self.indices_to_forward)
        if selected == 0 and num > 0:
            warnings.warn(f"{self.name}: no item passed the filter")
        if self.output == 'indices':
            top[0].reshape(selected, 1, 1, 1)
        else:
            top[0].reshape(selected, labels.channels, labels.height, labels.width)
        top[1].reshape(selected, payload.channels, payload.height, payload.width)
        super().reshape(bottom, top)

    def _forward(self, bottom, top):
        _, payload, labels = bottom
        idx = self.indices_to_forward
        if self.output == 'indices':
            top[0].data = idx.reshape(-1, 1, 1, 1)
        else:
            top[0].data = labels.data[idx]
        top[1].data = payload.data[idx]

    def _backward(self, top, propagate_down, bottom):
        if not propagate_down[1]:
            return
        payload = bottom[1]
        payload.zero_grad()
        payload.grad[self.indices_to_forward] = top[1].grad

    def get_config(self) -> dict:
        config = super().get_config()
        config.update({
            'conditional_index': self.conditional_index,
            'pass_on': self.pass_on,
            'output': self.output,
        })
        return config


@register_layer
class Silence(Layer):
    """
    Swallow its inputs. Backward zeroes their gradients.
    """

    layer_type = LayerType.SILENCE
    min_bottom = 1
    exact_num_top = 0

    def _forward(self, bottom, top):
        pass

    def _backward(self, top, propagate_down, bottom):
        for b, down in zip(bottom, propagate_down):
            if down:
                b.zero_grad()
