"""
Parameter initialisers for layerwise.
Fill a Tensor's data buffer in place, e.g. the weights of InnerProduct.
"""

import math
import numpy as np
from typing import Optional, Union

from .errors import ConfigurationError
from .tensor import Tensor


class Filler:
    """Base class for fillers."""

    name = None

    def __init__(self, rng: Optional[np.random.Generator] = None, seed: Optional[int] = None):
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    def fill(self, tensor: Tensor):
        raise NotImplementedError

    def get_config(self) -> dict:
        return {'type': self.name}

    @staticmethod
    def _fans(tensor: Tensor):
        # Weight matrices are stored as (1, 1, fan_out, fan_in).
        fan_in = max(tensor.width, 1)
        fan_out = max(tensor.count // fan_in, 1)
        return fan_in, fan_out


class ConstantFiller(Filler):
    name = 'constant'

    def __init__(self, value: float = 0.0, **kwargs):
        super().__init__(**kwargs)
        self.value = value

    def fill(self, tensor: Tensor):
        tensor.data = self.value

    def get_config(self) -> dict:
        return {'type': self.name, 'value': self.value}


class UniformFiller(Filler):
    name = 'uniform'

    def __init__(self, min: float = 0.0, max: float = 1.0, **kwargs):
        super().__init__(**kwargs)
        if min > max:
            raise ConfigurationError(f"Uniform filler needs min <= max, got {min} > {max}")
        self.min = min
        self.max = max

    def fill(self, tensor: Tensor):
        tensor.data = self.rng.uniform(self.min, self.max, tensor.shape)

    def get_config(self) -> dict:
        return {'type': self.name, 'min': self.min, 'max': self.max}


class GaussianFiller(Filler):
    name = 'gaussian'

    def __init__(self, mean: float = 0.0, std: float = 1.0, **kwargs):
        super().__init__(**kwargs)
        if std < 0:
            raise ConfigurationError(f"Gaussian filler needs std >= 0, got {std}")
        self.mean = mean
        self.std = std

    def fill(self, tensor: Tensor):
        tensor.data = self.rng.normal(self.mean, self.std, tensor.shape)

    def get_config(self) -> dict:
        return {'type': self.name, 'mean': self.mean, 'std': self.std}


class XavierFiller(Filler):
    """Glorot uniform: U(-limit, limit) with limit = sqrt(6 / (fan_in + fan_out))."""

    name = 'xavier'

    def fill(self, tensor: Tensor):
        fan_in, fan_out = self._fans(tensor)
        limit = math.sqrt(6.0 / (fan_in + fan_out))
        tensor.data = self.rng.uniform(-limit, limit, tensor.shape)


class MSRAFiller(Filler):
    """He normal: N(0, sqrt(2 / fan_in))."""

    name = 'msra'

    def fill(self, tensor: Tensor):
        fan_in, _ = self._fans(tensor)
        std = math.sqrt(2.0 / fan_in)
        tensor.data = self.rng.normal(0.0, std, tensor.shape)


_FILLERS = {
    'constant': ConstantFiller,
    'uniform': UniformFiller,
    'gaussian': GaussianFiller,
    'normal': GaussianFiller,
    'xavier': XavierFiller,
    'glorot_uniform': XavierFiller,
    'msra': MSRAFiller,
    'he_normal': MSRAFiller,
}


def get_filler(config: Union[str, dict, Filler, None], default: str = 'constant',
               rng: Optional[np.random.Generator] = None) -> Filler:
    """
    Build a filler from a name, a config dict ({'type': ..., **params}) or
    return an existing Filler unchanged.
    """
    if isinstance(config, Filler):
        return config
    if config is None:
        config = default
    if isinstance(config, str):
        config = {'type': config}
    params = dict(config)
    name = str(params.pop('type', default)).lower()
    if name not in _FILLERS:
        raise ConfigurationError(f"Unknown filler: {name}")
    if rng is not None and 'seed' not in params:
        params['rng'] = rng
    try:
        return _FILLERS[name](**params)
    except TypeError as e:
        raise ConfigurationError(f"Invalid parameters for {name} filler: {e}") from e
