"""Core framework components for layerwise."""

from .errors import (LayerError, ConfigurationError, NotImplementedLayerError,
                     LayerStateError, IndexedDataError)
from .tensor import Tensor, zeros, ones, randn, rand, from_array, get_default_dtype, set_default_dtype
from .layers import Layer, LayerType, LayerState, create_layer, register_layer, registered_layer_types
from .fillers import Filler, get_filler
from .gradient_check import numerical_gradient, check_gradient

__all__ = [
    'LayerError', 'ConfigurationError', 'NotImplementedLayerError', 'LayerStateError',
    'IndexedDataError', 'Tensor', 'zeros', 'ones', 'randn', 'rand', 'from_array',
    'get_default_dtype', 'set_default_dtype', 'Layer', 'LayerType', 'LayerState',
    'create_layer', 'register_layer', 'registered_layer_types', 'Filler', 'get_filler',
    'numerical_gradient', 'check_gradient'
]
