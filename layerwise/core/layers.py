"""
Layer contract for layerwise.
Defines the abstract Layer every variant implements, the variant tags and the
registry used to build layers from their configuration.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, List, Optional, Sequence, Type, Union

from .errors import ConfigurationError, LayerStateError
from .tensor import Tensor

logger = logging.getLogger(__name__)


class LayerType(str, Enum):
    """Variant tag of a layer."""
    ARGMAX = "ArgMax"
    CONCAT = "Concat"
    ELTWISE = "Eltwise"
    FILTER = "Filter"
    FLATTEN = "Flatten"
    INNER_PRODUCT = "InnerProduct"
    MVN = "MVN"
    SILENCE = "Silence"
    SOFTMAX = "Softmax"
    SPLIT = "Split"
    SLICE = "Slice"
    INDIRECTION = "Indirection"

    @classmethod
    def parse(cls, value: Union['LayerType', str]) -> 'LayerType':
        """Accept a LayerType, its value ("InnerProduct") or its name ("INNER_PRODUCT")."""
        if isinstance(value, cls):
            return value
        key = str(value).replace("_", "").lower()
        for member in cls:
            if key in (member.value.lower(), member.name.replace("_", "").lower()):
                return member
        raise ConfigurationError(f"Unknown layer type: {value}")


class LayerState(Enum):
    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    SHAPED = "shaped"


_LAYER_REGISTRY: Dict[LayerType, Type['Layer']] = {}


def register_layer(cls: Type['Layer']) -> Type['Layer']:
    """Class decorator adding a Layer subclass to the registry under its layer_type."""
    if cls.layer_type is None:
        raise ConfigurationError(f"{cls.__name__} does not declare a layer_type")
    _LAYER_REGISTRY[cls.layer_type] = cls
    return cls


def create_layer(layer_type: Union[LayerType, str, None] = None, **config) -> 'Layer':
    """
    Build a layer from its type and configuration.

    Args:
        layer_type: LayerType or type name; may instead be given as ``type``
                    inside ``config``
        **config: Keyword configuration of the layer (as returned by get_config)

    Returns:
        An unconfigured layer instance
    """
    if 'type' in config:
        declared = config.pop('type')
        layer_type = declared if layer_type is None else layer_type
    if layer_type is None:
        raise ConfigurationError("create_layer needs a layer type")
    layer_type = LayerType.parse(layer_type)
    if layer_type not in _LAYER_REGISTRY:
        raise ConfigurationError(f"No layer registered for type {layer_type.value}")
    return _LAYER_REGISTRY[layer_type](**config)


def registered_layer_types() -> List[LayerType]:
    return list(_LAYER_REGISTRY)


class Layer(ABC):
    """
    Abstract base class for all layers.

    A layer consumes ``bottom`` tensors and produces ``top`` tensors. The
    driver calls :meth:`setup` once, then :meth:`reshape` and :meth:`forward`
    for every batch and, when training, :meth:`backward`.

    Subclasses declare their multiplicity contract through the class
    attributes below (``-1`` meaning unconstrained) and implement
    :meth:`reshape`, :meth:`_forward` and :meth:`_backward`.
    """

    layer_type: Optional[LayerType] = None

    exact_num_bottom: int = -1
    min_bottom: int = -1
    max_bottom: int = -1
    exact_num_top: int = -1
    min_top: int = -1
    max_top: int = -1

    def __init__(self, name: Optional[str] = None):
        """
        Initialize the layer.

        Args:
            name: Optional name for the layer
        """
        self.name = name or self.__class__.__name__
        self.state = LayerState.UNCONFIGURED
        self.params: List[Tensor] = []
        self.param_propagate_down: List[bool] = []

    def setup(self, bottom: Sequence[Tensor], top: Sequence[Tensor]):
        """
        One-time setup: check multiplicity, validate configuration against the
        first inputs, allocate parameters and shape the outputs.
        """
        self.check_blob_counts(bottom, top)
        self.layer_setup(bottom, top)
        self.param_propagate_down = [True] * len(self.params)
        self.state = LayerState.CONFIGURED
        logger.debug("Set up %s (%s) with bottom shapes %s",
                     self.name, self.layer_type.value, [b.shape for b in bottom])
        self.reshape(bottom, top)

    def layer_setup(self, bottom: Sequence[Tensor], top: Sequence[Tensor]):
        """Layer-specific setup; the default has nothing to do."""
        pass

    def reshape(self, bottom: Sequence[Tensor], top: Sequence[Tensor]):
        """
        Compute top shapes from the current bottom shapes.

        Subclasses extend this and call ``super().reshape`` last.
        """
        if self.state is LayerState.UNCONFIGURED:
            raise LayerStateError(f"{self.name}: reshape called before setup")
        self.state = LayerState.SHAPED

    def forward(self, bottom: Sequence[Tensor], top: Sequence[Tensor]):
        """Compute the top tensors from the bottom tensors."""
        self._require_shaped("forward")
        self._forward(bottom, top)

    def backward(self, top: Sequence[Tensor], propagate_down: Optional[Sequence[bool]],
                 bottom: Sequence[Tensor]):
        """
        Compute bottom gradients from top gradients.

        Args:
            top: Output tensors holding the incoming gradients
            propagate_down: Per-bottom flags; None means all True
            bottom: Input tensors receiving gradients
        """
        self._require_shaped("backward")
        if propagate_down is None:
            propagate_down = [True] * len(bottom)
        elif len(propagate_down) != len(bottom):
            raise ConfigurationError(
                f"{self.name}: propagate_down has {len(propagate_down)} entries "
                f"for {len(bottom)} bottom tensors")
        self._backward(top, list(propagate_down), bottom)

    @abstractmethod
    def _forward(self, bottom: Sequence[Tensor], top: Sequence[Tensor]):
        pass

    @abstractmethod
    def _backward(self, top: Sequence[Tensor], propagate_down: List[bool],
                  bottom: Sequence[Tensor]):
        pass

    def __call__(self, bottom: Sequence[Tensor], top: Sequence[Tensor]) -> Sequence[Tensor]:
        """Set up if needed, reshape and run forward."""
        if self.state is LayerState.UNCONFIGURED:
            self.setup(bottom, top)
        else:
            self.reshape(bottom, top)
        self.forward(bottom, top)
        return top

    def check_blob_counts(self, bottom: Sequence[Tensor], top: Sequence[Tensor]):
        """Raise ConfigurationError if bottom/top counts violate the contract."""
        def fail(kind, rule, expected, got):
            raise ConfigurationError(
                f"{self.layer_type.value} layer {self.name} takes {rule} {expected} "
                f"{kind}(s) as input, got {got}")

        if self.exact_num_bottom >= 0 and len(bottom) != self.exact_num_bottom:
            fail("bottom", "exactly", self.exact_num_bottom, len(bottom))
        if self.min_bottom >= 0 and len(bottom) < self.min_bottom:
            fail("bottom", "at least", self.min_bottom, len(bottom))
        if self.max_bottom >= 0 and len(bottom) > self.max_bottom:
            fail("bottom", "at most", self.max_bottom, len(bottom))
        if self.exact_num_top >= 0 and len(top) != self.exact_num_top:
            fail("top", "exactly", self.exact_num_top, len(top))
        if self.min_top >= 0 and len(top) < self.min_top:
            fail("top", "at least", self.min_top, len(top))
        if self.max_top >= 0 and len(top) > self.max_top:
            fail("top", "at most", self.max_top, len(top))

    def _require_shaped(self, operation: str):
        if self.state is not LayerState.SHAPED:
            raise LayerStateError(
                f"{self.name}: {operation} requires a shaped layer, state is {self.state.value}")

    def get_weights(self) -> List[Tensor]:
        """Get all learnable parameters."""
        return list(self.params)

    def get_config(self) -> dict:
        """Get layer configuration."""
        return {'type': self.layer_type.value, 'name': self.name}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, state={self.state.value})"
