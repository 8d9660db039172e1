"""
Error types raised by layerwise.

Every failure in this package is fatal for the current run; the classes only
differ in what went wrong so callers can report it precisely.
"""


class LayerError(Exception):
    """Base class for all layerwise errors."""


class ConfigurationError(LayerError, ValueError):
    """Invalid layer configuration or incompatible input shapes."""


class NotImplementedLayerError(LayerError, NotImplementedError):
    """An operation the layer does not support, e.g. backward of ArgMax."""


class LayerStateError(LayerError, RuntimeError):
    """Forward or backward called before the layer was set up and shaped."""


class IndexedDataError(LayerError, IOError, IndexError):
    """Missing, truncated or out-of-range records of an indexed data source."""
