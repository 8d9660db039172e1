"""
layerwise - forward/backward tensor layers for layered neural-network graphs.

This package provides:
- A 4-D Tensor with paired data and gradient buffers and explicit sharing
- The Layer contract (setup, reshape, forward, backward, multiplicity)
- Structural, elementwise, parametric and control layers
- Indexed data sources with an in-memory cache, and batch prefetching
"""

import logging

__version__ = "0.1.0"

# Core imports
from layerwise.core.errors import (LayerError, ConfigurationError, NotImplementedLayerError,
                                   LayerStateError, IndexedDataError)
from layerwise.core.tensor import Tensor
from layerwise.core.layers import Layer, LayerType, create_layer

# Layers
from layerwise.layers import (Concat, Split, Slice, Flatten, Eltwise, EltwiseOp, MVN, Softmax,
                              ArgMax, InnerProduct, Filter, Silence, Indirection)

# Data
from layerwise.data import (IndexedDataReader, SimpleIndexedTextFile, IndexedBinaryFiles,
                            IndexedDataReadCache, make_reader, BatchPrefetcher)

logging.getLogger(__name__).addHandler(logging.NullHandler())


def set_log_level(level=logging.INFO):
    """Log layerwise messages at ``level`` and above to stderr."""
    logger = logging.getLogger(__name__)
    if not any(getattr(h, '_layerwise', False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handler._layerwise = True
        logger.addHandler(handler)
    logger.setLevel(level)


__all__ = [
    # Core
    'Tensor', 'Layer', 'LayerType', 'create_layer',
    'LayerError', 'ConfigurationError', 'NotImplementedLayerError', 'LayerStateError',
    'IndexedDataError',

    # Layers
    'Concat', 'Split', 'Slice', 'Flatten', 'Eltwise', 'EltwiseOp', 'MVN', 'Softmax',
    'ArgMax', 'InnerProduct', 'Filter', 'Silence', 'Indirection',

    # Data
    'IndexedDataReader', 'SimpleIndexedTextFile', 'IndexedBinaryFiles',
    'IndexedDataReadCache', 'make_reader', 'BatchPrefetcher',

    'set_log_level'
]
