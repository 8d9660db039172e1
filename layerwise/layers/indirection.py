"""
Indirection layer: turns a tensor of indices into the records an indexed
data source holds for them.
"""

import logging
import numpy as np
from typing import Optional, Sequence, Union

from ..core.errors import ConfigurationError, IndexedDataError, NotImplementedLayerError
from ..core.layers import Layer, LayerType, register_layer
from ..data.indexed_data import (IndexedDataReadCache, IndexedDataReader,
                                 IndexedSourceType, make_reader)

logger = logging.getLogger(__name__)


@register_layer
class Indirection(Layer):
    """
    Look up one record per batch item.

    The bottom holds one index per item, shape (N, 1, 1, 1). The top has
    shape (N, C, H, W) where (C, H, W) is ``record_shape``; every record must
    hold exactly C*H*W values.
    """

    layer_type = LayerType.INDIRECTION
    exact_num_bottom = 1
    exact_num_top = 1

    def __init__(self, reader: Optional[IndexedDataReader] = None,
                 source_type: Union[IndexedSourceType, str, None] = None,
                 source: Optional[str] = None,
                 record_shape: Optional[Sequence[int]] = None,
                 dtype=None, cache: bool = False, name: Optional[str] = None):
        """
        Initialize Indirection layer.

        Args:
            reader: A ready-made reader; otherwise one is built from
                    source_type and source
            source_type: SIMPLE_TEXT or INDEXED_BINARY
            source: Path of the text file or manifest
            record_shape: (C, H, W) of one record; defaults to (length, 1, 1)
                          for cached readers
            dtype: Value type of the records
            cache: Cache the records in memory
            name: Layer name
        """
        super().__init__(name)
        if reader is None:
            if source_type is None or source is None:
                raise ConfigurationError("Indirection needs a reader or a source_type and source")
            reader = make_reader(source_type, source, dtype=dtype, cache=cache)
        self.reader = reader
        self.source_type = None if source_type is None else IndexedSourceType.parse(source_type)
        self.source = source
        self.cache = cache
        if record_shape is None:
            if not isinstance(reader, IndexedDataReadCache):
                raise ConfigurationError("record_shape is required unless the reader is cached")
            record_shape = (reader.data_length(), 1, 1)
        record_shape = tuple(int(d) for d in record_shape)
        if len(record_shape) != 3 or any(d <= 0 for d in record_shape):
            raise ConfigurationError(f"record_shape must be 3 positive dims, got {record_shape}")
        self.record_shape = record_shape
        self.record_length = int(np.prod(record_shape))

    def reshape(self, bottom, top):
        if bottom[0].count != bottom[0].num:
            raise ConfigurationError(
                f"{self.name}: expected one index per item, got bottom shape {bottom[0].shape}")
        top[0].reshape((bottom[0].num,) + self.record_shape)
        super().reshape(bottom, top)

    def _forward(self, bottom, top):
        indices = bottom[0].data.reshape(-1)
        out = top[0].data
        for n, index in enumerate(indices):
            actual = self.reader.read(int(index), out[n], self.record_length)
            if actual != self.record_length:
                raise IndexedDataError(
                    f"{self.name}: record {int(index)} has {actual} values, expected "
                    f"{self.record_length}")

    def _backward(self, top, propagate_down, bottom):
        if propagate_down[0]:
            raise NotImplementedLayerError(f"{self.name}: cannot backpropagate to indices")

    def get_config(self) -> dict:
        config = super().get_config()
        config.update({
            'source_type': self.source_type.value if self.source_type else None,
            'source': self.source,
            'record_shape': list(self.record_shape),
            'dtype': str(self.reader.dtype),
            'cache': self.cache,
        })
        return config
