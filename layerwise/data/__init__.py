"""Indexed data sources and batch prefetching."""

from .indexed_data import (IndexedDataReader, IndexedSourceType, LinearIndexedStorage,
                           SimpleIndexedTextFile, IndexedBinaryFiles, IndexedDataReadCache,
                           make_reader)
from .prefetch import BatchPrefetcher

__all__ = [
    'IndexedDataReader', 'IndexedSourceType', 'LinearIndexedStorage', 'SimpleIndexedTextFile',
    'IndexedBinaryFiles', 'IndexedDataReadCache', 'make_reader', 'BatchPrefetcher'
]
