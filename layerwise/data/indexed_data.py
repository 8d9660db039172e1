"""
Indexed data sources for layerwise.

A reader maps an integer index to a 1-D array of numbers. Two backends are
provided, a plain text file with one record per line and a manifest of
binary files with one file per line, plus an in-memory cache over any reader
whose records all have the same length.
"""

import logging
import os
import numpy as np
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional, Union

from ..core.errors import ConfigurationError, IndexedDataError
from ..core.tensor import get_default_dtype

logger = logging.getLogger(__name__)


class IndexedSourceType(str, Enum):
    SIMPLE_TEXT = "SIMPLE_TEXT"
    INDEXED_BINARY = "INDEXED_BINARY"

    @classmethod
    def parse(cls, value: Union['IndexedSourceType', str]) -> 'IndexedSourceType':
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).upper()]
        except KeyError:
            raise ConfigurationError(f"Unknown indexed source type: {value!r}") from None


class IndexedDataReader(ABC):
    """
    Abstract reader of data arrays by index.

    ``read`` is stateless: two calls with the same index return the same data
    as long as the underlying storage does not change.
    """

    def __init__(self, dtype=None):
        self.dtype = np.dtype(get_default_dtype() if dtype is None else dtype)

    @abstractmethod
    def __len__(self) -> int:
        """Number of records."""

    @abstractmethod
    def _record(self, index: int) -> np.ndarray:
        """Return record ``index`` as a 1-D array (may be a view of internal storage)."""

    def read(self, index: int, out: Optional[np.ndarray] = None, length: int = 0) -> int:
        """
        Retrieve the data of one record.

        Args:
            index: Record index
            out: Caller-allocated array to write into; may be None only when
                 length is 0
            length: Number of values the caller can accept

        Returns:
            The actual length of the record, which can be larger or smaller
            than ``length``. At most ``min(length, actual)`` values are written.
        """
        if length < 0:
            raise ValueError(f"length must be non-negative, got {length}")
        if out is None and length > 0:
            raise ValueError("out can only be None when length is 0")
        record = self._record(self._check_index(index))
        if length > 0:
            n = min(length, record.size)
            out.flat[:n] = record[:n]
        return int(record.size)

    def fetch(self, index: int) -> np.ndarray:
        """Return a copy of the whole record ``index``."""
        return np.array(self._record(self._check_index(index)), dtype=self.dtype, copy=True)

    def _check_index(self, index: int) -> int:
        index = int(index)
        if not 0 <= index < len(self):
            raise IndexedDataError(
                f"Index {index} out of range for {self.__class__.__name__} with {len(self)} records")
        return index


class LinearIndexedStorage(IndexedDataReader):
    """Records held in memory as one flat array plus record offsets."""

    def __init__(self, dtype=None):
        super().__init__(dtype)
        self.data = np.zeros(0, dtype=self.dtype)
        self.offsets: List[int] = [0]

    def _set_records(self, records: List[np.ndarray]):
        sizes = [r.size for r in records]
        self.offsets = [0] + list(np.cumsum(sizes, dtype=np.int64))
        self.data = (np.concatenate(records).astype(self.dtype, copy=False)
                     if records else np.zeros(0, dtype=self.dtype))

    def __len__(self) -> int:
        return len(self.offsets) - 1

    def _record(self, index: int) -> np.ndarray:
        return self.data[self.offsets[index]:self.offsets[index + 1]]


class SimpleIndexedTextFile(LinearIndexedStorage):
    """
    Text file where each line holds whitespace-separated numbers.

    The line number is the index; an empty line is a zero-length record.
    """

    def __init__(self, source_file: str, dtype=None):
        super().__init__(dtype)
        self.source_file = source_file
        records = []
        try:
            with open(source_file, 'r') as f:
                for line_no, line in enumerate(f):
                    try:
                        records.append(np.array(line.split(), dtype=self.dtype))
                    except ValueError as e:
                        raise IndexedDataError(
                            f"{source_file}:{line_no + 1}: cannot parse record: {e}") from e
        except OSError as e:
            raise IndexedDataError(f"Cannot read indexed text file {source_file}: {e}") from e
        self._set_records(records)
        logger.debug("Loaded %d records from %s", len(records), source_file)


class IndexedBinaryFiles(IndexedDataReader):
    """
    Manifest where each line names a binary file of raw values in native
    byte order. The line number is the index; relative names are resolved
    against the manifest's directory.
    """

    def __init__(self, source_file: str, dtype=None):
        super().__init__(dtype)
        self.source_file = source_file
        base_dir = os.path.dirname(os.path.abspath(source_file))
        try:
            with open(source_file, 'r') as f:
                names = [line.strip() for line in f]
        except OSError as e:
            raise IndexedDataError(f"Cannot read manifest {source_file}: {e}") from e
        # Trailing blank lines do not name records.
        while names and not names[-1]:
            names.pop()
        self.file_names = [n if os.path.isabs(n) else os.path.join(base_dir, n) for n in names]
        logger.debug("Manifest %s lists %d files", source_file, len(self.file_names))

    def __len__(self) -> int:
        return len(self.file_names)

    def _record(self, index: int) -> np.ndarray:
        path = self.file_names[index]
        try:
            with open(path, 'rb') as f:
                raw = f.read()
        except OSError as e:
            raise IndexedDataError(f"Cannot read data file {path} (index {index}): {e}") from e
        if len(raw) % self.dtype.itemsize != 0:
            raise IndexedDataError(
                f"{path} holds {len(raw)} bytes, not a whole number of "
                f"{self.dtype.itemsize}-byte values")
        return np.frombuffer(raw, dtype=self.dtype)


class IndexedDataReadCache(IndexedDataReader):
    """
    In-memory cache over another reader.

    Only works with readers whose records all have the same length and whose
    indices have no gaps; both are checked when the cache is built.
    """

    def __init__(self, reader: IndexedDataReader, length: int):
        """
        Args:
            reader: The underlying reader
            length: The length of every record
        """
        super().__init__(reader.dtype)
        if length < 0:
            raise ConfigurationError(f"Record length must be non-negative, got {length}")
        self.reader = reader
        self.length = int(length)
        self.cache = np.zeros((len(reader), self.length), dtype=self.dtype)
        for index in range(len(reader)):
            actual = reader.read(index, self.cache[index], self.length)
            if actual != self.length:
                raise ConfigurationError(
                    f"Cache needs records of length {self.length}, but record {index} "
                    f"has length {actual}")
        logger.debug("Cached %d records of length %d", len(reader), self.length)

    def data_length(self) -> int:
        return self.length

    def __len__(self) -> int:
        return self.cache.shape[0]

    def _record(self, index: int) -> np.ndarray:
        return self.cache[index]


def make_reader(source_type: Union[IndexedSourceType, str], source_file: str,
                dtype=None, cache: bool = False) -> IndexedDataReader:
    """
    Factory for indexed data readers.

    Args:
        source_type: SIMPLE_TEXT or INDEXED_BINARY
        source_file: Text file or manifest path
        dtype: Value type of the records
        cache: Wrap the reader in an IndexedDataReadCache; the record length is
               taken from record 0

    Returns:
        The reader
    """
    source_type = IndexedSourceType.parse(source_type)
    if source_type is IndexedSourceType.SIMPLE_TEXT:
        reader = SimpleIndexedTextFile(source_file, dtype)
    else:
        reader = IndexedBinaryFiles(source_file, dtype)
    if cache:
        length = reader.read(0) if len(reader) else 0
        reader = IndexedDataReadCache(reader, length)
    return reader
