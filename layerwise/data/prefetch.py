"""
Double-buffered batch prefetching.

A background thread fills the back buffer with the next batch while the
consumer works on the front buffer. The worker holds the lock while it
writes the back buffer and the consumer takes it to swap the two, so a
buffer is never handed out while it is being filled. A failed fill is
retried for the same batch index.
"""

import logging
import threading
from typing import Callable, Optional, Sequence

from ..core.tensor import Tensor

logger = logging.getLogger(__name__)


class BatchPrefetcher:
    """
    Fill tensors ahead of time with ``loader(tensor, batch_index)``.

    Example:
        with BatchPrefetcher(load_batch, shape=(32, 3, 28, 28)) as prefetcher:
            for _ in range(steps):
                batch = prefetcher.next_batch()
                ...

    The tensor returned by :meth:`next_batch` stays valid until the following
    call, after which it becomes the back buffer again.
    """

    def __init__(self, loader: Callable[[Tensor, int], None], shape: Sequence[int],
                 dtype=None, start: bool = True):
        """
        Args:
            loader: Callable writing batch ``batch_index`` into the given tensor
            shape: Shape of one batch
            dtype: Data type of the buffers
            start: Begin loading the first batch immediately
        """
        self.loader = loader
        self.front = Tensor(shape, dtype=dtype)
        self.back = Tensor(shape, dtype=dtype)
        self._lock = threading.Lock()
        self._filled = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._error: Optional[BaseException] = None
        self._batch_index = 0
        self._closed = False
        if start:
            self._schedule()

    def _fill(self, tensor: Tensor, batch_index: int):
        try:
            # The back buffer belongs to the worker until the fill is done.
            with self._lock:
                self.loader(tensor, batch_index)
        except Exception as e:
            logger.exception("Prefetch of batch %d failed", batch_index)
            self._error = e
        finally:
            self._filled.set()

    def _schedule(self):
        self._filled.clear()
        self._thread = threading.Thread(
            target=self._fill, args=(self.back, self._batch_index),
            name=f"prefetch-{self._batch_index}", daemon=True)
        self._thread.start()

    def next_batch(self) -> Tensor:
        """Wait for the pending batch, swap buffers and start loading the next one."""
        if self._closed:
            raise RuntimeError("BatchPrefetcher is closed")
        if self._thread is None:
            self._schedule()
        self._filled.wait()
        self._thread.join()
        if self._error is not None:
            error, self._error = self._error, None
            # Retry the same batch on the next call; the failed buffer is never handed out.
            self._schedule()
            raise error
        with self._lock:
            self.front, self.back = self.back, self.front
            self._batch_index += 1
        self._schedule()
        return self.front

    def close(self):
        """Wait for the pending load and stop prefetching."""
        self._closed = True
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
