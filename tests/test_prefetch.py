"""BatchPrefetcher tests.

Tests cover:
    - Batches arrive in order and fill the returned tensor
    - Loader errors surface in the consumer and the failed batch is reloaded
    - Closing stops further batches
"""

import threading

import numpy as np
import pytest

from layerwise.data.prefetch import BatchPrefetcher


def _loader(tensor, batch_index):
    tensor.data = batch_index


def test_batches_in_order():
    with BatchPrefetcher(_loader, shape=(2, 3, 1, 1), dtype=np.float64) as prefetcher:
        for expected in range(5):
            batch = prefetcher.next_batch()
            assert batch.shape == (2, 3, 1, 1)
            assert np.all(batch.data == expected)


def test_returned_tensor_is_not_being_filled():
    seen = []

    def loader(tensor, batch_index):
        seen.append((id(tensor), threading.current_thread().name))
        tensor.data = batch_index

    with BatchPrefetcher(loader, shape=(4,), dtype=np.float64) as prefetcher:
        first = prefetcher.next_batch()
        second = prefetcher.next_batch()
        assert first is not second
        assert np.all(second.data == 1)
    assert all(name.startswith("prefetch-") for _, name in seen)


def test_lazy_start():
    calls = []

    def loader(tensor, batch_index):
        calls.append(batch_index)
        tensor.data = batch_index

    prefetcher = BatchPrefetcher(loader, shape=(1,), dtype=np.float64, start=False)
    assert calls == []
    assert np.all(prefetcher.next_batch().data == 0)
    prefetcher.close()


def test_loader_error_propagates():
    def loader(tensor, batch_index):
        if batch_index == 1:
            raise IOError("disk gone")
        tensor.data = batch_index

    prefetcher = BatchPrefetcher(loader, shape=(1,), dtype=np.float64)
    prefetcher.next_batch()
    with pytest.raises(IOError, match="disk gone"):
        prefetcher.next_batch()
    prefetcher.close()


def test_closed_prefetcher_refuses_batches():
    prefetcher = BatchPrefetcher(_loader, shape=(1,), dtype=np.float64)
    prefetcher.close()
    with pytest.raises(RuntimeError):
        prefetcher.next_batch()


def test_failed_batch_is_reloaded_not_handed_out():
    calls = []

    def loader(tensor, batch_index):
        calls.append(batch_index)
        if len(calls) == 1:
            tensor.data = 99
            raise RuntimeError("partial write")
        tensor.data = batch_index

    with BatchPrefetcher(loader, shape=(3,), dtype=np.float64) as prefetcher:
        with pytest.raises(RuntimeError, match="partial write"):
            prefetcher.next_batch()
        batch = prefetcher.next_batch()
        assert np.all(batch.data == 0)
        assert calls[:2] == [0, 0]
        assert np.all(prefetcher.next_batch().data == 1)
