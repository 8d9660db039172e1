"""Structural layer tests: Concat, Split, Slice and Flatten.

Tests cover:
    - Concat along num and channels, and its exact inverse in backward
    - Concat followed by Slice reproduces the inputs
    - Split shares data forward and sums gradients backward
    - Slice boundaries, even partitions and their validation
    - Flatten aliases buffers instead of copying
"""

import numpy as np
import pytest

import layerwise
from layerwise.core.errors import ConfigurationError
from layerwise.core.gradient_check import check_gradient
from layerwise.core.tensor import Tensor


# --- Concat -------------------------------------------------------------------


def test_concat_channels_scenario():
    a = Tensor((2, 3, 4, 4))
    a.data = 1
    b = Tensor((2, 3, 4, 4))
    b.data = 2
    top = [Tensor()]
    layerwise.Concat(concat_dim=1)([a, b], top)
    assert top[0].shape == (2, 6, 4, 4)
    assert np.all(top[0].data[:, :3] == 1)
    assert np.all(top[0].data[:, 3:] == 2)


def test_concat_num(make_tensor, empty):
    a, b = make_tensor(2, 3, 2, 2), make_tensor(5, 3, 2, 2)
    top = [empty()]
    layerwise.Concat(concat_dim=0)([a, b], top)
    assert top[0].shape == (7, 3, 2, 2)
    np.testing.assert_array_equal(top[0].data[:2], a.data)
    np.testing.assert_array_equal(top[0].data[2:], b.data)


def test_concat_backward_splits_gradient(make_tensor, empty):
    a, b, c = make_tensor(1, 2, 3, 3), make_tensor(1, 1, 3, 3), make_tensor(1, 4, 3, 3)
    top = [empty()]
    layer = layerwise.Concat()
    layer([a, b, c], top)
    top[0].grad = np.arange(top[0].count).reshape(top[0].shape)
    layer.backward(top, [True, False, True], [a, b, c])
    np.testing.assert_array_equal(a.grad, top[0].grad[:, :2])
    assert np.all(b.grad == 0)
    np.testing.assert_array_equal(c.grad, top[0].grad[:, 3:])


def test_concat_shape_mismatch(make_tensor, empty):
    with pytest.raises(ConfigurationError):
        layerwise.Concat(concat_dim=1)([make_tensor(2, 3, 4, 4), make_tensor(2, 3, 4, 5)], [empty()])


def test_concat_invalid_dim():
    with pytest.raises(ConfigurationError):
        layerwise.Concat(concat_dim=2)


@pytest.mark.parametrize("dim", [0, 1])
def test_concat_then_slice_round_trip(dim, make_tensor, empty):
    inputs = [make_tensor(2, 3, 2, 2), make_tensor(2, 3, 2, 2), make_tensor(2, 3, 2, 2)]
    if dim == 0:
        inputs[1] = make_tensor(4, 3, 2, 2)
        points = [2, 6]
    else:
        inputs[1] = make_tensor(2, 4, 2, 2)
        points = [3, 7]
    joined = [empty()]
    layerwise.Concat(concat_dim=dim)(inputs, joined)
    parts = [empty(), empty(), empty()]
    layerwise.Slice(slice_dim=dim, slice_point=points)(joined, parts)
    for original, part in zip(inputs, parts):
        np.testing.assert_array_equal(original.data, part.data)


# --- Split --------------------------------------------------------------------


def test_split_shares_bottom_data(make_tensor, empty):
    bottom = make_tensor(2, 3, 1, 1)
    top = [empty(), empty(), empty()]
    layerwise.Split()([bottom], top)
    for t in top:
        assert t.shares_data_with(bottom)
        np.testing.assert_array_equal(t.data, bottom.data)


def test_split_backward_sums_gradients(make_tensor, empty, rng):
    bottom = make_tensor(2, 3, 2, 1)
    bottom.grad = 99
    top = [empty() for _ in range(4)]
    layer = layerwise.Split()
    layer([bottom], top)
    grads = [rng.standard_normal(bottom.shape) for _ in top]
    for t, g in zip(top, grads):
        t.grad = g
    layer.backward(top, None, [bottom])
    np.testing.assert_allclose(bottom.grad, sum(grads))


def test_split_single_top_copies_gradient(make_tensor, empty):
    bottom = make_tensor(1, 2, 1, 1)
    top = [empty()]
    layer = layerwise.Split()
    layer([bottom], top)
    top[0].grad = [3, 4]
    layer.backward(top, None, [bottom])
    np.testing.assert_array_equal(bottom.grad.ravel(), [3, 4])


# --- Slice --------------------------------------------------------------------


def test_slice_channels_scenario():
    bottom = Tensor((1, 6, 1, 1), data=[1, 2, 3, 4, 5, 6])
    top = [Tensor(), Tensor(), Tensor()]
    layerwise.Slice(slice_dim=1, slice_point=[2, 4])([bottom], top)
    expected = [[1, 2], [3, 4], [5, 6]]
    for t, values in zip(top, expected):
        assert t.shape == (1, 2, 1, 1)
        np.testing.assert_array_equal(t.data.ravel(), values)


def test_slice_even_partition(make_tensor, empty):
    bottom = make_tensor(6, 2, 1, 1)
    top = [empty(), empty(), empty()]
    layerwise.Slice(slice_dim=0)([bottom], top)
    for i, t in enumerate(top):
        assert t.shape == (2, 2, 1, 1)
        np.testing.assert_array_equal(t.data, bottom.data[2 * i:2 * i + 2])


def test_slice_backward_reassembles(make_tensor, empty):
    bottom = make_tensor(2, 5, 2, 2)
    top = [empty(), empty()]
    layer = layerwise.Slice(slice_point=[3])
    layer([bottom], top)
    top[0].grad = 1
    top[1].grad = 2
    layer.backward(top, None, [bottom])
    assert np.all(bottom.grad[:, :3] == 1)
    assert np.all(bottom.grad[:, 3:] == 2)


def test_slice_points_must_increase():
    with pytest.raises(ConfigurationError):
        layerwise.Slice(slice_point=[4, 2])


def test_slice_points_out_of_range(make_tensor, empty):
    with pytest.raises(ConfigurationError):
        layerwise.Slice(slice_point=[2, 6])([make_tensor(1, 6, 1, 1)], [empty(), empty(), empty()])


def test_slice_point_count_must_match_tops(make_tensor, empty):
    with pytest.raises(ConfigurationError):
        layerwise.Slice(slice_point=[2])([make_tensor(1, 6, 1, 1)], [empty(), empty(), empty()])


def test_slice_uneven_without_points(make_tensor, empty):
    with pytest.raises(ConfigurationError):
        layerwise.Slice()([make_tensor(1, 5, 1, 1)], [empty(), empty()])


# --- Flatten ------------------------------------------------------------------


def test_flatten_shape_and_aliasing(make_tensor, empty):
    bottom = make_tensor(2, 3, 4, 5)
    top = [empty()]
    layer = layerwise.Flatten()
    layer([bottom], top)
    assert top[0].shape == (2, 60, 1, 1)
    assert top[0].shares_data_with(bottom)
    np.testing.assert_array_equal(top[0].data.ravel(), bottom.data.ravel())

    top[0].grad = np.arange(top[0].count).reshape(top[0].shape)
    layer.backward(top, None, [bottom])
    assert bottom.shares_grad_with(top[0])
    np.testing.assert_array_equal(bottom.grad.ravel(), np.arange(120))


@pytest.mark.parametrize("layer_factory, n_bottom, n_top, shapes", [
    (lambda: layerwise.Concat(concat_dim=1), 2, 1, [(2, 2, 2, 1), (2, 3, 2, 1)]),
    (lambda: layerwise.Concat(concat_dim=0), 2, 1, [(1, 2, 2, 1), (2, 2, 2, 1)]),
    (lambda: layerwise.Slice(slice_point=[1]), 1, 2, [(2, 3, 1, 2)]),
    (lambda: layerwise.Split(), 1, 3, [(2, 2, 1, 2)]),
    (lambda: layerwise.Flatten(), 1, 1, [(2, 2, 2, 2)]),
])
def test_structural_gradients(layer_factory, n_bottom, n_top, shapes, make_tensor, empty):
    bottom = [make_tensor(*s) for s in shapes]
    top = [empty() for _ in range(n_top)]
    assert check_gradient(layer_factory(), bottom, top, h=1e-4, tolerance=1e-6)
