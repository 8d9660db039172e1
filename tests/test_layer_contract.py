"""Layer contract tests: multiplicity, lifecycle and the layer factory.

Tests cover:
    - Bottom/top count violations are configuration errors
    - forward/backward before setup are state errors
    - create_layer accepts enum members, values and names
    - get_config round-trips through create_layer
"""

import numpy as np
import pytest

import layerwise
from layerwise.core.errors import ConfigurationError, LayerStateError
from layerwise.core.layers import LayerState, LayerType, create_layer, registered_layer_types
from layerwise.core.tensor import Tensor


# --- Multiplicity -------------------------------------------------------------


@pytest.mark.parametrize("layer, n_bottom, n_top", [
    (layerwise.Concat(), 1, 1),
    (layerwise.Concat(), 2, 2),
    (layerwise.Eltwise(), 1, 1),
    (layerwise.Softmax(), 2, 1),
    (layerwise.Split(), 1, 0),
    (layerwise.Slice(), 1, 1),
    (layerwise.Filter(), 2, 2),
    (layerwise.Filter(), 3, 1),
    (layerwise.Silence(), 0, 0),
    (layerwise.Silence(), 1, 1),
    (layerwise.ArgMax(), 1, 2),
    (layerwise.InnerProduct(num_output=2), 2, 1),
])
def test_multiplicity_violation_is_configuration_error(layer, n_bottom, n_top):
    bottom = [Tensor((2, 2, 1, 1)) for _ in range(n_bottom)]
    top = [Tensor() for _ in range(n_top)]
    with pytest.raises(ConfigurationError):
        layer.setup(bottom, top)


# --- Lifecycle ----------------------------------------------------------------


def test_forward_before_setup_is_state_error():
    layer = layerwise.Softmax()
    with pytest.raises(LayerStateError):
        layer.forward([Tensor((1, 3, 1, 1))], [Tensor()])


def test_reshape_before_setup_is_state_error():
    with pytest.raises(LayerStateError):
        layerwise.Softmax().reshape([Tensor((1, 3, 1, 1))], [Tensor()])


def test_setup_moves_to_shaped():
    layer = layerwise.Softmax()
    assert layer.state is LayerState.UNCONFIGURED
    bottom, top = [Tensor((1, 3, 1, 1))], [Tensor()]
    layer.setup(bottom, top)
    assert layer.state is LayerState.SHAPED
    assert top[0].shape == (1, 3, 1, 1)


def test_call_sets_up_and_runs_forward():
    layer = layerwise.Softmax()
    bottom = [Tensor((1, 2, 1, 1), data=[[0.0, 0.0]])]
    top = layer(bottom, [Tensor()])
    np.testing.assert_allclose(top[0].data.ravel(), [0.5, 0.5])


def test_propagate_down_length_checked():
    layer = layerwise.Softmax()
    bottom, top = [Tensor((1, 3, 1, 1))], [Tensor()]
    layer(bottom, top)
    with pytest.raises(ConfigurationError):
        layer.backward(top, [True, False], bottom)


# --- Factory ------------------------------------------------------------------


def test_every_layer_type_is_registered():
    assert set(registered_layer_types()) == set(LayerType)


@pytest.mark.parametrize("name", ["Concat", "CONCAT", "concat", LayerType.CONCAT])
def test_create_layer_accepts_names(name):
    assert isinstance(create_layer(name, concat_dim=0), layerwise.Concat)


def test_create_layer_unknown_type():
    with pytest.raises(ConfigurationError):
        create_layer("Convolution")


def test_inner_product_type_parses_with_underscore():
    layer = create_layer("INNER_PRODUCT", num_output=3)
    assert isinstance(layer, layerwise.InnerProduct)


@pytest.mark.parametrize("layer", [
    layerwise.Concat(concat_dim=0, name="cat"),
    layerwise.Slice(slice_dim=1, slice_point=[2, 4]),
    layerwise.Eltwise(operation="SUM", coeff=[1.0, -1.0]),
    layerwise.Eltwise(operation="PROD", stable_prod_grad=True),
    layerwise.MVN(normalize_variance=False, across_channels=True),
    layerwise.ArgMax(top_k=3, out_max_val=True),
    layerwise.InnerProduct(num_output=4, bias_term=False),
    layerwise.Filter(conditional_index=2, pass_on="different", output="indices"),
    layerwise.Flatten(),
    layerwise.Split(),
    layerwise.Silence(),
    layerwise.Softmax(),
])
def test_get_config_round_trips(layer):
    config = layer.get_config()
    rebuilt = create_layer(**config)
    assert type(rebuilt) is type(layer)
    assert rebuilt.get_config() == config
