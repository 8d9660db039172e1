"""
Numerical gradient checking for layers.
Compares a layer's backward pass with central finite differences.
"""

import logging
import numpy as np
from typing import List, Optional, Sequence

from .layers import Layer, LayerState
from .tensor import Tensor

logger = logging.getLogger(__name__)


def _objective(layer: Layer, bottom: Sequence[Tensor], top: Sequence[Tensor],
               weights: List[np.ndarray]) -> float:
    layer.reshape(bottom, top)
    layer.forward(bottom, top)
    return float(sum(np.sum(t.data.astype(np.float64) * w) for t, w in zip(top, weights)))


def numerical_gradient(layer: Layer, bottom: Sequence[Tensor], top: Sequence[Tensor],
                       check_bottom: Optional[Sequence[int]] = None, h: float = 1e-2,
                       weights: Optional[List[np.ndarray]] = None,
                       seed: int = 1701) -> List[Optional[np.ndarray]]:
    """
    Compute numerical gradients of ``sum(top_k * weights_k)`` w.r.t. the bottoms.

    Args:
        layer: Layer under test; set up on first use
        bottom: Input tensors
        top: Output tensors
        check_bottom: Indices of bottoms to differentiate (default all)
        h: Step size for numerical differentiation
        weights: Fixed random projections of the tops (drawn if None)
        seed: Seed for the projections

    Returns:
        One gradient array per bottom (None for unchecked bottoms)
    """
    if layer.state is LayerState.UNCONFIGURED:
        layer.setup(bottom, top)
    layer.reshape(bottom, top)
    if weights is None:
        rng = np.random.default_rng(seed)
        weights = [rng.standard_normal(t.shape) for t in top]
    check_bottom = range(len(bottom)) if check_bottom is None else check_bottom

    gradients: List[Optional[np.ndarray]] = [None] * len(bottom)
    for i in check_bottom:
        data = bottom[i].data
        flat = data.reshape(-1)
        grad = np.zeros(data.shape, dtype=np.float64)
        flat_grad = grad.reshape(-1)
        for j in range(flat.size):
            original = flat[j]
            flat[j] = original + h
            f_plus = _objective(layer, bottom, top, weights)
            flat[j] = original - h
            f_minus = _objective(layer, bottom, top, weights)
            flat[j] = original
            flat_grad[j] = (f_plus - f_minus) / (2 * h)
        gradients[i] = grad
    _objective(layer, bottom, top, weights)
    return gradients


def analytic_gradient(layer: Layer, bottom: Sequence[Tensor], top: Sequence[Tensor],
                      weights: List[np.ndarray],
                      propagate_down: Optional[Sequence[bool]] = None) -> List[np.ndarray]:
    """Run forward and backward with top gradients set to ``weights``."""
    _objective(layer, bottom, top, weights)
    for t, w in zip(top, weights):
        t.grad = w
    layer.backward(top, propagate_down, bottom)
    return [b.grad.astype(np.float64) for b in bottom]


def check_gradient(layer: Layer, bottom: Sequence[Tensor], top: Sequence[Tensor],
                   check_bottom: Optional[Sequence[int]] = None, h: float = 1e-2,
                   tolerance: float = 1e-2, seed: int = 1701) -> bool:
    """
    Check analytical gradients against numerical gradients.

    The tolerance is relative to max(|analytic|, |numeric|, 1).

    Returns:
        True if gradients match within tolerance
    """
    if layer.state is LayerState.UNCONFIGURED:
        layer.setup(bottom, top)
    layer.reshape(bottom, top)
    rng = np.random.default_rng(seed)
    weights = [rng.standard_normal(t.shape) for t in top]
    check_bottom = list(range(len(bottom)) if check_bottom is None else check_bottom)
    propagate_down = [i in check_bottom for i in range(len(bottom))]

    analytic = analytic_gradient(layer, bottom, top, weights, propagate_down)
    numeric = numerical_gradient(layer, bottom, top, check_bottom, h, weights)

    for i in check_bottom:
        scale = np.maximum(np.maximum(np.abs(analytic[i]), np.abs(numeric[i])), 1.0)
        diff = np.abs(analytic[i] - numeric[i]) / scale
        max_diff = float(np.max(diff)) if diff.size else 0.0
        if max_diff > tolerance:
            logger.warning("Gradient check failed for %s bottom %d: max relative difference %g",
                           layer.name, i, max_diff)
            return False
    logger.debug("Gradient check passed for %s", layer.name)
    return True
