"""
Activation functions shared by gates and graph neurons.

``activate`` maps a pre-activation to its output; ``deactivate`` returns the
derivative of the function expressed in terms of the *activated* output,
which is what every backward pass in this package has on hand.

Usage::

    from activation import Activation

    y = Activation.SIGMOID.activate(np.array([0.0, 1.0]))
    dy = Activation.SIGMOID.deactivate(y)
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Union

import numpy as np

ArrayLike = Union[float, np.ndarray]

# Clip range for exp() so large pre-activations never overflow
_EXP_CLIP = 500.0


class Activation(Enum):
    """Element-wise activation function."""
    SIGMOID = auto()
    TANH = auto()
    RELU = auto()
    LEAKY_RELU = auto()
    LINEAR = auto()

    def activate(self, x: ArrayLike) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        if self is Activation.SIGMOID:
            return 1.0 / (1.0 + np.exp(-np.clip(x, -_EXP_CLIP, _EXP_CLIP)))
        if self is Activation.TANH:
            return np.tanh(x)
        if self is Activation.RELU:
            return np.maximum(x, 0.0)
        if self is Activation.LEAKY_RELU:
            return np.where(x > 0.0, x, 0.01 * x)
        return x.copy()

    def deactivate(self, y: ArrayLike) -> np.ndarray:
        """Derivative evaluated at the activated output ``y``."""
        y = np.asarray(y, dtype=np.float64)
        if self is Activation.SIGMOID:
            return y * (1.0 - y)
        if self is Activation.TANH:
            return 1.0 - y ** 2
        if self is Activation.RELU:
            return (y > 0.0).astype(np.float64)
        if self is Activation.LEAKY_RELU:
            return np.where(y > 0.0, 1.0, 0.01)
        return np.ones_like(y)

    def activate_scalar(self, x: float) -> float:
        return float(self.activate(x))
