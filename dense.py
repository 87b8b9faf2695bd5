"""
Dense: trainable affine + activation gate.

Each ``LSTM`` cell is built from five of these.  A gate keeps a trace of
every (input, output) pair it has seen since its last ``reset()`` so that
backpropagation through time can revisit any earlier step by index.

Error convention: ``backward`` receives ``target - output`` style errors and
moves weights *along* them (``W += lr * delta ⊗ x``).

Evolutionary operators (``crossover``, ``distance``) read their
hyperparameters from a ``SharedEnvironment``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from activation import Activation
from errors import DimensionMismatchError, MissingHistoryError, SubLayerError
from neat_config import SharedEnvironment

logger = logging.getLogger("evocell.dense")


class Dense:
    """Fully connected layer ``y = act(W x + b)`` with a per-step trace.

    Args:
        input_size: Length of the input vector.
        output_size: Length of the output vector.
        activation: Element-wise activation applied to ``W x + b``.
        weight_range: Weights and biases start uniform in ``[-r, r]``.
        rng: Random generator for initialisation (fresh one if None).
    """

    def __init__(
        self,
        input_size: int,
        output_size: int,
        activation: Activation = Activation.SIGMOID,
        weight_range: float = 1.0,
        rng: Optional[np.random.Generator] = None,
    ):
        if input_size <= 0 or output_size <= 0:
            raise ValueError(
                f"Dense sizes must be positive, got ({input_size}, {output_size})"
            )
        rng = rng if rng is not None else np.random.default_rng()
        self.input_size = int(input_size)
        self.output_size = int(output_size)
        self.activation = activation
        self.weights = rng.uniform(-weight_range, weight_range, (output_size, input_size))
        self.bias = rng.uniform(-weight_range, weight_range, output_size)
        self._trace_inputs: List[np.ndarray] = []
        self._trace_outputs: List[np.ndarray] = []

    # -----------------------------------------------------------------------
    # Forward / backward
    # -----------------------------------------------------------------------

    def forward(self, inputs: Sequence[float]) -> np.ndarray:
        x = np.asarray(inputs, dtype=np.float64)
        if x.shape != (self.input_size,):
            raise DimensionMismatchError("Dense input", self.input_size, x.size)
        y = self.activation.activate(self.weights @ x + self.bias)
        if not np.all(np.isfinite(y)):
            raise SubLayerError(f"{self!r} produced a non-finite output")
        self._trace_inputs.append(x.copy())
        self._trace_outputs.append(y.copy())
        return y

    def backward(
        self,
        errors: Sequence[float],
        learning_rate: float,
        index: Optional[int] = None,
    ) -> np.ndarray:
        """Propagate ``errors`` back through the step at ``index``.

        Applies the weight update in place and returns the error with respect
        to this gate's input, computed with the pre-update weights.  ``index``
        defaults to the most recent forward step.
        """
        e = np.asarray(errors, dtype=np.float64)
        if e.shape != (self.output_size,):
            raise DimensionMismatchError("Dense error", self.output_size, e.size)
        steps = len(self._trace_inputs)
        if index is None:
            index = steps - 1
        if index < 0 or index >= steps:
            raise MissingHistoryError(
                f"{self!r} has no trace for step {index} ({steps} recorded)"
            )

        x = self._trace_inputs[index]
        y = self._trace_outputs[index]
        delta = e * self.activation.deactivate(y)
        propagated = self.weights.T @ delta

        self.weights += learning_rate * np.outer(delta, x)
        self.bias += learning_rate * delta
        if not (np.all(np.isfinite(self.weights)) and np.all(np.isfinite(propagated))):
            raise SubLayerError(f"{self!r} diverged during backward at step {index}")
        return propagated

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    @property
    def trace_length(self) -> int:
        return len(self._trace_inputs)

    def reset(self) -> None:
        """Drop the forward trace; weights are untouched."""
        self._trace_inputs.clear()
        self._trace_outputs.clear()

    def truncate(self, steps: int) -> None:
        """Forget trace entries past the first ``steps``."""
        del self._trace_inputs[steps:]
        del self._trace_outputs[steps:]

    def clone(self) -> "Dense":
        """Weight-identical copy with an empty trace."""
        twin = Dense.__new__(Dense)
        twin.input_size = self.input_size
        twin.output_size = self.output_size
        twin.activation = self.activation
        twin.weights = self.weights.copy()
        twin.bias = self.bias.copy()
        twin._trace_inputs = []
        twin._trace_outputs = []
        return twin

    def __copy__(self) -> "Dense":
        return self.clone()

    def shape(self) -> Tuple[int, int]:
        return self.input_size, self.output_size

    def __repr__(self) -> str:
        return (
            f"Dense(in={self.input_size}, out={self.output_size}, "
            f"activation={self.activation.name})"
        )

    # -----------------------------------------------------------------------
    # Evolutionary operators
    # -----------------------------------------------------------------------

    @staticmethod
    def crossover(
        one: "Dense",
        two: "Dense",
        env: SharedEnvironment,
        crossover_rate: Optional[float] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> "Dense":
        """Produce a child from two parents of identical shape.

        With probability ``crossover_rate`` (the environment's
        ``evolution.crossover_rate`` when None) every weight is drawn from
        either parent at even odds; otherwise the child is parent ``one``
        with its weights mutated according to the environment.
        """
        if one.shape() != two.shape() or one.activation != two.activation:
            raise SubLayerError(f"Cannot cross {one!r} with {two!r}")
        rng = rng if rng is not None else np.random.default_rng()
        child = one.clone()

        with env.read() as cfg:
            evo = cfg.evolution
            init_range = cfg.network.weight_init_range
            rate = evo.crossover_rate if crossover_rate is None else crossover_rate

            if rng.random() < rate:
                w_mask = rng.random(child.weights.shape) < 0.5
                b_mask = rng.random(child.bias.shape) < 0.5
                child.weights = np.where(w_mask, two.weights, one.weights)
                child.bias = np.where(b_mask, two.bias, one.bias)
                return child

            if rng.random() < evo.weight_mutate_rate:
                child.weights = _mutate(child.weights, evo.edit_weights,
                                        evo.weight_perturb, init_range, rng)
                child.bias = _mutate(child.bias, evo.edit_weights,
                                     evo.weight_perturb, init_range, rng)
        return child

    @staticmethod
    def distance(one: "Dense", two: "Dense", env: SharedEnvironment) -> float:
        """Compatibility distance between two gates.

        A gene is one weight or bias.  Genes at positions both gates share
        contribute their mean absolute difference (scaled by ``c3``).  Whole
        output rows only one gate has are excess genes (scaled by ``c1``);
        extra input columns inside the shared rows are disjoint genes
        (scaled by ``c2``).  Both counts are normalised by the larger size.
        """
        rows = min(one.output_size, two.output_size)
        cols = min(one.input_size, two.input_size)
        shared = np.concatenate([
            np.abs(one.weights[:rows, :cols] - two.weights[:rows, :cols]).ravel(),
            np.abs(one.bias[:rows] - two.bias[:rows]),
        ])
        excess = 0
        disjoint = 0
        for layer in (one, two):
            excess += (layer.output_size - rows) * (layer.input_size + 1)
            disjoint += rows * (layer.input_size - cols)
        largest = max(one.weights.size + one.bias.size, two.weights.size + two.bias.size)

        with env.read() as cfg:
            evo = cfg.evolution
            result = evo.c3 * float(np.mean(shared))
            result += (evo.c1 * excess + evo.c2 * disjoint) / largest
        return result

    # -----------------------------------------------------------------------
    # Persistence
    # -----------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input_size": self.input_size,
            "output_size": self.output_size,
            "activation": self.activation.name,
            "weights": self.weights.tolist(),
            "bias": self.bias.tolist(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Dense":
        """Rebuild a gate, rejecting weights or biases of the wrong size."""
        layer = cls.__new__(cls)
        layer.input_size = int(data["input_size"])
        layer.output_size = int(data["output_size"])
        layer.activation = Activation[data["activation"]]
        weights = np.asarray(data["weights"], dtype=np.float64)
        if weights.size != layer.output_size * layer.input_size:
            raise DimensionMismatchError(
                "Dense weights", layer.output_size * layer.input_size, weights.size
            )
        layer.weights = weights.reshape(layer.output_size, layer.input_size)
        layer.bias = np.asarray(data["bias"], dtype=np.float64).ravel()
        if layer.bias.size != layer.output_size:
            raise DimensionMismatchError("Dense bias", layer.output_size, layer.bias.size)
        layer._trace_inputs = []
        layer._trace_outputs = []
        return layer


def _mutate(
    values: np.ndarray,
    edit_rate: float,
    perturb: float,
    init_range: float,
    rng: np.random.Generator,
) -> np.ndarray:
    """Replace a fraction of ``values`` outright and nudge the rest."""
    replace = rng.random(values.shape) < edit_rate
    fresh = rng.uniform(-init_range, init_range, values.shape)
    nudged = values + rng.uniform(-perturb, perturb, values.shape)
    return np.where(replace, fresh, nudged)
