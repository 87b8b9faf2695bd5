"""
LSTM: gated recurrent memory cell with backpropagation through time.

A cell is a collection of five ``Dense`` gates and two vectors that travel
through time: ``memory`` (the cell state) and ``hidden`` (the recurrent
output fed back in with the next input).  Every forward step records the gate
outputs and the updated memory in an ``LSTMState`` ledger; backward steps
index into that ledger to recover the values each gradient needs.

Forward step (element-wise except the gate affines)::

    x      = [hidden, inputs]
    memory = memory * f(x) + g(x) * i(x)
    hidden = o(x) * tanh(memory)
    output = v(hidden)

Usage::

    cell = LSTM(input_size=2, memory_size=3, output_size=1)
    for x in sequence:
        y = cell.forward(x)
    cell.seed_backward()
    for t in reversed(range(len(sequence))):
        dx = cell.backward(errors[t], 0.01, t)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, ContextManager, Dict, List, Optional, Sequence, Tuple

import numpy as np

from activation import Activation
from checkpoint import load_state, save_state
from dense import Dense
from errors import DimensionMismatchError, MissingHistoryError, SubLayerError
from neat_config import NeatEnvironment, SharedEnvironment
from ownership import ThreadOwner

logger = logging.getLogger("evocell.lstm")


# ---------------------------------------------------------------------------
# Per-step ledger
# ---------------------------------------------------------------------------

@dataclass
class LSTMState:
    """Snapshot of every gate output and memory state, one entry per step.

    Attributes:
        index: Number of forward steps recorded.
        f_gate_output: Forget gate outputs, in step order.
        i_gate_output: Input gate outputs, in step order.
        s_gate_output: Candidate (state) gate outputs, in step order.
        o_gate_output: Output gate outputs, in step order.
        memory_states: Memory after each step's update, in step order.
        errors: Errors injected by each backward call, in call order.
        d_prev_memory: Memory derivatives handed to the next (earlier) step.
        d_prev_hidden: Hidden derivatives handed to the next (earlier) step.
    """

    index: int = 0
    f_gate_output: List[np.ndarray] = field(default_factory=list)
    i_gate_output: List[np.ndarray] = field(default_factory=list)
    s_gate_output: List[np.ndarray] = field(default_factory=list)
    o_gate_output: List[np.ndarray] = field(default_factory=list)
    memory_states: List[np.ndarray] = field(default_factory=list)
    errors: List[np.ndarray] = field(default_factory=list)
    d_prev_memory: List[np.ndarray] = field(default_factory=list)
    d_prev_hidden: List[np.ndarray] = field(default_factory=list)

    def update_forward(
        self,
        fg: np.ndarray,
        ig: np.ndarray,
        sg: np.ndarray,
        og: np.ndarray,
        mem_state: np.ndarray,
    ) -> None:
        """Add the gate outputs and memory for this time step."""
        self.f_gate_output.append(fg)
        self.i_gate_output.append(ig)
        self.s_gate_output.append(sg)
        self.o_gate_output.append(og)
        self.memory_states.append(mem_state)
        self.index += 1

    def update_backward(self, errors: np.ndarray) -> None:
        self.errors.append(errors)

    def seed(self, memory_size: int) -> None:
        """Push zero derivatives ahead of the most recent backward step."""
        self.d_prev_memory.append(np.zeros(memory_size))
        self.d_prev_hidden.append(np.zeros(memory_size))

    def at(self, step: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Return ``(f, i, s, o, memory)`` recorded at ``step``."""
        if step < 0 or step >= self.index:
            raise MissingHistoryError(
                f"No forward step {step} recorded ({self.index} available)"
            )
        return (
            self.f_gate_output[step],
            self.i_gate_output[step],
            self.s_gate_output[step],
            self.o_gate_output[step],
            self.memory_states[step],
        )

    def previous_derivatives(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return the latest ``(d_hidden, d_memory)`` pair."""
        if not self.d_prev_hidden or not self.d_prev_memory:
            raise MissingHistoryError(
                "No previous derivative seeded; call seed_backward() first"
            )
        return self.d_prev_hidden[-1], self.d_prev_memory[-1]

    def __len__(self) -> int:
        return self.index


# ---------------------------------------------------------------------------
# Gated recurrent cell
# ---------------------------------------------------------------------------

class LSTM:
    """Long short-term memory cell built from five ``Dense`` gates.

    Args:
        input_size: Length of each external input vector.
        memory_size: Length of the memory and hidden vectors.
        output_size: Length of the projected output.
        weight_range: Initial weight range for every gate.
        rng: Random generator shared by the gates' initialisation.
    """

    def __init__(
        self,
        input_size: int,
        memory_size: int,
        output_size: int,
        weight_range: float = 1.0,
        rng: Optional[np.random.Generator] = None,
    ):
        for name, size in (("input_size", input_size),
                           ("memory_size", memory_size),
                           ("output_size", output_size)):
            if int(size) <= 0:
                raise ValueError(f"{name} must be positive, got {size}")
        rng = rng if rng is not None else np.random.default_rng()
        cell_input = input_size + memory_size

        gates = (
            Dense(cell_input, memory_size, Activation.TANH, weight_range, rng),
            Dense(cell_input, memory_size, Activation.SIGMOID, weight_range, rng),
            Dense(cell_input, memory_size, Activation.SIGMOID, weight_range, rng),
            Dense(cell_input, memory_size, Activation.SIGMOID, weight_range, rng),
            Dense(memory_size, output_size, Activation.SIGMOID, weight_range, rng),
        )
        self._init_from_gates(input_size, memory_size, output_size, gates)

    def _init_from_gates(
        self,
        input_size: int,
        memory_size: int,
        output_size: int,
        gates: Tuple[Dense, Dense, Dense, Dense, Dense],
    ) -> None:
        self._input_size = int(input_size)
        self._memory_size = int(memory_size)
        self._output_size = int(output_size)
        self.g_gate, self.i_gate, self.f_gate, self.o_gate, self.v_gate = gates
        self.memory = np.zeros(self._memory_size)
        self.hidden = np.zeros(self._memory_size)
        self.states = LSTMState()
        self._owner = ThreadOwner("LSTM cell")

    @classmethod
    def _from_gates(
        cls,
        input_size: int,
        memory_size: int,
        output_size: int,
        gates: Tuple[Dense, Dense, Dense, Dense, Dense],
    ) -> "LSTM":
        cell = cls.__new__(cls)
        cell._init_from_gates(input_size, memory_size, output_size, gates)
        return cell

    @classmethod
    def from_config(
        cls,
        input_size: int,
        memory_size: int,
        output_size: int,
        config: NeatEnvironment,
    ) -> "LSTM":
        """Build a cell using ``network.weight_init_range`` and ``network.seed``.

        Two cells built from the same seeded config have identical weights.
        """
        return cls(
            input_size,
            memory_size,
            output_size,
            weight_range=config.network.weight_init_range,
            rng=config.network.make_rng(),
        )

    # Dimensions are fixed for the cell's lifetime
    @property
    def input_size(self) -> int:
        return self._input_size

    @property
    def memory_size(self) -> int:
        return self._memory_size

    @property
    def output_size(self) -> int:
        return self._output_size

    @property
    def gates(self) -> Tuple[Dense, Dense, Dense, Dense, Dense]:
        """Gates in (g, i, f, o, v) order."""
        return self.g_gate, self.i_gate, self.f_gate, self.o_gate, self.v_gate

    def shape(self) -> Tuple[int, int]:
        return self._input_size, self._output_size

    def __repr__(self) -> str:
        return (
            f"LSTM(input={self._input_size}, memory={self._memory_size}, "
            f"output={self._output_size}, steps={self.states.index})"
        )

    # -----------------------------------------------------------------------
    # Forward
    # -----------------------------------------------------------------------

    def forward(self, inputs: Sequence[float]) -> np.ndarray:
        """Run one time step and return the projected output."""
        self._owner.claim()
        x = np.asarray(inputs, dtype=np.float64)
        if x.shape != (self._input_size,):
            raise DimensionMismatchError("LSTM input", self._input_size, x.size)

        hidden_input = np.concatenate([self.hidden, x])

        try:
            f_output = self.f_gate.forward(hidden_input)
            i_output = self.i_gate.forward(hidden_input)
            o_output = self.o_gate.forward(hidden_input)
            g_output = self.g_gate.forward(hidden_input)

            # memory = memory * f + g * i, then hidden from the updated memory
            memory = self.memory * f_output + g_output * i_output
            hidden = o_output * Activation.TANH.activate(memory)
            output = self.v_gate.forward(hidden)
        except SubLayerError:
            # Keep gate traces aligned with the ledger
            for gate in self.gates:
                gate.truncate(self.states.index)
            raise

        self.memory = memory
        self.hidden = hidden
        self.states.update_forward(f_output, i_output, g_output, o_output, memory.copy())
        return output

    # -----------------------------------------------------------------------
    # Backward (BPTT)
    # -----------------------------------------------------------------------

    def seed_backward(self) -> None:
        """Push zero derivatives before unwinding a sequence."""
        self._owner.claim()
        self.states.seed(self._memory_size)

    def backward(
        self,
        errors: Sequence[float],
        learning_rate: float,
        index: int,
    ) -> np.ndarray:
        """Unwind forward step ``index`` and return the error of its input.

        Consumes the derivatives left by the previous (later) backward call,
        updates every gate's weights, and leaves new derivatives for the next
        (earlier) call.

        Raises:
            MissingHistoryError: ``index`` has no ledger entry or nothing was
                seeded.
            DimensionMismatchError: ``errors`` is not ``output_size`` long.
        """
        self._owner.claim()
        e = np.asarray(errors, dtype=np.float64)
        if e.shape != (self._output_size,):
            raise DimensionMismatchError("LSTM error", self._output_size, e.size)

        dh_next, dc_next = self.states.previous_derivatives()
        f_out, i_out, s_out, o_out, c_old = self.states.at(index)

        # dh = (error @ Wv) * dh_next
        dh = self.v_gate.backward(e, learning_rate, index) * dh_next

        # h = o * tanh(c): dho = tanh(c) * dh * do
        dho = Activation.TANH.activate(c_old) * dh
        dho = dho * self.o_gate.activation.deactivate(o_out)

        # dc = o * dh * dtanh(c) + dc_next
        dc = (o_out * dh) * Activation.TANH.deactivate(c_old)
        dc = dc + dc_next

        # c = f * c_old + i * g
        dhf = (c_old * dc) * self.f_gate.activation.deactivate(f_out)
        dhi = (s_out * dc) * self.i_gate.activation.deactivate(i_out)
        dhc = (i_out * dc) * self.g_gate.activation.deactivate(s_out)

        f_error = self.f_gate.backward(dhf, learning_rate, index)
        i_error = self.i_gate.backward(dhi, learning_rate, index)
        g_error = self.g_gate.backward(dhc, learning_rate, index)
        o_error = self.o_gate.backward(dho, learning_rate, index)

        # The concatenated input fed all four gates
        dx = f_error + i_error + g_error + o_error

        self.states.d_prev_hidden.append(dx[:self._memory_size].copy())
        self.states.d_prev_memory.append(f_out * dc)
        self.states.update_backward(e.copy())

        return dx[self._memory_size:].copy()

    def unwind(
        self,
        errors_by_step: Sequence[Sequence[float]],
        learning_rate: float,
    ) -> List[np.ndarray]:
        """Seed and backpropagate through every recorded step.

        ``errors_by_step[t]`` is the output error of forward step ``t``.
        Returns the input errors in forward-step order.
        """
        if len(errors_by_step) != self.states.index:
            raise DimensionMismatchError(
                "LSTM error sequence", self.states.index, len(errors_by_step)
            )
        self.seed_backward()
        input_errors: List[np.ndarray] = [np.empty(0)] * self.states.index
        for t in reversed(range(self.states.index)):
            input_errors[t] = self.backward(errors_by_step[t], learning_rate, t)
        logger.debug("Unwound %d steps at learning rate %s", self.states.index, learning_rate)
        return input_errors

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def reset(self) -> None:
        """Clear memory, hidden and the ledger; weights are kept."""
        self._owner.claim()
        for gate in self.gates:
            gate.reset()
        self.states = LSTMState()
        self.memory = np.zeros(self._memory_size)
        self.hidden = np.zeros(self._memory_size)

    def release(self) -> None:
        """Give up thread ownership so the cell can move to another worker."""
        self._owner.release()

    def owned(self) -> ContextManager[None]:
        """Own the cell for a ``with`` block, e.g. one executor task."""
        return self._owner.held()

    def clone(self) -> "LSTM":
        """Weight-identical cell with fresh state and no thread owner."""
        return LSTM._from_gates(
            self._input_size,
            self._memory_size,
            self._output_size,
            tuple(gate.clone() for gate in self.gates),
        )

    def __copy__(self) -> "LSTM":
        return self.clone()

    def __deepcopy__(self, memo: Dict[int, Any]) -> "LSTM":
        return self.clone()

    # -----------------------------------------------------------------------
    # Evolutionary operators
    # -----------------------------------------------------------------------

    @staticmethod
    def crossover(
        one: "LSTM",
        two: "LSTM",
        env: SharedEnvironment,
        crossover_rate: Optional[float] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> "LSTM":
        """Cross two cells gate by gate; the child starts with fresh state.

        ``crossover_rate`` defaults to the environment's
        ``evolution.crossover_rate``.
        """
        if (one.input_size, one.memory_size, one.output_size) != (
            two.input_size, two.memory_size, two.output_size
        ):
            raise SubLayerError(f"Cannot cross {one!r} with {two!r}")
        rng = rng if rng is not None else np.random.default_rng()
        gates = tuple(
            Dense.crossover(a, b, env, crossover_rate, rng)
            for a, b in zip(one.gates, two.gates)
        )
        logger.debug("Crossed %r at rate %s", one, crossover_rate)
        return LSTM._from_gates(one.input_size, one.memory_size, one.output_size, gates)

    @staticmethod
    def distance(one: "LSTM", two: "LSTM", env: SharedEnvironment) -> float:
        """Sum of the five gate-wise distances."""
        return sum(Dense.distance(a, b, env) for a, b in zip(one.gates, two.gates))

    # -----------------------------------------------------------------------
    # Persistence
    # -----------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialise sizes and weights; recurrent state is not saved."""
        return {
            "kind": "lstm",
            "input_size": self._input_size,
            "memory_size": self._memory_size,
            "output_size": self._output_size,
            "gates": {
                name: gate.to_dict()
                for name, gate in zip(("g", "i", "f", "o", "v"), self.gates)
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LSTM":
        gates = tuple(Dense.from_dict(data["gates"][name]) for name in ("g", "i", "f", "o", "v"))
        cell = cls._from_gates(
            data["input_size"], data["memory_size"], data["output_size"], gates
        )
        expected_in = cell.input_size + cell.memory_size
        for gate in gates[:4]:
            if gate.shape() != (expected_in, cell.memory_size):
                raise DimensionMismatchError("LSTM gate input", expected_in, gate.input_size)
        if gates[4].shape() != (cell.memory_size, cell.output_size):
            raise DimensionMismatchError("LSTM projection output", cell.output_size,
                                         gates[4].output_size)
        return cell

    def checkpoint(self, path: str) -> None:
        """Save weights to ``path`` (``.msgpack`` or JSON)."""
        save_state(self.to_dict(), path)

    @classmethod
    def restore(cls, path: str) -> "LSTM":
        data = load_state(path)
        if data.get("kind") != "lstm":
            raise ValueError(f"{path} does not hold an LSTM checkpoint")
        return cls.from_dict(data)
