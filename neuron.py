"""
Neuron: a single evaluable vertex of an evolvable, possibly cyclic network.

A neuron does not hold references to other neurons.  It knows the ids of
the edges it feeds (``outgoing``) and keeps one slot per source neuron it
expects a value from (``incoming``).  Each network tick it waits until every
slot is filled, fires once, and is then rolled over by ``advance_tick``.

Per-tick state machine::

    waiting --(all incoming set)--> fired --(advance_tick)--> waiting

Node types are a tagged enum; ``NodeType.activate`` is the single place
where a type decides how incoming values, the previous tick's value and the
carried cell state combine.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np

from activation import Activation


class NeuronKind(Enum):
    """Position of a neuron in the network (input, hidden or output)."""
    INPUT = auto()
    HIDDEN = auto()
    OUTPUT = auto()


class NodeType(Enum):
    """How a neuron combines its inputs.

    DENSE:      act(sum of incoming)
    RECURRENT:  act(sum of incoming + previous tick's value)
    MEMORY:     gated scalar memory cell carried across ticks
    """
    DENSE = auto()
    RECURRENT = auto()
    MEMORY = auto()

    @property
    def carries_memory(self) -> bool:
        return self is NodeType.MEMORY

    def activate(
        self,
        incoming: Mapping[int, Optional[float]],
        activation: Activation,
        prev_value: Optional[float],
        cell_state: Optional[float],
    ) -> Tuple[Optional[float], float]:
        """Return ``(new_cell_state, new_value)``."""
        total = float(sum(v for v in incoming.values() if v is not None))

        if self is NodeType.DENSE:
            return None, activation.activate_scalar(total)

        if self is NodeType.RECURRENT:
            total += prev_value if prev_value is not None else 0.0
            return None, activation.activate_scalar(total)

        # MEMORY: blend a tanh candidate into the carried state
        gate = Activation.SIGMOID.activate_scalar(total)
        previous = cell_state if cell_state is not None else 0.0
        state = gate * float(np.tanh(total)) + (1.0 - gate) * previous
        return state, activation.activate_scalar(state)


class Neuron:
    """Graph node with readiness-driven activation.

    Attributes:
        innov: Stable id edges use to address this neuron.
        curr_value: Value produced this tick (None until fired).
        prev_value: Value produced last tick; feeds recurrent connections.
        cell_state: Auxiliary state of MEMORY neurons.
        kind: INPUT, HIDDEN or OUTPUT.
        node_type: Combination rule (see ``NodeType``).
        activation: Activation applied by the combination rule.
        outgoing: Ids of the edges this neuron is the source of.
        incoming: Source neuron id -> value received this tick.
    """

    def __init__(
        self,
        innov: int,
        kind: NeuronKind = NeuronKind.HIDDEN,
        node_type: NodeType = NodeType.DENSE,
        activation: Activation = Activation.SIGMOID,
    ):
        self.innov = innov
        self.curr_value: Optional[float] = None
        self.prev_value: Optional[float] = None
        self.cell_state: Optional[float] = None
        self.kind = kind
        self.node_type = node_type
        self.activation = activation
        self.outgoing: List[int] = []
        self.incoming: Dict[int, Optional[float]] = {}

    def __repr__(self) -> str:
        return (
            f"Neuron(innov={self.innov}, kind={self.kind.name}, "
            f"type={self.node_type.name}, value={self.curr_value})"
        )

    # -----------------------------------------------------------------------
    # Activation protocol
    # -----------------------------------------------------------------------

    @property
    def has_fired(self) -> bool:
        return self.curr_value is not None

    def is_ready(self) -> bool:
        """True when every incoming slot is filled (and there is at least one)."""
        return bool(self.incoming) and all(v is not None for v in self.incoming.values())

    def probe_and_fire(self) -> bool:
        """Fire if ready and not yet fired this tick.

        Returns False without touching any state while waiting on upstream
        neurons, and also after the neuron has already fired this tick.
        """
        if self.has_fired or not self.is_ready():
            return False
        self.cell_state, self.curr_value = self.node_type.activate(
            self.incoming, self.activation, self.prev_value, self.cell_state
        )
        return True

    def advance_tick(self) -> None:
        """Roll the current value into ``prev_value`` and clear every slot."""
        self.prev_value = self.curr_value
        self.curr_value = None
        if not self.node_type.carries_memory:
            self.cell_state = None
        for src in self.incoming:
            self.incoming[src] = None

    def seed(self, value: float) -> None:
        """Set the value of an input neuron for this tick."""
        self.curr_value = float(value)

    def reset(self) -> None:
        """Forget every value, including recurrent history."""
        self.curr_value = None
        self.prev_value = None
        self.cell_state = None
        for src in self.incoming:
            self.incoming[src] = None

    # -----------------------------------------------------------------------
    # Wiring
    # -----------------------------------------------------------------------

    def add_incoming(self, src: int) -> None:
        self.incoming.setdefault(src, None)

    def remove_incoming(self, src: int) -> None:
        self.incoming.pop(src, None)

    def receive(self, src: int, value: float) -> None:
        """Fill the slot for ``src``."""
        if src not in self.incoming:
            raise KeyError(f"Neuron {self.innov} does not expect input from {src}")
        self.incoming[src] = float(value)

    def add_outgoing(self, edge_innov: int) -> None:
        if edge_innov not in self.outgoing:
            self.outgoing.append(edge_innov)

    def remove_outgoing(self, edge_innov: int) -> None:
        if edge_innov in self.outgoing:
            self.outgoing.remove(edge_innov)

    def clone(self) -> "Neuron":
        """Copy of the wiring with every value cleared."""
        twin = Neuron(self.innov, self.kind, self.node_type, self.activation)
        twin.outgoing = list(self.outgoing)
        twin.incoming = {src: None for src in self.incoming}
        return twin
