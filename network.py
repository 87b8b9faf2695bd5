"""
NeuronGraph: arena of neurons plus an edge side table, and the walker that
evaluates it one tick at a time.

Neurons are stored by id and never point at each other; every connection is
an ``Edge`` (source id, target id, weight) in ``edges``.  That keeps cyclic
topologies free of ownership cycles and makes cloning/serialising trivial.

Tick pipeline (``NeuronGraph.tick``):
    1. Roll every neuron over (``advance_tick``)
    2. Deliver recurrent edges from their source's previous-tick value
    3. Seed input neurons and push their values downstream
    4. Sweep all neurons, firing whichever are ready and pushing
       ``value * weight`` along active forward edges
    5. Stop when a sweep fires nothing, or at ``max_sweeps``
    6. Collect output neuron values in insertion order

Usage::

    g = NeuronGraph()
    g.add_neuron(0, NeuronKind.INPUT)
    g.add_neuron(1, NeuronKind.OUTPUT, NodeType.RECURRENT)
    g.add_edge(0, 0, 1, weight=0.5)
    g.add_edge(1, 1, 1, weight=0.2)       # self-loop, fed from last tick
    y = g.feed_forward([1.0])
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, ContextManager, Dict, List, Optional, Sequence

import numpy as np

from activation import Activation
from checkpoint import load_state, save_state
from errors import DimensionMismatchError, NotSettledError
from neat_config import NeatEnvironment
from neuron import Neuron, NeuronKind, NodeType
from ownership import ThreadOwner

logger = logging.getLogger("evocell.network")


@dataclass
class Edge:
    """Weighted connection between two neurons, addressed by id.

    Attributes:
        innov: Edge id.
        src: Source neuron id.
        dst: Target neuron id.
        weight: Multiplier applied to the source value.
        active: Disabled edges neither deliver values nor gate readiness.
        recurrent: Delivers the source's previous-tick value at tick start.
    """

    innov: int
    src: int
    dst: int
    weight: float = 1.0
    active: bool = True
    recurrent: bool = False


@dataclass
class TickResult:
    """Result returned from ``NeuronGraph.tick()``.

    Attributes:
        tick: The tick this result corresponds to.
        outputs: Output neuron values in insertion order.
        fired: Neuron ids in firing order (inputs first).
        sweeps: Number of sweeps performed.
        settled: True if the final sweep fired nothing.
    """

    tick: int = 0
    outputs: np.ndarray = field(default_factory=lambda: np.zeros(0))
    fired: List[int] = field(default_factory=list)
    sweeps: int = 0
    settled: bool = True


class NeuronGraph:
    """Arena-backed network evaluated by readiness-driven sweeps.

    Args:
        config: Environment whose ``network.max_sweeps`` caps each tick.
    """

    def __init__(self, config: Optional[NeatEnvironment] = None):
        cfg = config if config is not None else NeatEnvironment()
        self.max_sweeps: int = cfg.network.max_sweeps
        self.neurons: Dict[int, Neuron] = {}
        self.edges: Dict[int, Edge] = {}
        self._input_ids: List[int] = []
        self._output_ids: List[int] = []
        self.tick_count: int = 0
        self._owner = ThreadOwner("NeuronGraph")

    def __repr__(self) -> str:
        return (
            f"NeuronGraph(neurons={len(self.neurons)}, edges={len(self.edges)}, "
            f"tick={self.tick_count})"
        )

    @property
    def input_ids(self) -> List[int]:
        return list(self._input_ids)

    @property
    def output_ids(self) -> List[int]:
        return list(self._output_ids)

    # -----------------------------------------------------------------------
    # Topology
    # -----------------------------------------------------------------------

    def add_neuron(
        self,
        innov: int,
        kind: NeuronKind = NeuronKind.HIDDEN,
        node_type: NodeType = NodeType.DENSE,
        activation: Activation = Activation.SIGMOID,
    ) -> Neuron:
        if innov in self.neurons:
            raise ValueError(f"Neuron {innov} already exists")
        neuron = Neuron(innov, kind, node_type, activation)
        self.neurons[innov] = neuron
        if kind == NeuronKind.INPUT:
            self._input_ids.append(innov)
        elif kind == NeuronKind.OUTPUT:
            self._output_ids.append(innov)
        return neuron

    def add_edge(
        self,
        innov: int,
        src: int,
        dst: int,
        weight: float = 1.0,
        recurrent: bool = False,
        active: bool = True,
    ) -> Edge:
        """Connect ``src`` to ``dst``.

        Self-loops are always recurrent.  Input neurons are seeded externally
        and cannot be the target of an edge.
        """
        if innov in self.edges:
            raise ValueError(f"Edge {innov} already exists")
        if src not in self.neurons:
            raise KeyError(f"Source neuron {src} not found")
        if dst not in self.neurons:
            raise KeyError(f"Target neuron {dst} not found")
        if self.neurons[dst].kind == NeuronKind.INPUT:
            raise ValueError(f"Input neuron {dst} cannot receive an edge")
        for other in self.edges.values():
            if other.src == src and other.dst == dst:
                raise ValueError(f"Neurons {src}->{dst} already connected by edge {other.innov}")

        edge = Edge(innov, src, dst, float(weight), active, recurrent or src == dst)
        self.edges[innov] = edge
        if active:
            self._wire(edge)
        return edge

    def _wire(self, edge: Edge) -> None:
        self.neurons[edge.src].add_outgoing(edge.innov)
        self.neurons[edge.dst].add_incoming(edge.src)

    def _unwire(self, edge: Edge) -> None:
        self.neurons[edge.src].remove_outgoing(edge.innov)
        self.neurons[edge.dst].remove_incoming(edge.src)

    def remove_edge(self, innov: int) -> None:
        edge = self.edges.pop(innov, None)
        if edge is None:
            raise KeyError(f"Edge {innov} not found")
        if edge.active:
            self._unwire(edge)

    def toggle_edge(self, innov: int, active: bool) -> None:
        """Enable or disable an edge without forgetting its weight."""
        edge = self.edges.get(innov)
        if edge is None:
            raise KeyError(f"Edge {innov} not found")
        if edge.active == active:
            return
        edge.active = active
        if active:
            self._wire(edge)
        else:
            self._unwire(edge)

    # -----------------------------------------------------------------------
    # Evaluation
    # -----------------------------------------------------------------------

    def _propagate(self, neuron: Neuron) -> None:
        for edge_id in neuron.outgoing:
            edge = self.edges[edge_id]
            if edge.recurrent:
                continue
            self.neurons[edge.dst].receive(neuron.innov, neuron.curr_value * edge.weight)

    def tick(self, inputs: Sequence[float]) -> TickResult:
        """Evaluate one tick of the network for ``inputs``.

        Raises:
            DimensionMismatchError: wrong number of inputs.
            NotSettledError: an output neuron had not fired when the walk
                stopped (sweep cap hit, or a non-recurrent cycle).
        """
        self._owner.claim()
        values = np.asarray(inputs, dtype=np.float64).ravel()
        if values.size != len(self._input_ids):
            raise DimensionMismatchError("NeuronGraph input", len(self._input_ids), values.size)

        self.tick_count += 1
        result = TickResult(tick=self.tick_count)

        # 1. Roll over
        for neuron in self.neurons.values():
            neuron.advance_tick()

        # 2. Recurrent edges carry last tick's values
        for edge in self.edges.values():
            if edge.active and edge.recurrent:
                prev = self.neurons[edge.src].prev_value
                self.neurons[edge.dst].receive(edge.src, (prev or 0.0) * edge.weight)

        # 3. Seed inputs
        for nid, value in zip(self._input_ids, values):
            neuron = self.neurons[nid]
            neuron.seed(value)
            result.fired.append(nid)
            self._propagate(neuron)

        # 4-5. Sweep until a fixed point or the cap
        changed = True
        while changed and result.sweeps < self.max_sweeps:
            result.sweeps += 1
            changed = False
            for nid, neuron in self.neurons.items():
                if neuron.probe_and_fire():
                    result.fired.append(nid)
                    self._propagate(neuron)
                    changed = True
        result.settled = not changed

        # 6. Outputs
        missing = [nid for nid in self._output_ids if not self.neurons[nid].has_fired]
        if missing:
            logger.warning(
                "Tick %d stopped after %d sweeps with outputs %s unfired",
                self.tick_count, result.sweeps, missing,
            )
            raise NotSettledError(
                f"Outputs {missing} did not fire within {result.sweeps} sweeps"
            )
        result.outputs = np.array(
            [self.neurons[nid].curr_value for nid in self._output_ids], dtype=np.float64
        )
        return result

    def feed_forward(self, inputs: Sequence[float]) -> np.ndarray:
        return self.tick(inputs).outputs

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def reset(self) -> None:
        """Forget every neuron value and recurrent state."""
        self._owner.claim()
        for neuron in self.neurons.values():
            neuron.reset()
        self.tick_count = 0

    def release(self) -> None:
        self._owner.release()

    def owned(self) -> ContextManager[None]:
        """Own the graph for a ``with`` block, e.g. one executor task."""
        return self._owner.held()

    def clone(self) -> "NeuronGraph":
        twin = NeuronGraph.__new__(NeuronGraph)
        twin.max_sweeps = self.max_sweeps
        twin.neurons = {nid: n.clone() for nid, n in self.neurons.items()}
        twin.edges = {
            eid: Edge(e.innov, e.src, e.dst, e.weight, e.active, e.recurrent)
            for eid, e in self.edges.items()
        }
        twin._input_ids = list(self._input_ids)
        twin._output_ids = list(self._output_ids)
        twin.tick_count = 0
        twin._owner = ThreadOwner("NeuronGraph")
        return twin

    # -----------------------------------------------------------------------
    # Persistence
    # -----------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "neuron_graph",
            "max_sweeps": self.max_sweeps,
            "neurons": [
                {
                    "innov": n.innov,
                    "kind": n.kind.name,
                    "node_type": n.node_type.name,
                    "activation": n.activation.name,
                }
                for n in self.neurons.values()
            ],
            "edges": [
                {
                    "innov": e.innov,
                    "src": e.src,
                    "dst": e.dst,
                    "weight": e.weight,
                    "active": e.active,
                    "recurrent": e.recurrent,
                }
                for e in self.edges.values()
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NeuronGraph":
        graph = cls()
        graph.max_sweeps = int(data.get("max_sweeps", graph.max_sweeps))
        for nd in data.get("neurons", []):
            graph.add_neuron(
                nd["innov"],
                NeuronKind[nd["kind"]],
                NodeType[nd.get("node_type", "DENSE")],
                Activation[nd.get("activation", "SIGMOID")],
            )
        for ed in data.get("edges", []):
            graph.add_edge(
                ed["innov"], ed["src"], ed["dst"],
                weight=ed.get("weight", 1.0),
                recurrent=ed.get("recurrent", False),
                active=ed.get("active", True),
            )
        return graph

    def checkpoint(self, path: str) -> None:
        save_state(self.to_dict(), path)

    @classmethod
    def restore(cls, path: str) -> "NeuronGraph":
        data = load_state(path)
        if data.get("kind") != "neuron_graph":
            raise ValueError(f"{path} does not hold a NeuronGraph checkpoint")
        return cls.from_dict(data)
