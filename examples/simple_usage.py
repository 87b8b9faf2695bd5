"""Simple usage example for evocell.

Trains an LSTM cell on a short sequence with BPTT, crosses two cells, and
evaluates a small recurrent neuron graph for a few ticks.
"""

import logging
import sys
import os

import numpy as np

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from activation import Activation
from lstm import LSTM
from neat_config import SharedEnvironment, load_neat_config
from network import NeuronGraph
from neuron import NeuronKind, NodeType


def main():
    logging.basicConfig(level=logging.INFO)
    rng = np.random.default_rng(42)

    # LSTM: 2 inputs, 3 memory cells, 1 output
    cell = LSTM(2, 3, 1, rng=rng)
    sequence = [[1, 0], [0, 1], [1, 1]]
    targets = [[0.2], [0.8], [0.5]]

    print("=== BPTT on a three-step sequence ===")
    for epoch in range(5):
        cell.reset()
        outputs = [cell.forward(x) for x in sequence]
        errors = [np.asarray(t) - y for t, y in zip(targets, outputs)]
        loss = float(np.mean([e ** 2 for e in errors]))
        cell.unwind(errors, 0.1)
        print(f"epoch {epoch}: mse={loss:.4f}")

    # Evolutionary operators
    print("\n=== Crossover ===")
    env = SharedEnvironment(load_neat_config({"evolution": {"c3": 0.4}}))
    other = LSTM(2, 3, 1, rng=rng)
    child = LSTM.crossover(cell, other, env, 0.5, rng=rng)
    print(f"distance(parent, child) = {LSTM.distance(cell, child, env):.3f}")
    print(f"distance(parent, other) = {LSTM.distance(cell, other, env):.3f}")

    # Recurrent graph: input -> hidden (memory) -> output, hidden self-loop
    print("\n=== Neuron graph ===")
    g = NeuronGraph()
    g.add_neuron(0, NeuronKind.INPUT, activation=Activation.LINEAR)
    g.add_neuron(1, NeuronKind.HIDDEN, NodeType.MEMORY, Activation.TANH)
    g.add_neuron(2, NeuronKind.OUTPUT, activation=Activation.SIGMOID)
    g.add_edge(0, 0, 1, weight=0.8)
    g.add_edge(1, 1, 2, weight=1.5)
    g.add_edge(2, 1, 1, weight=0.3)
    for x in (1.0, 0.0, 0.0, 1.0):
        result = g.tick([x])
        print(f"tick {result.tick}: in={x} out={result.outputs[0]:.3f} sweeps={result.sweeps}")


if __name__ == "__main__":
    main()
