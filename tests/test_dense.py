"""Tests for the Dense gate: forward/backward math, traces, crossover and distance."""

import sys
import os

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from activation import Activation
from dense import Dense
from errors import DimensionMismatchError, MissingHistoryError, SubLayerError
from neat_config import SharedEnvironment, load_neat_config


def make_dense(i=3, o=2, activation=Activation.SIGMOID, seed=0):
    return Dense(i, o, activation, rng=np.random.default_rng(seed))


class TestForward:

    def test_affine_then_activation(self):
        d = make_dense(activation=Activation.TANH)
        x = np.array([0.2, -0.4, 1.0])
        np.testing.assert_allclose(d.forward(x), np.tanh(d.weights @ x + d.bias))

    def test_wrong_length(self):
        d = make_dense()
        with pytest.raises(DimensionMismatchError):
            d.forward([1.0, 2.0])

    def test_trace_recorded(self):
        d = make_dense()
        d.forward([1, 2, 3])
        d.forward([3, 2, 1])
        assert d.trace_length == 2

    def test_non_finite_output(self):
        d = make_dense(activation=Activation.LINEAR)
        with pytest.raises(SubLayerError):
            d.forward([np.inf, 0.0, 0.0])
        assert d.trace_length == 0


class TestBackward:

    def test_returns_input_error_with_old_weights(self):
        d = make_dense(activation=Activation.LINEAR)
        d.forward([1.0, 0.0, -1.0])
        w_before = d.weights.copy()
        err = np.array([0.5, -0.25])
        propagated = d.backward(err, 0.1)
        np.testing.assert_allclose(propagated, w_before.T @ err)

    def test_weight_update(self):
        d = make_dense(activation=Activation.LINEAR)
        x = np.array([1.0, 2.0, 0.0])
        d.forward(x)
        w_before, b_before = d.weights.copy(), d.bias.copy()
        err = np.array([1.0, -1.0])
        d.backward(err, 0.5)
        np.testing.assert_allclose(d.weights, w_before + 0.5 * np.outer(err, x))
        np.testing.assert_allclose(d.bias, b_before + 0.5 * err)

    def test_backward_at_earlier_step(self):
        d = make_dense(activation=Activation.LINEAR)
        first = np.array([1.0, 0.0, 0.0])
        d.forward(first)
        d.forward([0.0, 1.0, 0.0])
        w_before = d.weights.copy()
        d.backward([1.0, 1.0], 1.0, index=0)
        # Only the column driven by the first input moved
        delta = d.weights - w_before
        np.testing.assert_allclose(delta[:, 1:], 0.0)
        np.testing.assert_allclose(delta[:, 0], [1.0, 1.0])

    def test_without_trace(self):
        d = make_dense()
        with pytest.raises(MissingHistoryError):
            d.backward([0.1, 0.1], 0.1)

    def test_index_out_of_range(self):
        d = make_dense()
        d.forward([1, 1, 1])
        with pytest.raises(MissingHistoryError):
            d.backward([0.1, 0.1], 0.1, index=1)

    def test_error_length(self):
        d = make_dense()
        d.forward([1, 1, 1])
        with pytest.raises(DimensionMismatchError):
            d.backward([0.1], 0.1)


class TestLifecycle:

    def test_reset_clears_trace_only(self):
        d = make_dense()
        w = d.weights.copy()
        d.forward([1, 1, 1])
        d.reset()
        assert d.trace_length == 0
        np.testing.assert_array_equal(d.weights, w)

    def test_truncate(self):
        d = make_dense()
        for _ in range(4):
            d.forward([1, 1, 1])
        d.truncate(1)
        assert d.trace_length == 1

    def test_clone_independent(self):
        d = make_dense()
        d.forward([1, 1, 1])
        twin = d.clone()
        assert twin.trace_length == 0
        twin.weights[0, 0] += 1.0
        assert d.weights[0, 0] != twin.weights[0, 0]

    def test_dict_round_trip(self):
        d = make_dense(4, 3, Activation.TANH)
        restored = Dense.from_dict(d.to_dict())
        assert restored.activation is Activation.TANH
        np.testing.assert_array_equal(restored.weights, d.weights)
        np.testing.assert_array_equal(restored.bias, d.bias)

    def test_from_dict_rejects_short_bias(self):
        data = make_dense(3, 2).to_dict()
        data["bias"] = data["bias"][:1]
        with pytest.raises(DimensionMismatchError):
            Dense.from_dict(data)

    def test_from_dict_rejects_wrong_weight_count(self):
        data = make_dense(3, 2).to_dict()
        data["weights"] = [[0.0, 0.0, 0.0]]
        with pytest.raises(DimensionMismatchError):
            Dense.from_dict(data)


class TestCrossover:

    def test_mixes_parent_genes(self):
        a, b = make_dense(seed=1), make_dense(seed=2)
        child = Dense.crossover(a, b, SharedEnvironment(), 1.0, rng=np.random.default_rng(3))
        from_a = child.weights == a.weights
        from_b = child.weights == b.weights
        assert (from_a | from_b).all()

    def test_mutation_only_edits(self):
        env = SharedEnvironment(load_neat_config({
            "evolution": {"weight_mutate_rate": 1.0, "edit_weights": 0.0, "weight_perturb": 0.1},
        }))
        a, b = make_dense(seed=1), make_dense(seed=2)
        child = Dense.crossover(a, b, env, 0.0, rng=np.random.default_rng(3))
        diff = np.abs(child.weights - a.weights)
        assert diff.max() <= 0.1
        assert diff.max() > 0.0

    def test_shape_mismatch(self):
        with pytest.raises(SubLayerError):
            Dense.crossover(make_dense(3, 2), make_dense(3, 3), SharedEnvironment(), 0.5)

    def test_activation_mismatch(self):
        a = make_dense(activation=Activation.TANH)
        b = make_dense(activation=Activation.SIGMOID)
        with pytest.raises(SubLayerError):
            Dense.crossover(a, b, SharedEnvironment(), 0.5)

    def test_rate_defaults_to_environment(self):
        env = SharedEnvironment(load_neat_config({
            "evolution": {"crossover_rate": 0.0, "weight_mutate_rate": 0.0},
        }))
        a, b = make_dense(seed=1), make_dense(seed=2)
        child = Dense.crossover(a, b, env, rng=np.random.default_rng(3))
        np.testing.assert_array_equal(child.weights, a.weights)
        np.testing.assert_array_equal(child.bias, a.bias)
        mixed = Dense.crossover(a, b, env, 1.0, rng=np.random.default_rng(3))
        assert ((mixed.bias == a.bias) | (mixed.bias == b.bias)).all()


class TestDistance:

    def test_identical_is_zero(self):
        d = make_dense()
        assert Dense.distance(d, d.clone(), SharedEnvironment()) == 0.0

    def test_scaled_by_c3(self):
        a = make_dense()
        b = a.clone()
        b.weights += 1.0
        b.bias += 1.0
        env = SharedEnvironment(load_neat_config({"evolution": {"c3": 0.5}}))
        assert Dense.distance(a, b, env) == pytest.approx(0.5)

    def test_extra_rows_count_as_excess(self):
        a = make_dense(3, 2)
        b = Dense.from_dict({**a.to_dict(), "output_size": 3,
                             "weights": np.vstack([a.weights, np.zeros(3)]).tolist(),
                             "bias": np.append(a.bias, 0.0).tolist()})
        env = SharedEnvironment(load_neat_config({"evolution": {"c1": 2.0, "c2": 5.0}}))
        # one extra row: 3 weights + 1 bias excess out of 12 genes
        assert Dense.distance(a, b, env) == pytest.approx(2.0 * 4 / 12)

    def test_extra_columns_count_as_disjoint(self):
        a = make_dense(3, 2)
        b = Dense.from_dict({**a.to_dict(), "input_size": 4,
                             "weights": np.hstack([a.weights, np.zeros((2, 1))]).tolist()})
        env = SharedEnvironment(load_neat_config({"evolution": {"c1": 5.0, "c2": 0.5}}))
        # one extra column in each of 2 shared rows, out of 10 genes
        assert Dense.distance(a, b, env) == pytest.approx(0.5 * 2 / 10)
