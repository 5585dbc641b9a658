#########################################################################
##   This file is part of relu-mip, bound tightening and pruning       ##
##   for mixed-integer encodings of ReLU networks                      ##
##                                                                     ##
##   Copyright (C) 2021-2025 The relu-mip Team                         ##
##                                                                     ##
##     This program is licensed under the BSD 3-Clause License,        ##
##        contained in the LICENCE file in this directory.             ##
##                                                                     ##
#########################################################################
import numpy as np
import pytest

from relu_mip import NetworkDescriptor, prune_layer, prune_network
from relu_mip.prune import prune_by_upper_bound, prune_linear_dependence, prune_zero_weights

INPUT_LOWER = [-0.5, -0.5, -0.5]
INPUT_UPPER = [0.5, 0.5, 0.5]


def _bounds(network, input_lower=INPUT_LOWER, input_upper=INPUT_UPPER):
    return network.interval_bounds(input_lower, input_upper)


def _max_deviation(original, pruned, n_samples=50):
    rng = np.random.default_rng(7)
    x = rng.uniform(INPUT_LOWER, INPUT_UPPER, size=(n_samples, original.input_size))
    x = np.vstack([x, np.zeros(original.input_size)])
    return np.max(np.abs(original.forward(x) - pruned.forward(x)))


@pytest.fixture
def dependent_network():
    """Row 2 of the first weight matrix is 2 * row 0 + row 1; all neurons are stably active."""
    return NetworkDescriptor(
        weights=[[[1., 1., 0.], [2., 0., -1.], [4., 2., -1.]],
                 [[2., 1., 0.], [0., 1., 2.], [1., 0., 2.]]],
        biases=[[5., 4., 6.], [0.2, 0.3, 0.1]])


@pytest.fixture
def mixed_network():
    """Hidden neurons: 0-2 linearly dependent, 3 dead, 4 zero weights, 5 unstable."""
    w1 = [[1., 1., 0.], [2., 0., -1.], [4., 2., -1.], [1., 0., 0.], [0., 0., 0.], [1., -1., 1.]]
    b1 = [5., 4., 6., -20., 0.7, 0.]
    w2 = [[2., 1., 0., 3., 1., -1.], [0., 1., 2., 1., -2., 0.5]]
    b2 = [0.2, 0.3]
    w3 = [[1., -1.]]
    b3 = [0.5]
    return NetworkDescriptor(weights=[w1, w2, w3], biases=[b1, b2, b3])


def test_prune_by_upper_bound() -> None:
    w1, b1 = np.array([[1., 1.], [2., -1.], [1., -1.]]), np.array([5., 4., -10.])
    w2, b2 = np.array([[2., 1., 3.]]), np.array([0.2])
    new_w1, new_b1, new_w2, new_b2, keep = prune_by_upper_bound(w1, b1, w2, b2, np.array([7., 7., -8.]))
    assert keep.tolist() == [0, 1]
    assert new_w1.shape == (2, 2)
    assert new_w2.tolist() == [[2., 1.]]
    assert new_b2.tolist() == [0.2]


def test_prune_zero_weights_folds_active_bias_only() -> None:
    w1 = np.array([[1., 1.], [0., 0.], [0., 1e-7]])
    b1 = np.array([1., 0.7, -0.3])
    w2 = np.array([[2., 3., 5.]])
    b2 = np.array([0.2])
    new_w1, new_b1, new_w2, new_b2, keep = prune_zero_weights(w1, b1, w2, b2, threshold=1e-5)
    assert keep.tolist() == [0]
    assert new_b2 == pytest.approx([0.2 + 3. * 0.7])
    assert new_w2.tolist() == [[2.]]


def test_prune_linear_dependence(dependent_network) -> None:
    lower, upper = _bounds(dependent_network)
    sl = dependent_network.layer_slice(1)
    assert np.all(lower[sl] > 0)
    w1, b1 = dependent_network.weights[0], dependent_network.biases[0]
    w2, b2 = dependent_network.weights[1], dependent_network.biases[1]
    new_w1, new_b1, new_w2, new_b2, keep = prune_linear_dependence(w1, b1, w2, b2, lower[sl])
    assert keep.tolist() == [1, 2]
    pruned = NetworkDescriptor([new_w1, new_w2], [new_b1, new_b2])
    assert _max_deviation(dependent_network, pruned) < 1e-6


def test_linear_dependence_is_off_by_default(dependent_network) -> None:
    lower, upper = _bounds(dependent_network)
    pruned, _, _, report = prune_network(dependent_network, lower, upper)
    assert report.counts == {'upper_bound': 0, 'zero_weight': 0, 'linear_dependence': 0}
    assert pruned.node_count == dependent_network.node_count

    pruned, _, _, report = prune_network(dependent_network, lower, upper, linear_dependence=True)
    assert report.counts['linear_dependence'] == 1
    assert pruned.node_count == (3, 2, 3)
    assert report.is_close
    assert _max_deviation(dependent_network, pruned) < 1e-3


def test_unstable_neurons_are_not_linear_dependence_candidates() -> None:
    w1 = np.array([[1., 0.], [0., 1.], [1., 1.]])
    b1 = np.zeros(3)
    w2, b2 = np.ones((1, 3)), np.zeros(1)
    lower = np.array([-1., -1., -2.])
    *_, keep = prune_linear_dependence(w1, b1, w2, b2, lower)
    assert keep.tolist() == [0, 1, 2]


@pytest.mark.parametrize('reason', ['upper_bound', 'zero_weight', 'linear_dependence'])
def test_each_reason_alone(reason, mixed_network) -> None:
    lower, upper = _bounds(mixed_network)
    flags = {'upper_bound': False, 'zero_weight': False, 'linear_dependence': False}
    flags[reason] = True
    pruned, pruned_lower, pruned_upper, report = prune_network(mixed_network, lower, upper, **flags)
    assert report.counts[reason] >= 1
    assert sum(report.counts.values()) == report.counts[reason]
    assert report.is_close
    assert report.max_deviation < 1e-3
    assert _max_deviation(mixed_network, pruned) < 1e-3
    assert len(pruned_lower) == len(pruned_upper) == pruned.total_nodes


def test_all_reasons_combined(mixed_network) -> None:
    lower, upper = _bounds(mixed_network)
    pruned, pruned_lower, pruned_upper, report = prune_network(
        mixed_network, lower, upper, upper_bound=True, zero_weight=True, linear_dependence=True)
    assert report.counts == {'upper_bound': 1, 'zero_weight': 1, 'linear_dependence': 1}
    assert report.per_layer[1] == {'upper_bound': 0, 'zero_weight': 0, 'linear_dependence': 0}
    assert report.total == 3
    assert report.parameters_total == 41
    assert report.parameters_pruned == 18
    assert report.parameter_fraction == pytest.approx(18 / 41)
    assert pruned.node_count == (3, 3, 2, 1)
    assert report.kept[0].tolist() == [1, 2, 5]
    # Bounds of surviving neurons are carried over unchanged.
    sl = mixed_network.layer_slice(1)
    assert pruned_upper[pruned.layer_slice(1)] == pytest.approx(upper[sl][[1, 2, 5]])
    assert report.is_close
    assert _max_deviation(mixed_network, pruned) < 1e-3


def test_prune_layer_counts(mixed_network) -> None:
    lower, upper = _bounds(mixed_network)
    sl = mixed_network.layer_slice(1)
    (w1, b1, w2, b2), kept, counts = prune_layer(
        mixed_network.weights[0], mixed_network.biases[0], mixed_network.weights[1],
        mixed_network.biases[1], lower[sl], upper[sl])
    assert counts == {'upper_bound': 1, 'zero_weight': 1, 'linear_dependence': 0}
    assert kept.tolist() == [0, 1, 2, 5]
    assert w1.shape == (4, 3) and w2.shape == (2, 4)


def test_invalid_bounds_report_inconsistency(dependent_network) -> None:
    lower, upper = _bounds(dependent_network)
    upper = upper.copy()
    # Claim that an active neuron is dead.
    upper[dependent_network.index(1, 0)] = -1.
    pruned, _, _, report = prune_network(dependent_network, lower, upper, num_samples=10)
    assert not report.is_close
    assert report.inconsistency.max_deviation == report.max_deviation
    assert report.max_deviation > 1e-3
    assert pruned.node_count == (3, 2, 3)
