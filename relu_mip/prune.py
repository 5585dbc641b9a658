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
"""
Pruning of ReLU networks using tightened pre-activation bounds.

Neurons of a hidden layer are removed when they are always inactive (negative upper
bound), when their output is constant (zero incoming weights), or, optionally, when
they are stably active and their pre-activation is a linear combination of other
stably active neurons. The contribution of removed neurons is folded into the next
layer, so the network function is unchanged on the input domain the bounds were
computed for.
"""

import logging
from collections import namedtuple
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
from termcolor import colored

from . import arguments
from .network import NetworkDescriptor

PRUNE_REASONS = ('upper_bound', 'zero_weight', 'linear_dependence')

# Outputs of the pruned network deviate from the original by more than the tolerance.
PruningInconsistency = namedtuple('PruningInconsistency', ['max_deviation', 'tolerance'])


@dataclass
class PruneReport:
    counts: Dict[str, int]
    per_layer: List[Dict[str, int]]
    max_deviation: float
    tolerance: float
    inconsistency: Optional[PruningInconsistency] = None
    kept: List[np.ndarray] = field(default_factory=list)
    parameters_total: int = 0
    parameters_pruned: int = 0

    @property
    def is_close(self) -> bool:
        return self.inconsistency is None

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def parameter_fraction(self) -> float:
        """Share of the original weights and biases that were removed."""
        if self.parameters_total == 0:
            return 0.
        return self.parameters_pruned / self.parameters_total


def _keep_all_but(n, to_prune):
    return np.setdiff1d(np.arange(n), to_prune)


def prune_by_upper_bound(w1, b1, w2, b2, upper):
    """Remove neurons whose pre-activation upper bound is negative; their output is always 0."""
    to_prune = np.flatnonzero(np.asarray(upper) < 0)
    keep = _keep_all_but(len(b1), to_prune)
    return w1[keep], b1[keep], w2[:, keep], b2, keep


def prune_zero_weights(w1, b1, w2, b2, threshold=1e-5):
    """Remove neurons with (near-)zero incoming weights, folding their constant output into b2."""
    to_prune = np.flatnonzero(np.all(np.abs(w1) <= threshold, axis=1))
    b2 = b2 + w2[:, to_prune] @ np.maximum(b1[to_prune], 0.)
    keep = _keep_all_but(len(b1), to_prune)
    return w1[keep], b1[keep], w2[:, keep], b2, keep


def prune_linear_dependence(w1, b1, w2, b2, lower, stable_threshold=1e-5):
    """
    Remove stably active neurons whose weight row depends linearly on other stably active ones.

    Stably active neurons (lower bound above ``stable_threshold``) act linearly, so for
    W1[i] = sum_s alpha_s W1[s] the output of neuron i equals
    sum_s alpha_s relu_s + b1[i] - alpha . b1[S], which is folded into W2 and b2.
    """
    w2 = w2.copy()
    b2 = b2.copy()
    basis: List[int] = []
    removed = []
    for i in reversed(range(len(b1))):
        if lower[i] <= stable_threshold:
            continue
        if np.linalg.matrix_rank(w1[[i] + basis]) > len(basis):
            basis.append(i)
            continue
        if basis:
            alpha = np.linalg.lstsq(w1[basis].T, w1[i], rcond=None)[0]
        else:
            # Zero row: the neuron outputs its bias.
            alpha = np.zeros(0)
        w2[:, basis] += np.outer(w2[:, i], alpha)
        b2 += w2[:, i] * (b1[i] - alpha @ b1[basis])
        removed.append(i)
    keep = _keep_all_but(len(b1), removed)
    return w1[keep], b1[keep], w2[:, keep], b2, keep


def prune_layer(w1, b1, w2, b2, lower, upper, upper_bound=True, zero_weight=True,
                linear_dependence=False, zero_weight_threshold=1e-5,
                stable_threshold=1e-5) -> Tuple[tuple, np.ndarray, Dict[str, int]]:
    """
    Prune the neurons between two consecutive weight layers.

    ``lower`` and ``upper`` are the pre-activation bounds of the neurons produced by
    (w1, b1). Returns the new (w1, b1, w2, b2), the indices of the kept neurons, and
    the number of neurons pruned for each reason.
    """
    w1, b1, w2, b2 = (np.array(a, dtype=np.float64) for a in (w1, b1, w2, b2))
    lower = np.asarray(lower, dtype=np.float64)
    upper = np.asarray(upper, dtype=np.float64)
    kept = np.arange(len(b1))
    counts = dict.fromkeys(PRUNE_REASONS, 0)

    steps = []
    if upper_bound:
        steps.append(('upper_bound', lambda w1, b1, w2, b2, lo, up: prune_by_upper_bound(w1, b1, w2, b2, up)))
    if zero_weight:
        steps.append(('zero_weight', lambda w1, b1, w2, b2, lo, up: prune_zero_weights(
            w1, b1, w2, b2, threshold=zero_weight_threshold)))
    if linear_dependence:
        steps.append(('linear_dependence', lambda w1, b1, w2, b2, lo, up: prune_linear_dependence(
            w1, b1, w2, b2, lo, stable_threshold=stable_threshold)))

    for reason, step in steps:
        n_before = len(b1)
        w1, b1, w2, b2, keep = step(w1, b1, w2, b2, lower[kept], upper[kept])
        kept = kept[keep]
        counts[reason] = n_before - len(b1)
    return (w1, b1, w2, b2), kept, counts


def prune_network(network: NetworkDescriptor, lower, upper, upper_bound=None, zero_weight=None,
                  linear_dependence=None, zero_weight_threshold=None, stable_threshold=None,
                  tolerance=None, num_samples=None, seed=None):
    """
    Prune every hidden layer of ``network`` using flattened pre-activation bounds.

    The pruned network is compared with the original on ``num_samples`` uniform random
    inputs from the input box (layer 0 bounds) and on the box center. A deviation above
    ``tolerance`` is reported in the returned PruneReport and logged, but not raised.
    Returns (pruned network, pruned lower bounds, pruned upper bounds, report).
    """
    arguments.ensure_config_defaults()
    config = arguments.Config['prune']
    upper_bound = config['upper_bound'] if upper_bound is None else upper_bound
    zero_weight = config['zero_weight'] if zero_weight is None else zero_weight
    linear_dependence = config['linear_dependence'] if linear_dependence is None else linear_dependence
    zero_weight_threshold = config['zero_weight_threshold'] if zero_weight_threshold is None else zero_weight_threshold
    stable_threshold = config['stable_threshold'] if stable_threshold is None else stable_threshold
    tolerance = config['tolerance'] if tolerance is None else tolerance
    num_samples = config['num_samples'] if num_samples is None else num_samples
    seed = arguments.Config['general']['seed'] if seed is None else seed

    lower = np.asarray(lower, dtype=np.float64)
    upper = np.asarray(upper, dtype=np.float64)
    weights = [w.copy() for w in network.weights]
    biases = [b.copy() for b in network.biases]
    new_lower = [lower[network.layer_slice(0)]]
    new_upper = [upper[network.layer_slice(0)]]
    per_layer, kept_per_layer = [], []

    for k in range(1, network.layer_count):
        sl = network.layer_slice(k)
        (weights[k - 1], biases[k - 1], weights[k], biases[k]), kept, counts = prune_layer(
            weights[k - 1], biases[k - 1], weights[k], biases[k], lower[sl], upper[sl],
            upper_bound=upper_bound, zero_weight=zero_weight, linear_dependence=linear_dependence,
            zero_weight_threshold=zero_weight_threshold, stable_threshold=stable_threshold)
        new_lower.append(lower[sl][kept])
        new_upper.append(upper[sl][kept])
        per_layer.append(counts)
        kept_per_layer.append(kept)
        print(colored(f'Layer {k}: pruned {counts["upper_bound"]} by upper bound, '
                      f'{counts["zero_weight"]} by zero weights, '
                      f'{counts["linear_dependence"]} by linear dependence, '
                      f'{len(kept)} of {network.node_count[k]} neurons kept.', 'cyan'))
    sl = network.layer_slice(network.layer_count)
    new_lower.append(lower[sl])
    new_upper.append(upper[sl])

    for p in weights + biases:
        p[np.abs(p) < 1e-7] = 0.
    pruned = NetworkDescriptor(weights, biases)

    rng = np.random.default_rng(seed)
    input_lower, input_upper = new_lower[0], new_upper[0]
    samples = rng.uniform(input_lower, input_upper, size=(num_samples, network.input_size))
    samples = np.vstack([samples, (input_lower + input_upper) / 2])
    max_deviation = float(np.max(np.abs(network.forward(samples) - pruned.forward(samples))))

    inconsistency = None
    if not max_deviation < tolerance:
        inconsistency = PruningInconsistency(max_deviation, tolerance)
        logging.warning(f'Pruned network deviates from the original by {max_deviation:.3g} '
                        f'(tolerance {tolerance:.3g}).')
        print(colored(f'The difference between the forward passes: {max_deviation}', 'red'))

    counts = {reason: sum(c[reason] for c in per_layer) for reason in PRUNE_REASONS}
    report = PruneReport(counts=counts, per_layer=per_layer, max_deviation=max_deviation,
                         tolerance=tolerance, inconsistency=inconsistency, kept=kept_per_layer,
                         parameters_total=network.parameter_count,
                         parameters_pruned=network.parameter_count - pruned.parameter_count)
    print(f'Pruned {report.total} neurons: {counts}, max deviation {max_deviation:.3g}.')
    print(f'Pruned {report.parameters_pruned} of {report.parameters_total} parameters '
          f'({100 * report.parameter_fraction:.3g}%).')
    return pruned, np.concatenate(new_lower), np.concatenate(new_upper), report
