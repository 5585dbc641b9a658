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
"""Per-node lower/upper bounds shared by all bound tightening strategies."""

import enum
import threading
from collections import namedtuple
from typing import Optional, Tuple

import numpy as np

from .network import NetworkDescriptor, ShapeError


class LayerOrderError(RuntimeError):
    """A bound was requested or written out of layer order, or written twice."""


class ObjectiveSense(enum.IntEnum):
    """Direction of a bound subproblem. Values match Gurobi's ModelSense."""
    MIN = 1
    MAX = -1

    @property
    def label(self):
        return 'lower' if self is ObjectiveSense.MIN else 'upper'


class NodeState(enum.IntEnum):
    PENDING = 0
    BUILDING = 1
    SOLVING = 2
    FINALIZED = 3
    SKIPPED = 4


SETTLED_STATES = (NodeState.FINALIZED, NodeState.SKIPPED)

# A bound whose solve hit the time limit without a usable value; the prior bound was kept.
SkippedBound = namedtuple('SkippedBound', ['layer', 'node', 'sense'])


def initial_bounds(network: NetworkDescriptor, input_lower, input_upper,
                   init_bound: Optional[float] = 1e6) -> Tuple[np.ndarray, np.ndarray]:
    """
    Flattened initial bound vectors: the input box for layer 0 and [-init_bound, init_bound]
    for every other node. With init_bound=None, interval arithmetic bounds are used instead.
    """
    input_lower = np.broadcast_to(np.asarray(input_lower, dtype=np.float64), (network.input_size,))
    input_upper = np.broadcast_to(np.asarray(input_upper, dtype=np.float64), (network.input_size,))
    if init_bound is None:
        return network.interval_bounds(input_lower, input_upper)
    lower = np.full(network.total_nodes, -float(init_bound))
    upper = np.full(network.total_nodes, float(init_bound))
    lower[network.layer_slice(0)] = input_lower
    upper[network.layer_slice(0)] = input_upper
    return lower, upper


class BoundStore:
    """
    Current lower/upper bounds of every node, with a state per (node, direction).

    Bounds of a layer may only be worked on once every node of all earlier layers is
    settled (finalized or skipped), and each bound is written at most once. The lock is
    for strategies that share the store between threads; the methods themselves do
    not acquire it.
    """

    def __init__(self, network: NetworkDescriptor, lower, upper):
        lower = np.array(lower, dtype=np.float64).reshape(-1)
        upper = np.array(upper, dtype=np.float64).reshape(-1)
        if lower.shape[0] != network.total_nodes or upper.shape[0] != network.total_nodes:
            raise ShapeError(f'Bound vectors must have {network.total_nodes} entries, '
                             f'got {lower.shape[0]} and {upper.shape[0]}.')
        self.network = network
        self.lower = lower
        self.upper = upper
        # Column 0 tracks lower bounds (MIN), column 1 upper bounds (MAX).
        self.state = np.full((network.total_nodes, 2), NodeState.PENDING, dtype=np.int8)
        self.state[network.layer_slice(0)] = NodeState.FINALIZED
        self.skipped = []
        self.lock = threading.Lock()

    @staticmethod
    def _column(sense: ObjectiveSense) -> int:
        return 0 if sense == ObjectiveSense.MIN else 1

    def node_state(self, layer: int, node: int, sense: ObjectiveSense) -> NodeState:
        return NodeState(self.state[self.network.index(layer, node), self._column(sense)])

    def is_settled(self, layer: int) -> bool:
        states = self.state[self.network.layer_slice(layer)]
        return bool(np.isin(states, SETTLED_STATES).all())

    def check_ready(self, layer: int):
        """Raise LayerOrderError unless all layers before ``layer`` are settled."""
        if not 1 <= layer <= self.network.layer_count:
            raise LayerOrderError(f'Layer {layer} is not a hidden or output layer.')
        for k in range(1, layer):
            if not self.is_settled(k):
                raise LayerOrderError(f'Layer {layer} cannot be processed: bounds of layer {k} '
                                      'are not finalized yet.')

    def _transition(self, layer, node, sense, allowed, new_state):
        idx = self.network.index(layer, node)
        col = self._column(sense)
        current = NodeState(self.state[idx, col])
        if current not in allowed:
            raise LayerOrderError(f'The {sense.label} bound of layer {layer} node {node} is '
                                  f'{current.name}, expected one of {[s.name for s in allowed]}.')
        self.state[idx, col] = new_state
        return idx

    def begin(self, layer: int, node: int, sense: ObjectiveSense):
        """Mark a bound as being built. Its earlier layers must be settled."""
        self.check_ready(layer)
        self._transition(layer, node, sense, (NodeState.PENDING,), NodeState.BUILDING)

    def mark_solving(self, layer: int, node: int, sense: ObjectiveSense):
        self._transition(layer, node, sense, (NodeState.BUILDING,), NodeState.SOLVING)

    def finalize(self, layer: int, node: int, sense: ObjectiveSense, value: float):
        idx = self._transition(layer, node, sense, (NodeState.BUILDING, NodeState.SOLVING),
                               NodeState.FINALIZED)
        if sense == ObjectiveSense.MIN:
            self.lower[idx] = value
        else:
            self.upper[idx] = value

    def skip(self, layer: int, node: int, sense: ObjectiveSense):
        self._transition(layer, node, sense, (NodeState.BUILDING, NodeState.SOLVING),
                         NodeState.SKIPPED)
        self.skipped.append(SkippedBound(layer, node, sense))

    def record(self, layer: int, node: int, sense: ObjectiveSense, value: Optional[float]):
        """Finalize a bound, or keep the prior bound when the solve produced no value."""
        if value is None:
            self.skip(layer, node, sense)
        else:
            self.finalize(layer, node, sense, value)

    def bound(self, layer: int, node: int, sense: ObjectiveSense) -> float:
        idx = self.network.index(layer, node)
        return float(self.lower[idx] if sense == ObjectiveSense.MIN else self.upper[idx])

    def layer_bounds(self, layer: int) -> Tuple[np.ndarray, np.ndarray]:
        sl = self.network.layer_slice(layer)
        return self.lower[sl].copy(), self.upper[sl].copy()

    def snapshot(self) -> Tuple[np.ndarray, np.ndarray]:
        return self.lower.copy(), self.upper.copy()
