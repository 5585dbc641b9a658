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

from relu_mip import BoundStore, LayerOrderError, NodeState, ObjectiveSense, ShapeError
from relu_mip.bound_store import SkippedBound

MIN, MAX = ObjectiveSense.MIN, ObjectiveSense.MAX


def _finish_layer(store, layer, value=0.):
    for node in range(store.network.node_count[layer]):
        for sense in (MIN, MAX):
            store.begin(layer, node, sense)
            store.mark_solving(layer, node, sense)
            store.finalize(layer, node, sense, value)


def test_input_layer_starts_finalized(deep_network, deep_bounds) -> None:
    store = BoundStore(deep_network, *deep_bounds)
    assert store.is_settled(0)
    assert not store.is_settled(1)
    assert store.node_state(1, 0, MIN) == NodeState.PENDING


def test_store_copies_bounds(small_network, small_bounds) -> None:
    lower, upper = small_bounds
    store = BoundStore(small_network, lower, upper)
    store.begin(1, 0, MIN)
    store.finalize(1, 0, MIN, 3.)
    assert lower[2] == -1000.
    assert store.lower[2] == 3.


def test_wrong_bound_length(small_network) -> None:
    with pytest.raises(ShapeError):
        BoundStore(small_network, np.zeros(5), np.zeros(6))


def test_later_layer_requires_finalized_earlier_layers(deep_network, deep_bounds) -> None:
    store = BoundStore(deep_network, *deep_bounds)
    with pytest.raises(LayerOrderError):
        store.begin(2, 0, MIN)
    _finish_layer(store, 1)
    store.begin(2, 0, MIN)
    # Layer 2 is now in progress, so layer 3 must wait.
    with pytest.raises(LayerOrderError):
        store.check_ready(3)


def test_skipped_nodes_count_as_settled(small_network, small_bounds) -> None:
    store = BoundStore(small_network, *small_bounds)
    for node in range(3):
        for sense in (MIN, MAX):
            store.begin(1, node, sense)
            store.record(1, node, sense, None)
    assert store.is_settled(1)
    store.check_ready(2)
    assert store.skipped[0] == SkippedBound(1, 0, MIN)
    assert store.lower[2:5].tolist() == [-1000.] * 3


def test_bounds_are_written_once(small_network, small_bounds) -> None:
    store = BoundStore(small_network, *small_bounds)
    store.begin(1, 1, MAX)
    store.record(1, 1, MAX, 7.)
    assert store.bound(1, 1, MAX) == 7.
    with pytest.raises(LayerOrderError):
        store.finalize(1, 1, MAX, 6.)
    with pytest.raises(LayerOrderError):
        store.begin(1, 1, MAX)
    # A bound that was never begun cannot be written.
    with pytest.raises(LayerOrderError):
        store.finalize(1, 2, MIN, 0.)


def test_layer_bounds_and_snapshot_are_copies(small_network, small_bounds) -> None:
    store = BoundStore(small_network, *small_bounds)
    lower, upper = store.layer_bounds(0)
    lower[0] = 5.
    snapshot_lower, _ = store.snapshot()
    snapshot_lower[1] = 5.
    assert store.lower[:2].tolist() == [-1., -1.]
    assert upper.tolist() == [1., 1.]
