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
Scheduling strategies for layer-by-layer bound tightening.

Every strategy visits layers 1..K in order and solves the lower and upper bound of
each node of a layer, possibly concurrently. A layer starts only after all bounds of
the previous layer are written to the BoundStore.
"""

import logging
import multiprocessing
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed

from ..bound_store import BoundStore, ObjectiveSense
from ..network import NetworkDescriptor
from .mip_core import SolverResult, solve_bound
from .subproblem import BoundSubproblem
from .utils import gurobi_env

SENSES = (ObjectiveSense.MIN, ObjectiveSense.MAX)

# Network and solver options of a worker process, set by the pool initializer.
multiprocess_network = None
multiprocess_solver_options = None


def report_bound(layer, node, sense, result: SolverResult):
    if result.value is None:
        logging.warning(f'Time limit reached without incumbent for the {sense.label} bound of '
                        f'layer {layer} node {node}; keeping the previous bound.')
        value = 'unchanged'
    else:
        value = f'{result.value:.6g}'
    print(f'Layer {layer} node {node} {sense.label} bound: {value} '
          f'({result.status_name}, {result.solve_time:.3f}s)')


def report_layer(store: BoundStore, layer):
    lower, upper = store.layer_bounds(layer)
    print(f'Layer {layer} finished: lower bounds {lower}, upper bounds {upper}')
    sys.stdout.flush()


def bound_tightening(network: NetworkDescriptor, store: BoundStore, **solver_options):
    """Sequential strategy: a single model extended layer by layer, node constraints swapped per node."""
    with gurobi_env(solver_options.get('verbose', False)) as env:
        with BoundSubproblem(network, 1, store.lower, store.upper, env=env,
                             store=store, **solver_options) as subproblem:
            for layer in range(1, network.layer_count + 1):
                if layer > subproblem.layer:
                    subproblem.extend_to(layer, store.lower, store.upper, store=store)
                for node in range(network.node_count[layer]):
                    for sense in SENSES:
                        store.begin(layer, node, sense)
                    with subproblem.node_scope(node, store.lower, store.upper):
                        for sense in SENSES:
                            store.mark_solving(layer, node, sense)
                            result = solve_bound(subproblem, node, sense,
                                                 prior=store.bound(layer, node, sense))
                            report_bound(layer, node, sense, result)
                            store.record(layer, node, sense, result.value)
                report_layer(store, layer)


def _bt_threads_inner(network, store, layer, node, sense, solver_options):
    with store.lock:
        store.begin(layer, node, sense)
        lower, upper = store.snapshot()
    prior = float(lower[network.index(layer, node)] if sense == ObjectiveSense.MIN
                  else upper[network.index(layer, node)])
    # Gurobi environments are not thread safe, so every task starts its own.
    with gurobi_env(solver_options.get('verbose', False)) as env:
        with BoundSubproblem(network, layer, lower, upper, env=env, **solver_options) as subproblem:
            with subproblem.node_scope(node, lower, upper):
                with store.lock:
                    store.mark_solving(layer, node, sense)
                result = solve_bound(subproblem, node, sense, prior=prior)
    report_bound(layer, node, sense, result)
    with store.lock:
        store.record(layer, node, sense, result.value)
    return result


def bound_tightening_threads(network: NetworkDescriptor, store: BoundStore,
                             parallel_solvers=None, **solver_options):
    """Shared-memory strategy: one task per (node, direction) on a thread pool."""
    with ThreadPoolExecutor(max_workers=parallel_solvers) as executor:
        for layer in range(1, network.layer_count + 1):
            futures = [executor.submit(_bt_threads_inner, network, store, layer, node, sense, solver_options)
                       for node in range(network.node_count[layer]) for sense in SENSES]
            try:
                for future in as_completed(futures):
                    future.result()
            except BaseException:
                for future in futures:
                    future.cancel()
                raise
            report_layer(store, layer)


def _init_worker(network, solver_options):
    global multiprocess_network, multiprocess_solver_options
    multiprocess_network = network
    multiprocess_solver_options = solver_options


def _bt_workers_inner(layer, node, sense, lower, upper):
    """Solve one bound in a worker process. Only reads the given bounds."""
    network = multiprocess_network
    idx = network.index(layer, node)
    prior = float(lower[idx] if sense == ObjectiveSense.MIN else upper[idx])
    with gurobi_env(multiprocess_solver_options.get('verbose', False)) as env:
        with BoundSubproblem(network, layer, lower, upper, env=env,
                             **multiprocess_solver_options) as subproblem:
            with subproblem.node_scope(node, lower, upper):
                result = solve_bound(subproblem, node, sense, prior=prior)
    return layer, node, sense, result


def bound_tightening_workers(network: NetworkDescriptor, store: BoundStore,
                             parallel_solvers=None, **solver_options):
    """Fine-grained distributed strategy: one (node, direction) task per worker process call."""
    with multiprocessing.Pool(parallel_solvers, initializer=_init_worker,
                              initargs=(network, solver_options)) as pool:
        for layer in range(1, network.layer_count + 1):
            tasks = []
            for node in range(network.node_count[layer]):
                for sense in SENSES:
                    store.begin(layer, node, sense)
                    store.mark_solving(layer, node, sense)
                    tasks.append((layer, node, sense))
            lower, upper = store.snapshot()
            results = pool.starmap(_bt_workers_inner,
                                   [(layer, node, sense, lower, upper) for layer, node, sense in tasks],
                                   chunksize=1)
            # Workers do not touch the store; results are written back in task order.
            for layer_, node, sense, result in results:
                report_bound(layer_, node, sense, result)
                store.record(layer_, node, sense, result.value)
            report_layer(store, layer)


def _bt_2workers_inner(layer, sense, lower, upper, threads):
    """Solve one direction for every node of a layer, reusing a single model."""
    network = multiprocess_network
    solver_options = dict(multiprocess_solver_options, threads=threads)
    bounds = (lower if sense == ObjectiveSense.MIN else upper).copy()
    results = []
    with gurobi_env(solver_options.get('verbose', False)) as env:
        with BoundSubproblem(network, layer, lower, upper, env=env, **solver_options) as subproblem:
            for node in range(network.node_count[layer]):
                idx = network.index(layer, node)
                with subproblem.node_scope(node, lower, upper):
                    result = solve_bound(subproblem, node, sense, prior=float(bounds[idx]))
                if result.value is not None:
                    bounds[idx] = result.value
                results.append(result)
    return sense, bounds, results


def bound_tightening_2workers(network: NetworkDescriptor, store: BoundStore,
                              parallel_solvers=None, **solver_options):
    """
    Coarse-grained distributed strategy with exactly two workers per layer.

    One worker computes all lower bounds of a layer and the other all upper bounds.
    Each returns a full copy of its bound vector; lower bounds are taken from the MIN
    worker and upper bounds from the MAX worker. The available threads are split
    between the two solvers.
    """
    total_threads = parallel_solvers or multiprocessing.cpu_count()
    threads = {ObjectiveSense.MIN: max(1, total_threads // 2),
               ObjectiveSense.MAX: max(1, total_threads - total_threads // 2)}
    with multiprocessing.Pool(2, initializer=_init_worker,
                              initargs=(network, solver_options)) as pool:
        for layer in range(1, network.layer_count + 1):
            for node in range(network.node_count[layer]):
                for sense in SENSES:
                    store.begin(layer, node, sense)
                    store.mark_solving(layer, node, sense)
            lower, upper = store.snapshot()
            outputs = pool.starmap(_bt_2workers_inner,
                                   [(layer, sense, lower, upper, threads[sense]) for sense in SENSES])
            for sense, bounds, results in outputs:
                for node, result in enumerate(results):
                    report_bound(layer, node, sense, result)
                    value = None if result.value is None else float(bounds[network.index(layer, node)])
                    store.record(layer, node, sense, value)
            report_layer(store, layer)
