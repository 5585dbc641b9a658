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
"""Tighten per-node bounds of ReLU networks with the Gurobi MIP solver."""

import sys
import time
from dataclasses import dataclass, field
from typing import List

import numpy as np

from .. import arguments
from ..bound_store import BoundStore, ObjectiveSense, SkippedBound
from ..network import NetworkDescriptor
from .mip_core import InfeasibleBoundProblem, SolverResult, solve_bound
from .subproblem import BoundSubproblem
from .utils import gurobi_env, handle_gurobi_error, status_name
from .bounds_core import (
    bound_tightening, bound_tightening_threads, bound_tightening_workers,
    bound_tightening_2workers
)

STRATEGY_FUNCTIONS = {
    'sequential': bound_tightening,
    'threads': bound_tightening_threads,
    'workers': bound_tightening_workers,
    '2workers': bound_tightening_2workers,
}


@dataclass
class TighteningResult:
    lower: np.ndarray
    upper: np.ndarray
    strategy: str
    time: float = 0.
    skipped: List[SkippedBound] = field(default_factory=list)


def tighten_bounds(network: NetworkDescriptor, lower, upper, strategy=None, time_limit=None,
                   threads=None, verbose=None, feasibility_tol=None,
                   mip_gap=None, parallel_solvers=None) -> TighteningResult:
    """
    Compute tight pre-activation bounds of every hidden and output node.

    ``lower`` and ``upper`` are flattened initial bounds (layer 0 first); layer 0
    bounds are the input domain and stay unchanged. Hidden layer bounds must be
    finite. Options left as None are read from the global Config.
    """
    arguments.ensure_config_defaults()
    solver_config = arguments.Config['solver']
    tightening_config = arguments.Config['tightening']
    strategy = strategy or tightening_config['strategy']
    if parallel_solvers is None:
        parallel_solvers = tightening_config['parallel_solvers']
    solver_options = {
        'time_limit': solver_config['time_limit'] if time_limit is None else time_limit,
        'threads': solver_config['threads'] if threads is None else threads,
        'verbose': solver_config['verbose'] if verbose is None else verbose,
        'feasibility_tol': solver_config['feasibility_tol'] if feasibility_tol is None else feasibility_tol,
        'mip_gap': solver_config['mip_gap'] if mip_gap is None else mip_gap,
    }
    if strategy not in STRATEGY_FUNCTIONS:
        raise ValueError(f'Unknown bound tightening strategy "{strategy}", '
                         f'expected one of {list(STRATEGY_FUNCTIONS)}.')

    store = BoundStore(network, lower, upper)
    print(f'Bound tightening with strategy "{strategy}" on a network with '
          f'{list(network.node_count)} nodes per layer.')
    start = time.time()
    if strategy == 'sequential':
        bound_tightening(network, store, **solver_options)
    else:
        STRATEGY_FUNCTIONS[strategy](network, store, parallel_solvers=parallel_solvers, **solver_options)
    elapsed = time.time() - start
    print(f'Bound tightening finished in {elapsed:.3f}s, '
          f'{len(store.skipped)} bounds kept at their previous value.')
    sys.stdout.flush()
    return TighteningResult(lower=store.lower, upper=store.upper, strategy=strategy,
                            time=elapsed, skipped=list(store.skipped))


__all__ = [
    'TighteningResult', 'tighten_bounds', 'STRATEGY_FUNCTIONS',
    'BoundSubproblem', 'solve_bound', 'SolverResult', 'InfeasibleBoundProblem',
    'bound_tightening', 'bound_tightening_threads', 'bound_tightening_workers',
    'bound_tightening_2workers', 'gurobi_env', 'handle_gurobi_error', 'status_name',
    'ObjectiveSense',
]
