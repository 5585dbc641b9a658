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
__version__ = '0.1.0'

from .network import NetworkDescriptor, ShapeError
from .bound_store import (
    BoundStore, LayerOrderError, NodeState, ObjectiveSense, SkippedBound, initial_bounds
)
from .lp_mip_solver import (
    TighteningResult, tighten_bounds, InfeasibleBoundProblem, BoundSubproblem, solve_bound
)
from .prune import PruneReport, PruningInconsistency, prune_layer, prune_network

__all__ = [
    "NetworkDescriptor",
    "ShapeError",
    "BoundStore",
    "LayerOrderError",
    "NodeState",
    "ObjectiveSense",
    "SkippedBound",
    "initial_bounds",
    "TighteningResult",
    "tighten_bounds",
    "InfeasibleBoundProblem",
    "BoundSubproblem",
    "solve_bound",
    "PruneReport",
    "PruningInconsistency",
    "prune_layer",
    "prune_network",
]
