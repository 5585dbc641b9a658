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
"""Solving a single bound subproblem and validating its termination status."""

import time
from dataclasses import dataclass
from typing import Optional

import gurobipy as grb

from ..bound_store import ObjectiveSense
from .subproblem import BoundSubproblem
from .utils import handle_gurobi_error, status_name


class InfeasibleBoundProblem(RuntimeError):
    """The solver stopped with a status other than OPTIMAL or TIME_LIMIT."""

    def __init__(self, message, layer=None, node=None, sense=None, status=None):
        super().__init__(message)
        self.message = message
        self.layer = layer
        self.node = node
        self.sense = sense
        self.status = status

    def __reduce__(self):
        # Keeps the fields when the exception is sent back from a worker process.
        return (type(self), (self.message, self.layer, self.node, self.sense, self.status))


@dataclass
class SolverResult:
    status: int
    value: Optional[float]
    solve_time: float

    @property
    def status_name(self) -> str:
        return status_name(self.status)

    @property
    def missing_incumbent(self) -> bool:
        return self.value is None


def solve_bound(subproblem: BoundSubproblem, node: int, sense: ObjectiveSense,
                prior: Optional[float] = None, time_limit: Optional[float] = None) -> SolverResult:
    """
    Minimize or maximize the value of ``node`` in the target layer of ``subproblem``.

    The node constraints must be present (see ``BoundSubproblem.node_scope``). An LP
    returns its objective value at OPTIMAL. A MIP at OPTIMAL, or at TIME_LIMIT with an
    incumbent, returns its proven objective bound, never looser than ``prior``. At
    TIME_LIMIT without an incumbent the value is None and the caller keeps the prior
    bound. Any other status raises InfeasibleBoundProblem.
    """
    model = subproblem.model
    subproblem.set_objective(node, sense)
    if time_limit is not None:
        model.setParam('TimeLimit', time_limit)

    start = time.time()
    try:
        model.optimize()
    except grb.GurobiError as e:
        handle_gurobi_error(e.message)
    solve_time = time.time() - start

    status = model.Status
    if status in (grb.GRB.OPTIMAL, grb.GRB.TIME_LIMIT):
        value = None
        if not model.IsMIP:
            if status == grb.GRB.OPTIMAL:
                value = model.ObjVal
        elif status == grb.GRB.OPTIMAL or model.SolCount > 0:
            # ObjVal of a MIP is an incumbent, only ObjBound is a valid bound with MIPGap > 0.
            value = model.ObjBound
            if prior is not None:
                value = max(value, prior) if sense == ObjectiveSense.MIN else min(value, prior)
    else:
        raise InfeasibleBoundProblem(
            f'Bound subproblem for the {sense.label} bound of layer {subproblem.layer} node {node} '
            f'ended with status {status_name(status)}; the input domain or earlier bounds are invalid.',
            layer=subproblem.layer, node=node, sense=sense, status=status)
    return SolverResult(status=status, value=value, solve_time=solve_time)
