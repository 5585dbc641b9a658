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
"""Gurobi helpers shared by the bound tightening strategies."""

import contextlib

import gurobipy as grb


STATUS_NAMES = {
    grb.GRB.LOADED: 'LOADED',
    grb.GRB.OPTIMAL: 'OPTIMAL',
    grb.GRB.INFEASIBLE: 'INFEASIBLE',
    grb.GRB.INF_OR_UNBD: 'INF_OR_UNBD',
    grb.GRB.UNBOUNDED: 'UNBOUNDED',
    grb.GRB.CUTOFF: 'CUTOFF',
    grb.GRB.ITERATION_LIMIT: 'ITERATION_LIMIT',
    grb.GRB.NODE_LIMIT: 'NODE_LIMIT',
    grb.GRB.TIME_LIMIT: 'TIME_LIMIT',
    grb.GRB.SOLUTION_LIMIT: 'SOLUTION_LIMIT',
    grb.GRB.INTERRUPTED: 'INTERRUPTED',
    grb.GRB.NUMERIC: 'NUMERIC',
    grb.GRB.SUBOPTIMAL: 'SUBOPTIMAL',
}


def status_name(status):
    return STATUS_NAMES.get(status, f'STATUS_{status}')


def handle_gurobi_error(message):
    print(f'Gurobi error: {message}')
    raise grb.GurobiError(message)


@contextlib.contextmanager
def gurobi_env(verbose=False):
    """A started Gurobi environment. Environments must not be shared between threads."""
    with grb.Env(empty=True) as env:
        env.setParam('OutputFlag', int(verbose))
        env.start()
        yield env
