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
import gurobipy as grb

from relu_mip import NetworkDescriptor, initial_bounds


def _gurobi_license_available():
    try:
        with grb.Env(empty=True) as env:
            env.setParam('OutputFlag', 0)
            env.start()
            with grb.Model(env=env) as model:
                model.addVar()
                model.optimize()
        return True
    except grb.GurobiError:
        return False


GUROBI_AVAILABLE = _gurobi_license_available()


@pytest.fixture
def gurobi():
    if not GUROBI_AVAILABLE:
        pytest.skip('No usable Gurobi license.')


@pytest.fixture
def small_network() -> NetworkDescriptor:
    """2 inputs, one hidden layer of 3 neurons, one output."""
    return NetworkDescriptor(
        weights=[[[1., 1.], [2., -1.], [4., 2.]], [[2., 1., 0.]]],
        biases=[[5., 4., 6.], [0.2]])


@pytest.fixture
def small_bounds(small_network):
    return initial_bounds(small_network, [-1., -1.], [1., 1.], init_bound=1000.)


@pytest.fixture
def deep_network() -> NetworkDescriptor:
    """2 inputs, hidden layers of 4, 4 and 3 neurons, one output."""
    rng = np.random.default_rng(1234)
    sizes = [2, 4, 4, 3, 1]
    weights = [rng.normal(size=(n_out, n_in)) for n_in, n_out in zip(sizes[:-1], sizes[1:])]
    biases = [rng.normal(size=n_out) * 0.5 for n_out in sizes[1:]]
    return NetworkDescriptor(weights, biases)


@pytest.fixture
def deep_bounds(deep_network):
    return initial_bounds(deep_network, [-1., -1.], [1., 1.], init_bound=None)
