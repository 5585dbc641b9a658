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
"""Per-node MIP subproblems for bound tightening."""

import contextlib

import gurobipy as grb

from ..bound_store import BoundStore, ObjectiveSense
from ..network import NetworkDescriptor


class BoundSubproblem:
    """
    Gurobi model of the network prefix up to a target layer.

    The model has variables for layers 0..layer and the ReLU big-M constraints of
    layers 1..layer-1, built from the bounds given when each layer was added:
        sum_i W[j, i] x[k-1, i] + b[j] == x[k, j] - s[k, j]
        x[k, j] <= U[k, j] z[k, j]
        s[k, j] <= -L[k, j] (1 - z[k, j])
    with x, s >= 0 and z binary. Output layer nodes are linear, without slack and
    indicator. Constraints of the target node itself are added in ``node_scope`` and
    removed when the scope exits, so the model can be reused for every node of the
    layer. Calling ``extend_to`` moves the target to a deeper layer.
    """

    def __init__(self, network: NetworkDescriptor, layer: int, lower, upper, env=None,
                 time_limit=1.0, threads=1, verbose=False, feasibility_tol=1e-6,
                 mip_gap=0.0, store: BoundStore = None):
        if store is not None:
            store.check_ready(layer)
        self.network = network
        self.model = grb.Model(f'bound_tightening_layer{layer}', env=env)
        self.model.setParam('OutputFlag', int(verbose))
        self.model.setParam('Threads', threads)
        self.model.setParam('TimeLimit', time_limit)
        self.model.setParam('FeasibilityTol', feasibility_tol)
        self.model.setParam('MIPGap', mip_gap)
        self.x = {}
        self.s = {}
        self.z = {}
        self.layer = 0

        sl = network.layer_slice(0)
        input_lower, input_upper = lower[sl], upper[sl]
        for i in range(network.input_size):
            # Input variables are free; the input domain is given by constraints.
            v = self.model.addVar(lb=-grb.GRB.INFINITY, ub=grb.GRB.INFINITY, name=f'inp_{i}')
            self.x[0, i] = v
            self.model.addConstr(v >= float(input_lower[i]), name=f'inp_{i}_L')
            self.model.addConstr(v <= float(input_upper[i]), name=f'inp_{i}_U')
        self.extend_to(layer, lower, upper, store=store)

    def extend_to(self, layer: int, lower, upper, store: BoundStore = None):
        """Add layers up to ``layer``. Bounds of all layers before it must be final."""
        if layer < max(self.layer, 1) or layer > self.network.layer_count:
            raise ValueError(f'Cannot move a subproblem from layer {self.layer} to layer {layer}.')
        if store is not None:
            store.check_ready(layer)
        for k in range(self.layer + 1, layer + 1):
            if k > 1:
                for j in range(self.network.node_count[k - 1]):
                    self._add_node_constraints(k - 1, j, lower, upper, tag=f'lay{k - 1}_{j}')
            self._add_layer_vars(k)
        self.layer = layer
        self.model.update()

    def _add_layer_vars(self, k):
        output = self.network.is_output(k)
        for j in range(self.network.node_count[k]):
            if output:
                self.x[k, j] = self.model.addVar(lb=-grb.GRB.INFINITY, ub=grb.GRB.INFINITY,
                                                 name=f'lay{k}_{j}')
            else:
                self.x[k, j] = self.model.addVar(lb=0.0, name=f'lay{k}_{j}')
                self.s[k, j] = self.model.addVar(lb=0.0, name=f'slack{k}_{j}')
                self.z[k, j] = self.model.addVar(vtype=grb.GRB.BINARY, name=f'relu{k}_{j}')

    def _add_node_constraints(self, k, j, lower, upper, tag):
        idx = self.network.index(k, j)
        node_lower, node_upper = float(lower[idx]), float(upper[idx])
        w = self.network.weights[k - 1][j]
        prev = [self.x[k - 1, i] for i in range(self.network.node_count[k - 1])]
        pre_activation = grb.LinExpr(w.tolist(), prev) + float(self.network.biases[k - 1][j])
        x = self.x[k, j]
        if self.network.is_output(k):
            return [
                self.model.addConstr(pre_activation == x, name=f'{tag}_eq'),
                self.model.addConstr(x >= node_lower, name=f'{tag}_L'),
                self.model.addConstr(x <= node_upper, name=f'{tag}_U'),
            ]
        s, z = self.s[k, j], self.z[k, j]
        return [
            self.model.addConstr(pre_activation == x - s, name=f'{tag}_eq'),
            self.model.addConstr(x <= node_upper * z, name=f'{tag}_U'),
            self.model.addConstr(s <= -node_lower * (1 - z), name=f'{tag}_L'),
        ]

    @contextlib.contextmanager
    def node_scope(self, node: int, lower, upper):
        """Constraints of ``node`` in the target layer, removed when the scope exits."""
        constrs = self._add_node_constraints(self.layer, node, lower, upper, tag='node')
        self.model.update()
        try:
            yield self
        finally:
            for c in constrs:
                self.model.remove(c)
            self.model.update()

    def objective(self, node: int):
        """Pre-activation of a hidden node, or the value of an output node."""
        x = self.x[self.layer, node]
        if self.network.is_output(self.layer):
            return grb.LinExpr(x)
        return x - self.s[self.layer, node]

    def set_objective(self, node: int, sense: ObjectiveSense):
        self.model.setObjective(self.objective(node), int(sense))

    def dispose(self):
        self.model.dispose()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.dispose()
