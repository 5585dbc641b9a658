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
"""Immutable description of a trained ReLU feedforward network."""

from typing import List, Optional, Sequence, Tuple

import numpy as np
import torch
import torch.nn as nn


class ShapeError(ValueError):
    """Weight and bias dimensions are inconsistent between layers."""


class NetworkDescriptor:
    """
    Weights and biases of a fully connected ReLU network.

    Layer 0 is the input layer; layers 1..K-1 are hidden ReLU layers and layer K
    is the linear output layer. ``weights[k - 1]`` has shape
    (node_count[k], node_count[k - 1]). Nodes of all layers share one flattened
    index space, layer 0 first, which is the ordering used by bound vectors.
    """

    def __init__(self, weights: Sequence, biases: Sequence):
        if len(weights) == 0:
            raise ShapeError('A network needs at least one weight matrix.')
        if len(weights) != len(biases):
            raise ShapeError(f'Got {len(weights)} weight matrices but {len(biases)} bias vectors.')

        ws, bs = [], []
        for k, (w, b) in enumerate(zip(weights, biases), start=1):
            w = np.array(w, dtype=np.float64)
            b = np.array(b, dtype=np.float64).reshape(-1)
            if w.ndim != 2:
                raise ShapeError(f'Weight matrix of layer {k} must be 2-D, got shape {w.shape}.')
            if b.shape[0] != w.shape[0]:
                raise ShapeError(f'Layer {k} has {w.shape[0]} weight rows but {b.shape[0]} biases.')
            if ws and w.shape[1] != ws[-1].shape[0]:
                raise ShapeError(f'Layer {k} expects {w.shape[1]} inputs but layer {k - 1} '
                                 f'has {ws[-1].shape[0]} nodes.')
            w.setflags(write=False)
            b.setflags(write=False)
            ws.append(w)
            bs.append(b)

        self.weights: Tuple[np.ndarray, ...] = tuple(ws)
        self.biases: Tuple[np.ndarray, ...] = tuple(bs)
        self.node_count: Tuple[int, ...] = (ws[0].shape[1],) + tuple(w.shape[0] for w in ws)
        self.offsets: Tuple[int, ...] = tuple(int(o) for o in np.cumsum((0,) + self.node_count))

    @property
    def layer_count(self) -> int:
        """Number of weight layers K."""
        return len(self.weights)

    @property
    def total_nodes(self) -> int:
        return self.offsets[-1]

    @property
    def parameter_count(self) -> int:
        """Number of weights and biases."""
        return sum(w.size + b.size for w, b in zip(self.weights, self.biases))

    @property
    def input_size(self) -> int:
        return self.node_count[0]

    @property
    def output_size(self) -> int:
        return self.node_count[-1]

    def is_output(self, layer: int) -> bool:
        return layer == self.layer_count

    def index(self, layer: int, node: int) -> int:
        """Flattened index of (layer, node)."""
        if not 0 <= node < self.node_count[layer]:
            raise IndexError(f'Layer {layer} has {self.node_count[layer]} nodes, got node {node}.')
        return self.offsets[layer] + node

    def layer_slice(self, layer: int) -> slice:
        return slice(self.offsets[layer], self.offsets[layer + 1])

    def forward(self, x) -> np.ndarray:
        """Evaluate the network on one input vector or a batch of shape (batch, inputs)."""
        x = np.asarray(x, dtype=np.float64)
        single = x.ndim == 1
        h = np.atleast_2d(x)
        for k, (w, b) in enumerate(zip(self.weights, self.biases), start=1):
            h = h @ w.T + b
            if not self.is_output(k):
                h = np.maximum(h, 0.)
        return h[0] if single else h

    def interval_bounds(self, input_lower, input_upper) -> Tuple[np.ndarray, np.ndarray]:
        """
        Pre-activation bounds of every node by interval arithmetic over the input box.

        Returns flattened (lower, upper) vectors. Layer 0 holds the input box itself.
        These bounds are valid but loose, and can be used to initialize tightening.
        """
        lo = np.asarray(input_lower, dtype=np.float64).reshape(-1)
        hi = np.asarray(input_upper, dtype=np.float64).reshape(-1)
        if lo.shape[0] != self.input_size or hi.shape[0] != self.input_size:
            raise ShapeError(f'Input bounds must have {self.input_size} entries.')
        lowers, uppers = [lo], [hi]
        for k, (w, b) in enumerate(zip(self.weights, self.biases), start=1):
            w_pos, w_neg = np.clip(w, 0, None), np.clip(w, None, 0)
            new_lo = w_pos @ lo + w_neg @ hi + b
            new_hi = w_pos @ hi + w_neg @ lo + b
            lowers.append(new_lo)
            uppers.append(new_hi)
            lo, hi = np.maximum(new_lo, 0.), np.maximum(new_hi, 0.)
        return np.concatenate(lowers), np.concatenate(uppers)

    def to_torch(self, dtype=torch.float64) -> nn.Sequential:
        layers: List[nn.Module] = []
        for k, (w, b) in enumerate(zip(self.weights, self.biases), start=1):
            linear = nn.Linear(w.shape[1], w.shape[0]).to(dtype)
            with torch.no_grad():
                linear.weight.copy_(torch.tensor(w, dtype=dtype))
                linear.bias.copy_(torch.tensor(b, dtype=dtype))
            layers.append(linear)
            if not self.is_output(k):
                layers.append(nn.ReLU())
        return nn.Sequential(*layers)

    @classmethod
    def from_torch(cls, model: nn.Module) -> 'NetworkDescriptor':
        """Extract weights from a sequential model made of Linear and ReLU layers."""
        weights, biases = [], []
        expect_linear = True
        for name, module in model.named_modules():
            # Containers are walked through; only leaf layers matter.
            if len(list(module.children())) > 0 or isinstance(module, (nn.Flatten, nn.Identity)):
                continue
            if isinstance(module, nn.Linear):
                if not expect_linear:
                    raise ValueError(f'Two Linear layers without a ReLU in between at "{name}".')
                weights.append(module.weight.detach().cpu().numpy())
                bias = module.bias
                biases.append(np.zeros(module.out_features) if bias is None else bias.detach().cpu().numpy())
                expect_linear = False
            elif isinstance(module, nn.ReLU):
                if expect_linear:
                    raise ValueError(f'ReLU layer "{name}" must follow a Linear layer.')
                expect_linear = True
            else:
                raise ValueError(f'Unsupported layer "{name}" of type {type(module).__name__}; '
                                 'only Linear and ReLU layers are supported.')
        if expect_linear and weights:
            raise ValueError('The last layer of the network must be Linear.')
        return cls(weights, biases)

    @classmethod
    def from_state_dict(cls, state_dict) -> 'NetworkDescriptor':
        """Build from a state dict whose weight/bias entries appear in layer order."""
        weights: List[np.ndarray] = []
        biases: List[Optional[np.ndarray]] = []
        for key, value in state_dict.items():
            value = value.detach().cpu().numpy() if isinstance(value, torch.Tensor) else np.asarray(value)
            if key.endswith('weight'):
                weights.append(value)
                biases.append(None)
            elif key.endswith('bias'):
                if not biases or biases[-1] is not None:
                    raise ShapeError(f'Bias "{key}" does not follow a weight entry.')
                biases[-1] = value
        biases = [np.zeros(w.shape[0]) if b is None else b for w, b in zip(weights, biases)]
        return cls(weights, biases)

    def __repr__(self):
        return f'NetworkDescriptor(node_count={list(self.node_count)})'
