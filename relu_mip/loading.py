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
"""Loading trained networks and saving bounds and pruned networks."""

import os
import re

import numpy as np
import torch
import torch.nn as nn

from . import arguments
from .bound_store import initial_bounds
from .network import NetworkDescriptor, ShapeError


def expand_path(path):
    return os.path.abspath(os.path.expanduser(path))


def load_npy_network(directory) -> NetworkDescriptor:
    """Read layer_{i}_weights.npy and layer_{i}_biases.npy for i = 0, 1, ... until a file is missing."""
    files = os.listdir(directory)
    indices = sorted(int(m.group(1)) for m in
                     (re.fullmatch(r'layer_(\d+)_weights\.npy', f) for f in files) if m)
    if not indices:
        raise FileNotFoundError(f'No layer_{{i}}_weights.npy files found in {directory}.')
    if indices != list(range(len(indices))):
        raise ShapeError(f'Layer files in {directory} are not numbered consecutively from 0: {indices}.')
    weights, biases = [], []
    for i in indices:
        weights.append(np.load(os.path.join(directory, f'layer_{i}_weights.npy')))
        biases.append(np.load(os.path.join(directory, f'layer_{i}_biases.npy')))
    return NetworkDescriptor(weights, biases)


def save_npy_network(network: NetworkDescriptor, directory):
    os.makedirs(directory, exist_ok=True)
    for i, (w, b) in enumerate(zip(network.weights, network.biases)):
        np.save(os.path.join(directory, f'layer_{i}_weights.npy'), w)
        np.save(os.path.join(directory, f'layer_{i}_biases.npy'), b)


def load_torch_network(path) -> NetworkDescriptor:
    loaded = torch.load(path, map_location='cpu', weights_only=False)
    if isinstance(loaded, nn.Module):
        return NetworkDescriptor.from_torch(loaded)
    if 'state_dict' in loaded:
        loaded = loaded['state_dict']
    return NetworkDescriptor.from_state_dict(loaded)


def load_network(path=None) -> NetworkDescriptor:
    """Load a network from an npy directory or a PyTorch file (Config["model"]["path"] by default)."""
    if path is None:
        arguments.ensure_config_defaults()
        path = arguments.Config['model']['path']
    if path is None:
        raise ValueError('No model path given; set model.path in the config or pass --model.')
    path = expand_path(path)
    if os.path.isdir(path):
        network = load_npy_network(path)
    else:
        network = load_torch_network(path)
    print(f'Loaded network from {path}: {list(network.node_count)} nodes per layer.')
    return network


def save_bounds(directory, lower, upper, suffix=''):
    os.makedirs(directory, exist_ok=True)
    np.save(os.path.join(directory, f'lower{suffix}.npy'), lower)
    np.save(os.path.join(directory, f'upper{suffix}.npy'), upper)


def load_bounds(directory, suffix=''):
    lower = np.load(os.path.join(directory, f'lower{suffix}.npy'))
    upper = np.load(os.path.join(directory, f'upper{suffix}.npy'))
    return lower, upper


def load_initial_bounds(network: NetworkDescriptor):
    """Initial bounds as configured in Config["bounds"]."""
    arguments.ensure_config_defaults()
    config = arguments.Config['bounds']
    if config['load_dir'] is not None:
        lower, upper = load_bounds(expand_path(config['load_dir']))
        if lower.shape[0] != network.total_nodes or upper.shape[0] != network.total_nodes:
            raise ShapeError(f'Loaded bounds have {lower.shape[0]} entries but the network has '
                             f'{network.total_nodes} nodes.')
        return lower, upper
    input_lower, input_upper = config['input_lower'], config['input_upper']
    for name, value in (('input_lower', input_lower), ('input_upper', input_upper)):
        if len(value) not in (1, network.input_size):
            raise ShapeError(f'bounds.{name} has {len(value)} entries, expected 1 or {network.input_size}.')
    init_bound = None if config['init_method'] == 'interval' else config['init_bound']
    return initial_bounds(network, input_lower, input_upper, init_bound=init_bound)
