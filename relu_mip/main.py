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
"""Bound tightening and pruning driver."""

import os
import random
import socket
import sys
import time

import numpy as np
import torch

from . import arguments
from .loading import expand_path, load_initial_bounds, load_network, save_bounds, save_npy_network
from .lp_mip_solver import tighten_bounds
from .prune import prune_network


class BoundTightener:
    def __init__(self, args=None, **kwargs):
        args = list(args or [])
        for k, v in kwargs.items():
            if isinstance(v, list):
                args.append(f'--{k}')
                args.extend(list(map(str, v)))
            elif isinstance(v, bool):
                if v:
                    args.append(f'--{k}')
            else:
                args.append(f'--{k}={v}')
        arguments.Config.parse_config(args)

    def main(self):
        """Load the network, tighten its bounds and optionally prune it."""
        print(f'Experiments at {time.ctime()} on {socket.gethostname()}')
        seed = arguments.Config['general']['seed']
        torch.manual_seed(seed)
        random.seed(seed)
        np.random.seed(seed)

        network = load_network()
        lower, upper = load_initial_bounds(network)
        result = tighten_bounds(network, lower, upper)

        save_dir = arguments.Config['general']['save_dir']
        if save_dir is not None:
            save_dir = expand_path(save_dir)
            save_bounds(save_dir, result.lower, result.upper)
            print(f'Bounds saved to {save_dir}')

        ret = {'lower': result.lower, 'upper': result.upper, 'tightening': result}
        if arguments.Config['prune']['enabled']:
            pruned, pruned_lower, pruned_upper, report = prune_network(network, result.lower, result.upper)
            if save_dir is not None:
                save_npy_network(pruned, os.path.join(save_dir, 'pruned'))
                save_bounds(os.path.join(save_dir, 'pruned'), pruned_lower, pruned_upper)
            ret.update(pruned=pruned, prune_report=report)
        sys.stdout.flush()
        return ret


if __name__ == '__main__':
    tightener = BoundTightener(args=sys.argv[1:])
    tightener.main()
