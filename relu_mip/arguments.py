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
Arguments parser and config file loader.

When adding new commandline parameters, please make sure to provide a clear and descriptive help message and put it in under a related hierarchy.
"""

import re
import sys
import yaml
import argparse
from collections import defaultdict


STRATEGIES = ['sequential', 'threads', 'workers', '2workers']


class ConfigHandler:

    def __init__(self):
        self.config_file_hierarchies = {
            # Given a hierarchy for each commandline option. This hierarchy is used in yaml config.
            # For example: "time_limit": ["solver", "time_limit"] will be an element in this dictionary.
            # The entries will be created in add_argument() method.
        }
        # Stores all arguments according to their hierarchy.
        self.all_args = {}
        # Parses all arguments with their defaults.
        self.defaults_parser = argparse.ArgumentParser()
        # Parses the specified arguments only. Not specified arguments will be ignored.
        self.no_defaults_parser = argparse.ArgumentParser(argument_default=argparse.SUPPRESS)
        # Help message for each configuration entry.
        self.help_messages = defaultdict(str)
        self.add_common_options()
        # Path to the config file
        self.file = None
        # Parse an empty commandline to get all default arguments.
        self.default_args = vars(self.defaults_parser.parse_args([]))

    def add_common_options(self):
        """
        Add all parameters used by the bound tightening and pruning drivers.
        """

        # The "--config" option does not exist in our parameter dictionary.
        self.add_argument('--config', type=str, help='Path to YAML format config file.', hierarchy=None)

        h = ["general"]
        self.add_argument("--seed", type=int, default=100, help='Random seed.',
                          hierarchy=h + ["seed"])
        self.add_argument("--save_dir", type=str, default=None,
                          help='Directory where tightened bounds and pruned networks are saved. Nothing is saved if not set.',
                          hierarchy=h + ["save_dir"])

        h = ["model"]
        self.add_argument("--model", type=str, default=None,
                          help='Path to the trained network: a directory with layer_{i}_weights.npy and layer_{i}_biases.npy files, or a PyTorch .pt/.pth file.',
                          hierarchy=h + ["path"])

        h = ["bounds"]
        self.add_argument("--input_lower", type=float, nargs='+', default=[-1.0],
                          help='Lower bounds of the input domain. A single value is broadcast to all inputs.',
                          hierarchy=h + ["input_lower"])
        self.add_argument("--input_upper", type=float, nargs='+', default=[1.0],
                          help='Upper bounds of the input domain. A single value is broadcast to all inputs.',
                          hierarchy=h + ["input_upper"])
        self.add_argument("--init_method", type=str, default="constant", choices=["constant", "interval"],
                          help='How coarse bounds of hidden and output nodes are initialized: "constant" uses +/-init_bound, "interval" uses interval arithmetic over the input domain.',
                          hierarchy=h + ["init_method"])
        self.add_argument("--init_bound", type=float, default=1e6,
                          help='Magnitude of the coarse initial bounds when init_method is "constant".',
                          hierarchy=h + ["init_bound"])
        self.add_argument("--load_bounds", type=str, default=None,
                          help='Directory with lower.npy and upper.npy used as initial bounds instead of init_method.',
                          hierarchy=h + ["load_dir"])

        h = ["solver"]
        self.add_argument("--time_limit", type=self.positive_float_checker, default=1.0,
                          help='Time limit in seconds for each per-node bound subproblem.',
                          hierarchy=h + ["time_limit"])
        self.add_argument("--solver_threads", type=int, default=1,
                          help='Number of Gurobi threads used by each subproblem (0 lets Gurobi decide).',
                          hierarchy=h + ["threads"])
        self.add_argument("--solver_verbose", action='store_true',
                          help='Print the output of the MIP solver.',
                          hierarchy=h + ["verbose"])
        self.add_argument("--feasibility_tol", type=self.positive_float_checker, default=1e-6,
                          help='Primal feasibility tolerance of the MIP solver.',
                          hierarchy=h + ["feasibility_tol"])
        self.add_argument("--mip_gap", type=self.positive_float_checker, default=0.0,
                          help='Relative MIP gap at which a subproblem counts as solved; a positive gap gives valid but looser bounds.',
                          hierarchy=h + ["mip_gap"])

        h = ["tightening"]
        self.add_argument("--strategy", type=str, default="sequential", choices=STRATEGIES,
                          help='Scheduling strategy for bound tightening: "sequential" reuses one solver model, "threads" solves nodes on a thread pool, "workers" dispatches each node to a process pool, "2workers" uses one process for lower and one for upper bounds.',
                          hierarchy=h + ["strategy"])
        self.add_argument("--parallel_solvers", type=int, default=None,
                          help='Number of parallel threads or processes for the "threads" and "workers" strategies. Defaults to the number of CPUs.',
                          hierarchy=h + ["parallel_solvers"])

        h = ["prune"]
        self.add_argument("--prune", action='store_true',
                          help='Prune the network with the tightened bounds after bound tightening.',
                          hierarchy=h + ["enabled"])
        self.add_argument("--no_prune_upper_bound", action='store_false',
                          help='Disable pruning of neurons whose upper bound is negative.',
                          hierarchy=h + ["upper_bound"])
        self.add_argument("--no_prune_zero_weight", action='store_false',
                          help='Disable pruning of neurons with all-zero incoming weights.',
                          hierarchy=h + ["zero_weight"])
        self.add_argument("--prune_linear_dependence", action='store_true',
                          help='Enable the experimental pruning of stably active neurons that are linear combinations of other stably active neurons.',
                          hierarchy=h + ["linear_dependence"])
        self.add_argument("--zero_weight_threshold", type=self.positive_float_checker, default=1e-5,
                          help='Incoming weights with absolute value up to this threshold count as zero.',
                          hierarchy=h + ["zero_weight_threshold"])
        self.add_argument("--stable_threshold", type=self.positive_float_checker, default=1e-5,
                          help='A neuron is stably active when its lower bound exceeds this threshold.',
                          hierarchy=h + ["stable_threshold"])
        self.add_argument("--prune_tolerance", type=self.positive_float_checker, default=1e-3,
                          help='Maximum allowed absolute deviation between the outputs of the original and the pruned network.',
                          hierarchy=h + ["tolerance"])
        self.add_argument("--prune_num_samples", type=int, default=10,
                          help='Number of random inputs used to check the pruned network.',
                          hierarchy=h + ["num_samples"])

        h = ["debug"]
        self.add_argument("--save_minimal_config", type=str, default=None,
                          help="Path to save a minimal config file.",
                          hierarchy=h + ['save_minimal_config'])

    def update_arguments(self):
        """Adaptively tune arguments."""
        for key in ["input_lower", "input_upper"]:
            value = self["bounds"][key]
            if not isinstance(value, (list, tuple)):
                self["bounds"][key] = [float(value)]

    def add_argument(self, *args, **kwargs):
        """Add a single parameter to the parser. We will check the 'hierarchy' specified and then pass the remaining arguments to argparse."""
        if 'hierarchy' not in kwargs:
            raise ValueError("please specify the 'hierarchy' parameter when using this function.")
        hierarchy = kwargs.pop('hierarchy')
        help = kwargs.get('help', '')
        private_option = kwargs.pop('private', False)
        # Make sure valid help is given
        if not private_option:
            if len(help.strip()) < 10:
                raise ValueError(
                    f'Help message must not be empty, and must be detailed enough. "{help}" is not good enough.')
            elif (not help[0].isupper()) or help[-1] != '.':
                raise ValueError(
                    f'Help message must start with an upper case letter and end with a dot (.); your message "{help}" is invalid.')
            elif help.count('%') != help.count('%%') * 2:
                raise ValueError(
                    f'Please escape "%" in help message with "%%"; your message "{help}" is invalid.')
        self.defaults_parser.add_argument(*args, **kwargs)
        # Build another parser without any defaults.
        if 'default' in kwargs:
            kwargs.pop('default')
        self.no_defaults_parser.add_argument(*args, **kwargs)
        # Determine the variable that will be used to save the argument by argparse.
        if 'dest' in kwargs:
            dest = kwargs['dest']
        else:
            dest = re.sub('^-*', '', args[-1]).replace('-', '_')
        self.config_file_hierarchies[dest] = hierarchy
        if hierarchy is not None and not private_option:
            self.help_messages[','.join(hierarchy)] = help

    def set_dict_by_hierarchy(self, args_dict, h, value, nonexist_ok=True):
        """Insert an argument into the dictionary of all parameters. The level in this dictionary is determined by list 'h'."""
        current_level = args_dict
        assert len(h) != 0
        for config_name in h:
            if config_name not in current_level:
                if nonexist_ok:
                    current_level[config_name] = {}
                else:
                    raise ValueError(f"Config key {h} not found!")
            last_level = current_level
            current_level = current_level[config_name]
        # Add config value to leaf node.
        last_level[config_name] = value

    def construct_config_dict(self, args_dict, nonexist_ok=True):
        """Based on all arguments from argparse, construct the dictionary of all parameters in self.all_args."""
        for arg_name, arg_val in args_dict.items():
            h = self.config_file_hierarchies[arg_name]
            if h is not None:
                assert len(h) != 0
                self.set_dict_by_hierarchy(self.all_args, h, arg_val,
                                           nonexist_ok=nonexist_ok)

    def update_config_dict(self, old_args_dict, new_args_dict, levels=None):
        """Recursively update the dictionary of all parameters based on the dict read from config file."""
        if levels is None:
            levels = []
        if isinstance(new_args_dict, dict):
            for k in new_args_dict:
                self.update_config_dict(old_args_dict, new_args_dict[k],
                                        levels=levels + [k])
        else:
            # Reached the leaf level. Set the corresponding key.
            self.set_dict_by_hierarchy(old_args_dict, levels, new_args_dict,
                                       nonexist_ok=False)

    def dump_config(self, args_dict, level=None, show_help=False, omit_defaults=False):
        """Generate a config file based on args_dict with help information."""
        if level is None:
            level = []
        ret_string = ''
        for key, val in args_dict.items():
            if isinstance(val, dict):
                ret = self.dump_config(val, level + [key], show_help, omit_defaults)
                if len(ret) > 0:
                    ret_string += ' ' * (len(level) * 2) + f'{key}:\n' + ret
            else:
                if omit_defaults:
                    default_value_key = list(self.config_file_hierarchies.keys())[
                        list(self.config_file_hierarchies.values()).index(level + [key])
                    ]
                    if self.defaults_parser.get_default(default_value_key) == val:
                        continue
                if show_help:
                    h = self.help_messages[','.join(level + [key])]
                    if 'debug' in key or len(h) == 0:
                        continue
                    h = f'  # {h}'
                else:
                    h = ''
                yaml_line = yaml.safe_dump({key: val}, default_flow_style=None).strip().replace('{', '').replace('}', '')
                ret_string += ' ' * (len(level) * 2) + f'{yaml_line}{h}\n'
        return ret_string

    def parse_config(self, args=None, verbose=True):
        """
        Main function to parse parameter configurations. The commandline arguments have the highest priority;
        then the parameters specified in yaml config file. If a parameter does not exist in either commandline
        or the yaml config file, we use the defaults defined in add_common_options() defined above.
        """
        if args is None:
            args = sys.argv[1:]
        self.construct_config_dict(self.default_args)
        # These are arguments specified in command line.
        specified_args = vars(self.no_defaults_parser.parse_args(args))
        if 'config' in specified_args:
            self.file = specified_args['config']
            with open(self.file, 'r') as file:
                loaded_args = yaml.safe_load(file)
                if loaded_args:
                    self.update_config_dict(self.all_args, loaded_args)
        # Finally, override the parameters based on commandline arguments.
        self.construct_config_dict(specified_args, nonexist_ok=False)
        parsed_args = self.defaults_parser.parse_args(args)
        self.update_arguments()
        if verbose:
            print('Configurations:\n')
            print(self.dump_config(self.all_args))
        if self.all_args["debug"]["save_minimal_config"] is not None:
            with open(self.all_args["debug"]["save_minimal_config"], 'w') as f:
                f.write(self.dump_config(self.all_args, omit_defaults=True))
        return parsed_args

    def positive_float_checker(self, x):
        value = float(x)
        if value < 0:
            raise argparse.ArgumentTypeError(f'expected a non-negative value, got {x}')
        return value

    def keys(self):
        return self.all_args.keys()

    def items(self):
        return self.all_args.items()

    def __getitem__(self, key):
        """Read an item from the dictionary of parameters."""
        return self.all_args[key]

    def __setitem__(self, key, value):
        """Set an item from the dictionary of parameters."""
        self.all_args[key] = value


def ensure_config_defaults() -> None:
    """Populate the global Config with defaults when no command line was parsed."""
    if not Config.all_args:
        Config.construct_config_dict(Config.default_args)


# Global configuration variable
Config = ConfigHandler()


if __name__ == '__main__':
    Config.construct_config_dict(Config.default_args)
    print(Config.dump_config(Config.all_args, show_help=True))
