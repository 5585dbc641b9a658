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
import torch

from relu_mip import NetworkDescriptor, ShapeError
from relu_mip import arguments
from relu_mip.loading import (
    load_bounds, load_initial_bounds, load_network, save_bounds, save_npy_network
)
from relu_mip.main import BoundTightener


@pytest.fixture
def restore_config():
    saved = arguments.Config.all_args
    arguments.Config.all_args = {}
    yield arguments.Config
    arguments.Config.all_args = saved


def test_npy_directory(tmp_path, small_network) -> None:
    save_npy_network(small_network, tmp_path)
    assert (tmp_path / 'layer_1_biases.npy').exists()
    loaded = load_network(str(tmp_path))
    assert loaded.node_count == small_network.node_count
    assert np.array_equal(loaded.weights[0], small_network.weights[0])


def test_npy_directory_with_gap(tmp_path, small_network) -> None:
    save_npy_network(small_network, tmp_path)
    (tmp_path / 'layer_0_weights.npy').rename(tmp_path / 'layer_2_weights.npy')
    with pytest.raises(ShapeError):
        load_network(str(tmp_path))


def test_torch_files(tmp_path, small_network) -> None:
    model = small_network.to_torch(dtype=torch.float32)
    torch.save(model, tmp_path / 'model.pt')
    torch.save({'state_dict': model.state_dict()}, tmp_path / 'checkpoint.pth')
    for name in ['model.pt', 'checkpoint.pth']:
        loaded = load_network(str(tmp_path / name))
        assert loaded.node_count == small_network.node_count
        assert np.allclose(loaded.forward([0.3, -0.2]), small_network.forward([0.3, -0.2]), atol=1e-5)


def test_initial_bounds_from_config(tmp_path, small_network, restore_config) -> None:
    restore_config.parse_config(['--input_lower', '-1', '--input_upper', '1', '--init_bound', '50'],
                                verbose=False)
    lower, upper = load_initial_bounds(small_network)
    assert lower.tolist() == [-1., -1., -50., -50., -50., -50.]
    assert upper.tolist() == [1., 1., 50., 50., 50., 50.]

    restore_config['bounds']['init_method'] = 'interval'
    lower, upper = load_initial_bounds(small_network)
    assert lower[2:5].tolist() == [3., 1., 0.]

    save_bounds(tmp_path, lower, upper)
    restore_config['bounds']['load_dir'] = str(tmp_path)
    loaded_lower, loaded_upper = load_initial_bounds(small_network)
    assert np.array_equal(loaded_lower, lower)
    assert np.array_equal(loaded_upper, upper)

    restore_config['bounds']['load_dir'] = None
    restore_config['bounds']['input_lower'] = [-1., -1., -1.]
    with pytest.raises(ShapeError):
        load_initial_bounds(small_network)


def test_driver(gurobi, tmp_path, small_network, restore_config) -> None:
    save_npy_network(small_network, tmp_path / 'model')
    tightener = BoundTightener(
        args=['--model', str(tmp_path / 'model'), '--save_dir', str(tmp_path / 'out')],
        input_lower=[-1, -1], input_upper=[1, 1], init_bound=1000, prune=True)
    ret = tightener.main()
    assert ret['lower'] == pytest.approx([-1., -1., 3., 1., 0., 9.2], abs=1e-6)
    lower, upper = load_bounds(tmp_path / 'out')
    assert upper == pytest.approx([1., 1., 7., 7., 12., 19.2], abs=1e-6)
    assert ret['prune_report'].is_close
    pruned = load_network(str(tmp_path / 'out' / 'pruned'))
    assert isinstance(pruned, NetworkDescriptor)
