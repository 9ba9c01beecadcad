import random

import pytest
import torch

from automl.search_space import (DEFAULT_SEARCH_SPACE, Discrete, architecture_key, build_model,
                                 random_specify, space_size)


def test_discrete_assignment():
    h = Discrete([16, 32])
    assert not h.has_value_assigned()
    assert h.is_mutatable()

    h.assign_value(32)
    assert h.has_value_assigned()
    assert h.get_value() == 32


def test_discrete_rejects_foreign_value():
    with pytest.raises(ValueError):
        Discrete([1, 2]).assign_value(3)
    with pytest.raises(ValueError):
        Discrete([])


def test_random_specify_is_seeded_and_valid():
    a = random_specify(rng=random.Random(5))
    b = random_specify(rng=random.Random(5))
    assert a == b
    for name, value in a.items():
        assert value in DEFAULT_SEARCH_SPACE[name]


def test_architecture_key_ignores_order():
    assert architecture_key({'a': 1, 'b': 2}) == architecture_key({'b': 2, 'a': 1})


def test_space_size():
    assert space_size({'x': [1, 2], 'y': [1, 2, 3]}) == 6


@pytest.mark.parametrize('num_blocks', [1, 2, 3])
def test_build_model_output_shape(num_blocks):
    arch = {
        'num_conv_blocks': num_blocks,
        'filters': 4,
        'kernel_size': 3,
        'use_batchnorm': True,
        'dropout': 0.25,
        'dense_units': 16,
        'learning_rate': 1e-3,
    }
    model = build_model(arch, (1, 28, 28), num_classes=10)
    assert model(torch.randn(2, 1, 28, 28)).shape == (2, 10)


def test_build_model_skips_pooling_on_tiny_inputs():
    arch = {
        'num_conv_blocks': 3,
        'filters': 2,
        'kernel_size': 5,
        'use_batchnorm': False,
        'dropout': 0.0,
        'dense_units': 8,
        'learning_rate': 1e-3,
    }
    model = build_model(arch, (3, 3, 3), num_classes=4)
    assert model(torch.randn(1, 3, 3, 3)).shape == (1, 4)
