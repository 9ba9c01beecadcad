"""
Search space of small convolutional image classifiers.

An architecture is a plain dict {hyperparameter name: chosen value}, which
keeps it JSON-serializable for search histories and exported models.
"""

import json
import random
from typing import Dict, List, Optional, Sequence, Tuple

import torch.nn as nn


class Discrete:
    """Hyperparameter that takes one of a finite list of values."""

    def __init__(self, vs: Sequence):
        if len(vs) == 0:
            raise ValueError("Discrete hyperparameter needs at least one value")
        self.vs = list(vs)
        self._value = None
        self._assigned = False

    def has_value_assigned(self) -> bool:
        return self._assigned

    def assign_value(self, value):
        assert not self._assigned
        if value not in self.vs:
            raise ValueError(f"{value!r} is not one of {self.vs}")
        self._value = value
        self._assigned = True

    def get_value(self):
        assert self._assigned
        return self._value

    def is_mutatable(self) -> bool:
        return len(self.vs) > 1


DEFAULT_SEARCH_SPACE: Dict[str, List] = {
    'num_conv_blocks': [1, 2, 3],
    'filters': [16, 32, 64],
    'kernel_size': [3, 5],
    'use_batchnorm': [True, False],
    'dropout': [0.0, 0.25, 0.5],
    'dense_units': [64, 128, 256],
    'learning_rate': [1e-3, 3e-4],
}


def make_hyperparameters(space: Optional[Dict[str, List]] = None) -> Dict[str, Discrete]:
    space = space or DEFAULT_SEARCH_SPACE
    return {name: Discrete(vs) for name, vs in space.items()}


def random_specify(space: Optional[Dict[str, List]] = None, rng: Optional[random.Random] = None) -> Dict:
    """Choose a random value for every hyperparameter of the space."""
    rng = rng or random.Random()
    hyperps = make_hyperparameters(space)
    for name in sorted(hyperps):
        h = hyperps[name]
        h.assign_value(h.vs[rng.randrange(len(h.vs))])
    return {name: h.get_value() for name, h in hyperps.items()}


def architecture_key(arch: Dict) -> str:
    """Stable string identity of an architecture."""
    return json.dumps(arch, sort_keys=True)


def space_size(space: Optional[Dict[str, List]] = None) -> int:
    size = 1
    for vs in (space or DEFAULT_SEARCH_SPACE).values():
        size *= len(vs)
    return size


def build_model(arch: Dict, input_shape: Tuple[int, int, int], num_classes: int) -> nn.Sequential:
    """
    Build the classifier encoded by `arch`.

    Each conv block doubles the filter count and halves the spatial size;
    pooling is skipped once the feature map is smaller than 2x2.

    Args:
        arch: Architecture dict (see DEFAULT_SEARCH_SPACE)
        input_shape: (channels, height, width)
        num_classes: Output classes
    """
    channels, height, width = input_shape
    kernel = arch['kernel_size']
    layers = []

    in_ch = channels
    out_ch = arch['filters']
    for _ in range(arch['num_conv_blocks']):
        layers.append(nn.Conv2d(in_ch, out_ch, kernel_size=kernel, padding=kernel // 2,
                                bias=not arch['use_batchnorm']))
        if arch['use_batchnorm']:
            layers.append(nn.BatchNorm2d(out_ch))
        layers.append(nn.ReLU(inplace=True))
        if height >= 2 and width >= 2:
            layers.append(nn.MaxPool2d(2, 2))
            height, width = height // 2, width // 2
        in_ch, out_ch = out_ch, out_ch * 2

    layers.append(nn.Flatten())
    if arch['dropout'] > 0:
        layers.append(nn.Dropout(arch['dropout']))
    layers.append(nn.Linear(in_ch * height * width, arch['dense_units']))
    layers.append(nn.ReLU(inplace=True))
    layers.append(nn.Linear(arch['dense_units'], num_classes))
    return nn.Sequential(*layers)
