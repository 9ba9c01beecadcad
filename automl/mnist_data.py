"""
MNIST arrays in the channels-last layout the AutoML walkthrough uses:
x has shape (N, 28, 28, 1) uint8, y has shape (N,) int64.
"""

from typing import Tuple

import numpy as np
import torch
from torchvision import datasets


def load_mnist(root: str, download: bool = True) -> Tuple[Tuple[np.ndarray, np.ndarray], Tuple[np.ndarray, np.ndarray]]:
    """
    Returns:
        ((x_train, y_train), (x_test, y_test))
    """
    train = datasets.MNIST(root=root, train=True, download=download)
    test = datasets.MNIST(root=root, train=False, download=download)

    def arrays(ds):
        x = ds.data.numpy().astype(np.uint8)
        y = ds.targets.numpy().astype(np.int64)
        return x.reshape(x.shape + (1,)), y

    return arrays(train), arrays(test)


def to_tensor(x: np.ndarray) -> torch.Tensor:
    """
    Convert images to a float (N, C, H, W) tensor.

    Accepts (N, H, W) or channels-last (N, H, W, C); uint8 inputs are
    scaled to [0, 1].
    """
    x = np.asarray(x)
    if x.ndim == 3:
        x = x[..., np.newaxis]
    if x.ndim != 4:
        raise ValueError(f"Expected images shaped (N, H, W) or (N, H, W, C), got {x.shape}")

    tensor = torch.from_numpy(np.ascontiguousarray(x)).permute(0, 3, 1, 2).float()
    if x.dtype == np.uint8:
        tensor = tensor / 255.0
    return tensor.contiguous()
