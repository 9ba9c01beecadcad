import os

import numpy as np
import pytest
from PIL import Image

from models.visualize_attention import attention_grid, plot_attention, plot_losses


def test_attention_grid_square():
    grid = attention_grid(np.arange(64))
    assert grid.shape == (8, 8)
    assert grid[1, 0] == 8


def test_attention_grid_rejects_non_square():
    with pytest.raises(ValueError):
        attention_grid(np.ones(10))


def test_plot_attention(tmp_path):
    image_path = str(tmp_path / 'img.jpg')
    Image.new('RGB', (64, 48), (120, 30, 200)).save(image_path)
    attention = np.random.RandomState(0).rand(3, 49)

    out = plot_attention(image_path, ['a', 'red', 'square'], attention, str(tmp_path / 'plots' / 'attn.png'))
    assert os.path.exists(out)


def test_plot_attention_needs_tokens(tmp_path):
    image_path = str(tmp_path / 'img.jpg')
    Image.new('RGB', (8, 8)).save(image_path)
    with pytest.raises(ValueError):
        plot_attention(image_path, [], np.zeros((0, 4)), str(tmp_path / 'attn.png'))


def test_plot_losses(tmp_path):
    out = plot_losses([3.0, 2.0, 1.5], [3.2, 2.4, 2.0], str(tmp_path / 'loss.png'))
    assert os.path.exists(out)
