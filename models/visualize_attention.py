"""
Attention and loss plots for the captioner
==========================================

plot_attention overlays the decoder's attention over the spatial feature
grid (8x8 for InceptionV3, 7x7 for ResNet50) on the source image, one
panel per generated word.
"""

import math
import os

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np
from PIL import Image


def attention_grid(weights, grid_size=None):
    """
    Reshape one step's attention (L,) into a square (grid, grid) map.
    """
    weights = np.asarray(weights, dtype=np.float32).reshape(-1)
    if grid_size is None:
        grid_size = int(round(math.sqrt(weights.size)))
    if grid_size * grid_size != weights.size:
        raise ValueError(f"Cannot reshape {weights.size} attention weights into a {grid_size}x{grid_size} grid")
    return weights.reshape(grid_size, grid_size)


def plot_attention(image_path, tokens, attention, save_path, grid_size=None, max_cols=5):
    """
    Plot per-token attention maps over the image.

    Args:
        image_path: Source image file
        tokens: Generated words (one per attention row)
        attention: (T, L) array of attention weights
        save_path: Output png path
    """
    attention = np.asarray(attention)
    num = min(len(tokens), attention.shape[0])
    if num == 0:
        raise ValueError("Nothing to plot: no generated tokens")

    with Image.open(image_path) as img:
        image = np.array(img.convert('RGB'))

    cols = min(max_cols, num)
    rows = int(math.ceil(num / cols))
    fig, axes = plt.subplots(rows, cols, figsize=(4 * cols, 4 * rows), squeeze=False)
    axes = axes.flatten()

    for idx in range(num):
        ax = axes[idx]
        attn_map = attention_grid(attention[idx], grid_size)
        ax.imshow(image)
        # extent stretches the coarse grid over the full image
        ax.imshow(attn_map, cmap='gray', alpha=0.6,
                  extent=(0, image.shape[1], image.shape[0], 0))
        ax.set_title(tokens[idx], fontsize=12)
        ax.axis('off')

    # Hide unused subplots
    for idx in range(num, len(axes)):
        axes[idx].axis('off')

    plt.tight_layout()
    os.makedirs(os.path.dirname(os.path.abspath(save_path)), exist_ok=True)
    plt.savefig(save_path, dpi=150, bbox_inches='tight')
    plt.close(fig)
    print(f"✅ Saved: {save_path}")
    return save_path


def plot_losses(train_losses, val_losses, save_path):
    fig = plt.figure(figsize=(10, 6))
    plt.plot(range(1, len(train_losses) + 1), train_losses, label='Train Loss', marker='o')
    if val_losses:
        plt.plot(range(1, len(val_losses) + 1), val_losses, label='Val Loss', marker='s')
    plt.xlabel('Epoch')
    plt.ylabel('Loss')
    plt.title('Loss Plot')
    plt.legend()
    plt.grid(True, alpha=0.3)
    os.makedirs(os.path.dirname(os.path.abspath(save_path)), exist_ok=True)
    plt.savefig(save_path, dpi=150, bbox_inches='tight')
    plt.close(fig)
    print(f"✅ Saved: {save_path}")
    return save_path
