# Models Package - Attention captioner and supporting modules
"""
Models subpackage for the image captioning walkthrough

Contains:
- attention_model.py: AttentionCaptioner - CNN encoder + Bahdanau attention + GRU decoder
- dataloader.py: CocoFeatureDataset - cached image features paired with captions
- collate.py: Collate functions that pad captions per batch
- train_captioner.py: Training loop with early stopping and checkpoint rotation
- evaluate_metrics.py: BLEU/ROUGE metric evaluation
- inference_captioner.py: Greedy, sampled and beam search captioning
- visualize_attention.py: Attention map and loss curve plots
- checkpoint_manager.py: Rolling checkpoints and best-model tracking
- paths.py: Centralized path configuration
"""

import os

# Get the models directory path
MODELS_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(MODELS_DIR)

# Import main classes for easy access
from .attention_model import AttentionCaptioner, BahdanauAttention, CNNEncoder, RNNDecoder
from .dataloader import CocoFeatureDataset
from .collate import caption_collate_fn, make_collate_fn
from .checkpoint_manager import CheckpointManager

__all__ = [
    'AttentionCaptioner',
    'BahdanauAttention',
    'CNNEncoder',
    'RNNDecoder',
    'CocoFeatureDataset',
    'caption_collate_fn',
    'make_collate_fn',
    'CheckpointManager',
    'MODELS_DIR',
    'PROJECT_ROOT',
]
