# Paths configuration for the walkthrough project
"""
Central path configuration.
All file paths should be defined here for easy management.

CAPTIONING_DATA_DIR and CAPTIONING_OUTPUT_DIR relocate the data and output
roots (useful on a cloud workstation with a separate storage volume).
"""

import os
import json

# Project root is the parent of this models/ folder
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# Main directories
DATA_DIR = os.environ.get('CAPTIONING_DATA_DIR', os.path.join(PROJECT_ROOT, 'data'))
OUTPUTS_DIR = os.environ.get('CAPTIONING_OUTPUT_DIR', os.path.join(PROJECT_ROOT, 'outputs'))
MODELS_DIR = os.path.join(PROJECT_ROOT, 'models')

# COCO
COCO_DIR = os.path.join(DATA_DIR, 'coco')
ANNOTATION_FILE = os.path.join(COCO_DIR, 'annotations', 'captions_train2014.json')
IMAGE_FOLDER = os.path.join(COCO_DIR, 'train2014')

# Preprocessed files
BACKBONE = 'inception_v3'
FEATURE_DIR = os.path.join(DATA_DIR, 'features', BACKBONE)
VOCAB_PATH = os.path.join(DATA_DIR, 'vocab.pkl')

# Results directories
CHECKPOINT_DIR = os.path.join(OUTPUTS_DIR, 'captioner', 'checkpoints')
ATTENTION_PLOTS_DIR = os.path.join(OUTPUTS_DIR, 'captioner', 'attention')
DOWNLOAD_CACHE_DIR = os.path.join(DATA_DIR, 'downloads')
MNIST_DIR = os.path.join(DATA_DIR, 'mnist')
AUTOML_DIR = os.path.join(OUTPUTS_DIR, 'automl')


def find_latest_checkpoint(checkpoint_dir=CHECKPOINT_DIR):
    """Find the newest checkpoint, preferring the index written by CheckpointManager."""
    index_path = os.path.join(checkpoint_dir, 'checkpoint.json')
    if os.path.exists(index_path):
        with open(index_path, 'r') as f:
            checkpoints = [c for c in json.load(f).get('checkpoints', []) if os.path.exists(c)]
        if checkpoints:
            return checkpoints[-1]

    final_path = os.path.join(os.path.dirname(checkpoint_dir), 'final_model.pt')
    return final_path  # Return default even if not exists


def print_paths():
    """Print all configured paths for debugging."""
    print("="*70)
    print("Project Paths Configuration")
    print("="*70)
    print(f"PROJECT_ROOT:      {PROJECT_ROOT}")
    print(f"DATA_DIR:          {DATA_DIR}")
    print(f"OUTPUTS_DIR:       {OUTPUTS_DIR}")
    print(f"ANNOTATION_FILE:   {ANNOTATION_FILE}")
    print(f"IMAGE_FOLDER:      {IMAGE_FOLDER}")
    print(f"FEATURE_DIR:       {FEATURE_DIR}")
    print(f"VOCAB_PATH:        {VOCAB_PATH}")
    print(f"CHECKPOINT_DIR:    {CHECKPOINT_DIR}")
    print(f"MNIST_DIR:         {MNIST_DIR}")
    print(f"AUTOML_DIR:        {AUTOML_DIR}")
    print(f"LATEST_CHECKPOINT: {find_latest_checkpoint()}")
    print("="*70)


if __name__ == '__main__':
    print_paths()
