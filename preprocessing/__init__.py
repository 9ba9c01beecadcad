# Preprocessing subpackage
"""
Preprocessing module for the captioning walkthrough.

Contains:
- coco.py: COCO download, caption table loading and image-level splits
- vocab.py: Tokenizer and vocabulary building from captions
- extract.py: CNN backbone feature extraction and .npy caching
"""

import os

# Define the preprocessing directory path
PREPROCESSING_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(PREPROCESSING_DIR)
DATA_DIR = os.environ.get('CAPTIONING_DATA_DIR', os.path.join(PROJECT_ROOT, 'data'))


# Common file paths
def get_vocab_path():
    """Get the path to vocab.pkl file."""
    paths = [
        os.path.join(DATA_DIR, 'vocab.pkl'),
        os.path.join(PREPROCESSING_DIR, 'vocab.pkl'),
    ]
    for path in paths:
        if os.path.exists(path):
            return path
    return paths[0]


def get_annotation_path():
    """Get the path to the COCO train2014 captions file."""
    paths = [
        os.path.join(DATA_DIR, 'coco', 'annotations', 'captions_train2014.json'),
        os.path.join(DATA_DIR, 'annotations', 'captions_train2014.json'),
    ]
    for path in paths:
        if os.path.exists(path):
            return path
    return paths[0]


def get_feature_dir(backbone='inception_v3'):
    """Get the directory holding cached backbone features."""
    return os.path.join(DATA_DIR, 'features', backbone)
