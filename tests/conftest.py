"""Shared fixtures: a tiny caption corpus, its vocabulary and cached features."""

import os
import sys
import json

import numpy as np
import pytest

REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from preprocessing.coco import load_captions  # noqa: E402
from preprocessing.extract import feature_cache_path  # noqa: E402
from preprocessing.vocab import build_vocab  # noqa: E402

NUM_POSITIONS = 4
FEATURE_DIM = 8

CAPTIONS = {
    1: ["A dog runs on the grass.", "A brown dog playing outside"],
    2: ["Two cats sleep on a couch", "Cats resting on the sofa."],
    3: ["A man rides a surfboard on a wave", "Surfer riding a big wave"],
    4: ["A plate of food with broccoli", "Broccoli and rice on a plate"],
}


@pytest.fixture
def annotation_file(tmp_path):
    annotations = []
    ann_id = 0
    for image_id, captions in CAPTIONS.items():
        for caption in captions:
            ann_id += 1
            annotations.append({'id': ann_id, 'image_id': image_id, 'caption': caption})

    path = tmp_path / 'captions_train2014.json'
    path.write_text(json.dumps({'annotations': annotations}))
    return str(path)


@pytest.fixture
def caption_df(annotation_file, tmp_path):
    return load_captions(annotation_file, str(tmp_path / 'train2014'))


@pytest.fixture
def vocab(caption_df):
    return build_vocab(caption_df['caption'], top_k=100)


@pytest.fixture
def feature_dir(caption_df, tmp_path):
    directory = tmp_path / 'features'
    directory.mkdir()
    rng = np.random.RandomState(0)
    for image_path in caption_df['image_path'].unique():
        feats = rng.rand(NUM_POSITIONS, FEATURE_DIM).astype(np.float32)
        np.save(feature_cache_path(image_path, str(directory)), feats)
    return str(directory)
