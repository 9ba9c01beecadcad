"""
COCO captions: download, caption table and image-level train/val split.
"""

import os
import json
import random
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

import pandas as pd
from torchvision.datasets.utils import download_and_extract_archive

COCO_URLS = {
    'annotations': 'http://images.cocodataset.org/annotations/annotations_trainval2014.zip',
    'train2014': 'http://images.cocodataset.org/zips/train2014.zip',
}

IMAGE_PREFIX = 'COCO_train2014_'


def download_coco(root: str, images: bool = True) -> Tuple[str, str]:
    """
    Download and extract the COCO 2014 captions (and optionally the images).

    Archives already extracted under `root` are not fetched again.

    Returns:
        (annotation_file, image_folder)
    """
    os.makedirs(root, exist_ok=True)
    annotation_file = os.path.join(root, 'annotations', 'captions_train2014.json')
    image_folder = os.path.join(root, 'train2014')

    if not os.path.exists(annotation_file):
        print(f"Downloading COCO annotations to {root}...")
        download_and_extract_archive(COCO_URLS['annotations'], download_root=root, remove_finished=True)
    else:
        print(f"✓ Annotations found: {annotation_file}")

    if images:
        if not os.path.isdir(image_folder):
            print(f"Downloading COCO train2014 images to {root} (~13GB)...")
            download_and_extract_archive(COCO_URLS['train2014'], download_root=root, remove_finished=True)
        else:
            print(f"✓ Images found: {image_folder}")

    return annotation_file, image_folder


def image_path_for(image_id: int, image_folder: str, prefix: str = IMAGE_PREFIX) -> str:
    return os.path.join(image_folder, f"{prefix}{int(image_id):012d}.jpg")


def load_captions(
    annotation_file: str,
    image_folder: str,
    num_examples: Optional[int] = None,
    seed: int = 1
) -> pd.DataFrame:
    """
    Load COCO caption annotations into a shuffled table.

    Each caption is wrapped as '<start> caption <end>'.

    Args:
        annotation_file: Path to captions_train2014.json
        image_folder: Folder holding the train2014 jpgs
        num_examples: Keep only the first N captions after shuffling
        seed: Shuffle seed

    Returns:
        DataFrame with columns image_id, image_path, caption
    """
    if not os.path.exists(annotation_file):
        raise FileNotFoundError(f"Annotation file not found: {annotation_file}")

    with open(annotation_file, 'r') as f:
        annotations = json.load(f)

    rows = []
    for annot in annotations.get('annotations', []):
        caption = ' '.join(annot['caption'].strip().split())
        rows.append({
            'image_id': int(annot['image_id']),
            'image_path': image_path_for(annot['image_id'], image_folder),
            'caption': f"<start> {caption} <end>",
        })

    if not rows:
        raise ValueError(f"No caption annotations in {annotation_file}")

    random.Random(seed).shuffle(rows)
    if num_examples is not None and num_examples > 0:
        rows = rows[:num_examples]

    return pd.DataFrame(rows, columns=['image_id', 'image_path', 'caption'])


def split_by_image(
    df: pd.DataFrame,
    train_fraction: float = 0.8,
    seed: int = 1
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Split captions so every image lands in exactly one split."""
    if not 0.0 < train_fraction < 1.0:
        raise ValueError(f"train_fraction must be in (0, 1), got {train_fraction}")

    image_paths = sorted(df['image_path'].unique())
    random.Random(seed).shuffle(image_paths)

    n_train = int(round(len(image_paths) * train_fraction))
    if len(image_paths) > 1:
        n_train = min(max(n_train, 1), len(image_paths) - 1)
    train_images = set(image_paths[:n_train])

    in_train = df['image_path'].isin(train_images)
    return df[in_train].reset_index(drop=True), df[~in_train].reset_index(drop=True)


def references_by_image(df: pd.DataFrame) -> Dict[str, List[str]]:
    """Map each image path to its captions, without the <start>/<end> markers."""
    refs = defaultdict(list)
    for image_path, caption in zip(df['image_path'], df['caption']):
        words = [w for w in caption.split() if w not in ('<start>', '<end>')]
        refs[image_path].append(' '.join(words))
    return dict(refs)
