import os
import json

import pytest

from preprocessing.coco import image_path_for, load_captions, references_by_image, split_by_image


def test_image_path_is_zero_padded():
    path = image_path_for(42, 'imgs')
    assert os.path.basename(path) == 'COCO_train2014_000000000042.jpg'


def test_load_captions_wraps_markers(caption_df):
    assert len(caption_df) == 8
    assert list(caption_df.columns) == ['image_id', 'image_path', 'caption']
    for caption in caption_df['caption']:
        assert caption.startswith('<start> ')
        assert caption.endswith(' <end>')


def test_load_captions_is_deterministic(annotation_file, tmp_path):
    a = load_captions(annotation_file, str(tmp_path), seed=3)
    b = load_captions(annotation_file, str(tmp_path), seed=3)
    assert a['caption'].tolist() == b['caption'].tolist()


def test_num_examples(annotation_file, tmp_path):
    df = load_captions(annotation_file, str(tmp_path), num_examples=3)
    assert len(df) == 3


def test_load_captions_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_captions(str(tmp_path / 'nope.json'), str(tmp_path))

    empty = tmp_path / 'empty.json'
    empty.write_text(json.dumps({'annotations': []}))
    with pytest.raises(ValueError):
        load_captions(str(empty), str(tmp_path))


def test_split_keeps_images_apart(caption_df):
    train_df, val_df = split_by_image(caption_df, train_fraction=0.5)

    assert len(train_df) + len(val_df) == len(caption_df)
    assert set(train_df['image_path']).isdisjoint(set(val_df['image_path']))
    assert train_df['image_path'].nunique() == 2


def test_split_never_empties_a_side(caption_df):
    train_df, val_df = split_by_image(caption_df, train_fraction=0.99)
    assert len(val_df) > 0


def test_split_rejects_bad_fraction(caption_df):
    with pytest.raises(ValueError):
        split_by_image(caption_df, train_fraction=1.0)


def test_references_strip_markers(caption_df):
    refs = references_by_image(caption_df)
    assert len(refs) == 4
    for captions in refs.values():
        assert len(captions) == 2
        for caption in captions:
            assert '<start>' not in caption and '<end>' not in caption
