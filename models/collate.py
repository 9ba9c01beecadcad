import torch
from torch.nn.utils.rnn import pad_sequence


def caption_collate_fn(batch, pad_id=0):
    """
    Collate function for CocoFeatureDataset.

    Captions are padded to the longest one in the batch, not to the
    dataset-wide maximum.

    Args:
        batch: List of (features, caption_ids, image_path) tuples
        pad_id: Padding token id

    Returns:
        features: (B, L, D)
        captions: (B, max_seq_len)
        image_paths: List of str
    """
    features = torch.stack([b[0] for b in batch])
    captions = pad_sequence([b[1] for b in batch], batch_first=True, padding_value=pad_id)
    image_paths = [b[2] for b in batch]
    return features, captions, image_paths


def make_collate_fn(pad_id=0):
    """Collate function bound to a vocabulary's pad id (picklable for DataLoader workers)."""
    return _PadCollate(pad_id)


class _PadCollate:
    def __init__(self, pad_id):
        self.pad_id = pad_id

    def __call__(self, batch):
        return caption_collate_fn(batch, pad_id=self.pad_id)
