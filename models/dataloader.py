import os
import numpy as np
import torch
from torch.utils.data import Dataset

from preprocessing.extract import feature_cache_path
from preprocessing.vocab import encode


class CocoFeatureDataset(Dataset):
    def __init__(self, df, vocab, feature_dir):
        """
        Args:
            df: Caption table with image_path and caption columns.
            vocab: Vocabulary dict from preprocessing.vocab.build_vocab.
            feature_dir: Folder with the cached .npy backbone features.
        """
        self.df = df.reset_index(drop=True)
        self.vocab = vocab
        self.feature_dir = feature_dir
        self.max_length = vocab.get('max_length') or None

        # Tokenize once up front
        self.token_ids = [encode(c, vocab) for c in self.df['caption']]

    def __len__(self):
        return len(self.df)

    def __getitem__(self, idx):
        img_path = self.df.iloc[idx]['image_path']
        npy_path = feature_cache_path(img_path, self.feature_dir)
        if not os.path.exists(npy_path):
            raise FileNotFoundError(
                f"No cached features for {img_path} (expected {npy_path}); run preprocessing.extract first")

        features = torch.from_numpy(np.load(npy_path).astype(np.float32))

        ids = self.token_ids[idx]
        if self.max_length:
            ids = ids[:self.max_length]
        caption_ids = torch.tensor(ids, dtype=torch.long)

        # Return filename for multi-reference evaluation
        return features, caption_ids, img_path
