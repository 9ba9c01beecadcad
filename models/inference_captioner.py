"""
Inference Script for the Attention Image Captioner
===================================================
Features:
    - Single image, image URL, or whole-folder captioning
    - Greedy, beam search and sampled decoding
    - Attention plot per generated word

Usage:
    python -m models.inference_captioner --image path/to/image.jpg --plot
    python -m models.inference_captioner --image_url https://tensorflow.org/images/surf.jpg --plot
    python -m models.inference_captioner --image_folder path/to/images --method beam
"""

import os
import json
import argparse
import hashlib
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

import numpy as np
import torch

from models import paths
from models.attention_model import load_model_checkpoint
from models.visualize_attention import plot_attention
from preprocessing.extract import build_feature_extractor, load_image
from preprocessing.vocab import load_vocab
from workstation.gpu_info import select_device

IMAGE_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.bmp', '.tiff')


class CaptionGenerator:
    """
    Caption generator for the attention captioner.

    Handles:
        - Model, vocabulary and backbone loading
        - Image preprocessing and feature extraction
        - Caption generation (greedy/beam/sample)
        - Text decoding with per-word attention
    """

    def __init__(
        self,
        model_path: str,
        vocab_path: str,
        device: str = 'cuda',
        backbone: Optional[str] = None,
        pretrained_backbone: bool = True
    ):
        """
        Args:
            model_path: Checkpoint written by the trainer (.pt)
            vocab_path: vocab.pkl used during training
            device: Preferred device
            backbone: Feature extractor; defaults to the one stored in the checkpoint config
        """
        self.device = select_device(device)

        print("Loading vocabulary...")
        self.vocab = load_vocab(vocab_path)
        print(f"  Vocabulary size: {self.vocab['vocab_size']}")

        print("Loading model...")
        self.model, self.config = load_model_checkpoint(model_path, device=self.device)
        if self.config['vocab_size'] != self.vocab['vocab_size']:
            raise ValueError(
                f"Vocabulary size {self.vocab['vocab_size']} does not match checkpoint ({self.config['vocab_size']})")

        self.backbone = backbone or self.config.get('backbone', 'inception_v3')
        self.extractor = build_feature_extractor(self.backbone, pretrained=pretrained_backbone).to(self.device)
        print(f"  Model loaded on {self.device} ({self.backbone} features)")

    def preprocess_image(self, image_path: str) -> torch.Tensor:
        """Load an image as a (1, 3, H, W) tensor on the target device."""
        return load_image(image_path, self.backbone).unsqueeze(0).to(self.device)

    @torch.no_grad()
    def caption_features(
        self,
        features: torch.Tensor,
        method: str = 'greedy',
        beam_width: int = 3,
        temperature: float = 1.0
    ) -> Tuple[str, List[int], np.ndarray]:
        """
        Caption precomputed features of one image.

        Args:
            features: (1, L, D)
            method: 'greedy', 'beam', or 'sample'

        Returns:
            (caption, token_ids, attention (T, L)) where attention row t
            produced token_ids[t + 1]
        """
        if method == 'greedy':
            tokens, attention = self.model.generate_greedy(features, temperature=temperature)
        elif method == 'sample':
            tokens, attention = self.model.generate_greedy(features, temperature=temperature, sample=True)
        elif method == 'beam':
            tokens, attention = self.model.generate_beam(features, beam_width=beam_width)
        else:
            raise ValueError(f"Unknown method: {method}")

        token_ids = tokens[0].cpu().tolist()
        return self.decode_tokens(token_ids), token_ids, attention[0].cpu().numpy()

    def decode_tokens(self, token_ids: List[int]) -> str:
        return ' '.join(self.words_for(token_ids))

    def words_for(self, token_ids: List[int]) -> List[str]:
        """Words between <start> and <end>."""
        words = []
        for tid in token_ids[1:]:
            if tid == self.vocab['pad_id']:
                break
            if tid == self.vocab['end_id']:
                break
            words.append(self.vocab['itos'].get(tid, '<unk>'))
        return words

    @torch.no_grad()
    def caption_image(self, image_path: str, method: str = 'greedy', **kwargs) -> Dict:
        features = self.extractor(self.preprocess_image(image_path))
        caption, token_ids, attention = self.caption_features(features, method=method, **kwargs)
        return {
            'image_path': image_path,
            'caption': caption,
            'token_ids': token_ids,
            'attention': attention
        }

    def caption_url(self, url: str, cache_dir: str = paths.DOWNLOAD_CACHE_DIR, **kwargs) -> Dict:
        """Download an image once into cache_dir and caption it."""
        os.makedirs(cache_dir, exist_ok=True)
        name = os.path.basename(urlparse(url).path) or 'image.jpg'
        digest = hashlib.sha1(url.encode('utf-8')).hexdigest()[:10]
        local_path = os.path.join(cache_dir, f"{digest}_{name}")
        if not os.path.exists(local_path):
            torch.hub.download_url_to_file(url, local_path, progress=True)
        return self.caption_image(local_path, **kwargs)

    def plot(self, result: Dict, save_path: str) -> str:
        """Attention figure for a caption_image() result, <end> included."""
        words = self.words_for(result['token_ids'])
        if len(result['token_ids']) > len(words) + 1 and result['token_ids'][len(words) + 1] == self.vocab['end_id']:
            words = words + ['<end>']
        return plot_attention(result['image_path'], words, result['attention'][:len(words)], save_path)

    def batch_caption_folder(self, image_folder: str, method: str = 'greedy', **kwargs) -> List[Dict]:
        if not os.path.isdir(image_folder):
            raise FileNotFoundError(f"Image folder not found: {image_folder}")

        files = sorted(f for f in os.listdir(image_folder) if f.lower().endswith(IMAGE_EXTENSIONS))
        results = []
        for i, name in enumerate(files):
            result = self.caption_image(os.path.join(image_folder, name), method=method, **kwargs)
            print(f"[{i + 1}/{len(files)}] {name}: {result['caption']}")
            results.append(result)
        return results


def main():
    parser = argparse.ArgumentParser(description='Caption images with the attention captioner')
    parser.add_argument('--checkpoint', type=str, default=paths.find_latest_checkpoint())
    parser.add_argument('--vocab', type=str, default=paths.VOCAB_PATH)

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument('--image', type=str)
    source.add_argument('--image_url', type=str)
    source.add_argument('--image_folder', type=str)

    parser.add_argument('--method', type=str, default='greedy', choices=['greedy', 'beam', 'sample'])
    parser.add_argument('--beam_width', type=int, default=3)
    parser.add_argument('--plot', action='store_true', help='Save attention plots')
    parser.add_argument('--output_dir', type=str, default=paths.ATTENTION_PLOTS_DIR)
    parser.add_argument('--device', type=str, default='cuda', choices=['cuda', 'cpu', 'mps'])
    args = parser.parse_args()

    generator = CaptionGenerator(args.checkpoint, args.vocab, device=args.device)
    kwargs = {'method': args.method}
    if args.method == 'beam':
        kwargs['beam_width'] = args.beam_width

    if args.image:
        results = [generator.caption_image(args.image, **kwargs)]
    elif args.image_url:
        results = [generator.caption_url(args.image_url, **kwargs)]
    else:
        results = generator.batch_caption_folder(args.image_folder, **kwargs)

    print("\n" + "=" * 60)
    for r in results:
        print(f"{os.path.basename(r['image_path'])}: {r['caption']}")
        if args.plot:
            stem = os.path.splitext(os.path.basename(r['image_path']))[0]
            generator.plot(r, os.path.join(args.output_dir, f"{stem}_attention.png"))
    print("=" * 60)

    if args.image_folder:
        os.makedirs(args.output_dir, exist_ok=True)
        out_file = os.path.join(args.output_dir, 'captions.json')
        with open(out_file, 'w') as f:
            json.dump({os.path.basename(r['image_path']): r['caption'] for r in results}, f, indent=2)
        print(f"💾 Captions saved to: {out_file}")


if __name__ == '__main__':
    main()
