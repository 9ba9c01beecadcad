"""
Training Script for the Attention Image Captioner
==================================================
Pipeline:
    COCO captions → vocabulary → cached backbone features → image-level
    train/val split → teacher-forced GRU decoder with Bahdanau attention

Features:
    - Masked cross entropy (padding ignored)
    - Gradient clipping, optional mixed precision (CUDA only)
    - Rolling checkpoints with resume, best-model tracking
    - BLEU tracking on the validation images
    - Early stopping with patience

Usage:
    python -m models.train_captioner --image_folder data/coco/train2014 --epochs 20
    python -m models.train_captioner --download --num_examples 6000 --epochs 5
"""

import os
import json
import time
import argparse
from typing import Dict, List, Optional, Tuple

import torch
import torch.nn as nn
import torch.optim as optim
from torch.utils.data import DataLoader
from tqdm import tqdm

from models import paths
from models.attention_model import AttentionCaptioner, create_model, masked_cross_entropy
from models.checkpoint_manager import CheckpointManager
from models.collate import make_collate_fn
from models.dataloader import CocoFeatureDataset
from models.evaluate_metrics import calculate_bleu_scores, decode_caption
from models.visualize_attention import plot_losses
from preprocessing.coco import download_coco, load_captions, references_by_image, split_by_image
from preprocessing.extract import BACKBONES, build_feature_extractor, cache_features
from preprocessing.vocab import build_vocab, save_vocab
from workstation.gpu_info import select_device, set_seed


# =============================================================================
# SECTION A: Configuration
# =============================================================================

DEFAULT_CONFIG = {
    # Model architecture
    'vocab_size': 5000,          # Will be updated from vocab
    'embed_dim': 256,
    'units': 512,
    'feature_dim': 2048,
    'max_len': 50,               # Will be updated from vocab
    'backbone': 'inception_v3',

    # Data
    'num_examples': 30000,       # Captions kept after shuffling
    'top_k': 5000,               # Vocabulary size
    'train_fraction': 0.8,

    # Training hyperparameters
    'batch_size': 64,
    'learning_rate': 1e-3,
    'weight_decay': 0.0,
    'epochs': 20,
    'patience': 5,               # Early stopping patience
    'grad_clip': 5.0,
    'use_amp': False,
    'num_workers': 2,

    # Checkpointing
    'save_every': 5,             # Save every N epochs
    'max_to_keep': 5,
    'log_every': 100,            # Log every N batches

    # Special tokens
    'pad_id': 0,
    'start_id': 2,
    'end_id': 3,
    'seed': 42
}


# =============================================================================
# SECTION B: Trainer
# =============================================================================

class Trainer:
    """
    Training manager for the attention captioner.
    """

    def __init__(
        self,
        model: AttentionCaptioner,
        train_loader: DataLoader,
        val_loader: Optional[DataLoader],
        config: Dict,
        vocab: Dict,
        device: str = 'cuda',
        output_dir: str = './outputs/captioner',
        references: Optional[Dict[str, List[str]]] = None
    ):
        self.model = model.to(device)
        self.train_loader = train_loader
        self.val_loader = val_loader
        self.config = config
        self.vocab = vocab
        self.device = device
        self.output_dir = output_dir
        self.references = references

        os.makedirs(output_dir, exist_ok=True)

        self.optimizer = optim.Adam(
            model.parameters(),
            lr=config['learning_rate'],
            weight_decay=config['weight_decay']
        )

        # Mixed precision only makes sense on CUDA
        self.use_amp = bool(config['use_amp']) and str(device).startswith('cuda')
        self.scaler = torch.amp.GradScaler('cuda') if self.use_amp else None

        self.ckpt_manager = CheckpointManager(
            os.path.join(output_dir, 'checkpoints'),
            max_to_keep=config['max_to_keep']
        )

        # Tracking
        self.best_val_loss = float('inf')
        self.patience_counter = 0
        self.current_epoch = 0
        self.train_losses: List[float] = []
        self.val_losses: List[float] = []
        self.bleu_scores: List[Dict[str, float]] = []

    def _loss(self, features: torch.Tensor, captions: torch.Tensor) -> torch.Tensor:
        logits, _ = self.model(features, captions)
        return masked_cross_entropy(logits, captions[:, 1:], self.config['pad_id'])

    def train_step(self, features: torch.Tensor, captions: torch.Tensor) -> float:
        """One optimizer step on a batch; returns the per-token loss."""
        self.model.train()
        features = features.to(self.device)
        captions = captions.to(self.device)

        self.optimizer.zero_grad()

        if self.use_amp:
            with torch.amp.autocast('cuda'):
                loss = self._loss(features, captions)
            self.scaler.scale(loss).backward()
            self.scaler.unscale_(self.optimizer)
            nn.utils.clip_grad_norm_(self.model.parameters(), self.config['grad_clip'])
            self.scaler.step(self.optimizer)
            self.scaler.update()
        else:
            loss = self._loss(features, captions)
            loss.backward()
            nn.utils.clip_grad_norm_(self.model.parameters(), self.config['grad_clip'])
            self.optimizer.step()

        return loss.item()

    def train_epoch(self) -> float:
        """
        Train for one epoch.

        Returns:
            Average training loss
        """
        total_loss = 0.0
        num_batches = 0

        pbar = tqdm(self.train_loader, desc=f"Epoch {self.current_epoch + 1}")
        for batch_idx, (features, captions, _) in enumerate(pbar):
            total_loss += self.train_step(features, captions)
            num_batches += 1

            if batch_idx % self.config['log_every'] == 0:
                pbar.set_postfix({'loss': f"{total_loss / num_batches:.4f}"})

        return total_loss / max(num_batches, 1)

    @torch.no_grad()
    def validate(self) -> Tuple[float, Dict[str, float]]:
        """
        Validate the model.

        Returns:
            Tuple of (average loss, BLEU scores dict)
        """
        self.model.eval()
        total_loss = 0.0
        num_batches = 0
        all_references = []
        all_hypotheses = []
        seen = set()

        for features, captions, image_paths in tqdm(self.val_loader, desc="Validating"):
            features = features.to(self.device)
            captions = captions.to(self.device)

            total_loss += self._loss(features, captions).item()
            num_batches += 1

            generated, _ = self.model.generate_greedy(features)
            for i, img_path in enumerate(image_paths):
                # Score each image once
                if img_path in seen:
                    continue
                seen.add(img_path)

                if self.references and img_path in self.references:
                    refs = [r.split() for r in self.references[img_path]]
                else:
                    refs = [decode_caption(captions[i].cpu().tolist(), self.vocab).split()]

                all_references.append(refs)
                all_hypotheses.append(decode_caption(generated[i].cpu().tolist(), self.vocab).split())

        avg_loss = total_loss / max(num_batches, 1)
        return avg_loss, calculate_bleu_scores(all_references, all_hypotheses)

    def _state(self, next_epoch: int) -> Dict:
        return {
            'epoch': next_epoch,
            'model_state_dict': self.model.state_dict(),
            'optimizer_state_dict': self.optimizer.state_dict(),
            'best_val_loss': self.best_val_loss,
            'patience_counter': self.patience_counter,
            'config': self.config,
            'train_losses': self.train_losses,
            'val_losses': self.val_losses,
            'bleu_scores': self.bleu_scores
        }

    def resume(self) -> int:
        """Restore the latest rolling checkpoint; returns the epoch to start at."""
        self.current_epoch = self.ckpt_manager.restore(self.model, self.optimizer, map_location=self.device)
        state = self.ckpt_manager.load_latest(map_location='cpu')
        if state is not None:
            self.best_val_loss = state.get('best_val_loss', float('inf'))
            self.patience_counter = state.get('patience_counter', 0)
            self.train_losses = state.get('train_losses', [])
            self.val_losses = state.get('val_losses', [])
            self.bleu_scores = state.get('bleu_scores', [])
        return self.current_epoch

    def train(self) -> Dict:
        """
        Full training loop.

        Returns:
            Training history dict
        """
        print("\n" + "=" * 60)
        print("Starting Training")
        print("=" * 60)
        print(f"  Device: {self.device}")
        print(f"  Batch size: {self.config['batch_size']}")
        print(f"  Learning rate: {self.config['learning_rate']}")
        print(f"  Epochs: {self.config['epochs']} (starting at {self.current_epoch + 1})")
        print(f"  Early stopping patience: {self.config['patience']}")
        print(f"  Mixed precision: {self.use_amp}")
        print(f"  Output dir: {self.output_dir}")
        print("=" * 60 + "\n")

        start_time = time.time()
        epochs_done = self.current_epoch

        for epoch in range(self.current_epoch, self.config['epochs']):
            self.current_epoch = epoch
            epoch_start = time.time()

            train_loss = self.train_epoch()
            epochs_done = epoch + 1
            self.train_losses.append(train_loss)

            print(f"\nEpoch {epoch + 1}/{self.config['epochs']} ({time.time() - epoch_start:.1f}s)")
            print(f"  Train Loss: {train_loss:.4f}")

            if self.val_loader is not None:
                val_loss, bleu = self.validate()
                self.val_losses.append(val_loss)
                self.bleu_scores.append(bleu)
                print(f"  Val Loss: {val_loss:.4f}")
                print(f"  BLEU-1: {bleu['bleu1']:.4f}")
                print(f"  BLEU-4: {bleu['bleu4']:.4f}")
                monitored = val_loss
                metrics = {'train_loss': train_loss, 'val_loss': val_loss, **bleu}
            else:
                monitored = train_loss
                metrics = {'train_loss': train_loss, 'val_loss': train_loss}

            self.ckpt_manager.save_if_best(self.model, metrics, epoch + 1, criterion='val_loss')

            if monitored < self.best_val_loss:
                self.best_val_loss = monitored
                self.patience_counter = 0
            else:
                self.patience_counter += 1
                print(f"  Patience: {self.patience_counter}/{self.config['patience']}")

            last_epoch = epoch + 1 == self.config['epochs']
            stop = self.patience_counter >= self.config['patience']
            if (epoch + 1) % self.config['save_every'] == 0 or last_epoch or stop:
                self.ckpt_manager.save(self._state(epoch + 1))

            if stop:
                print(f"\n⚠ Early stopping triggered at epoch {epoch + 1}")
                break

        final_path = os.path.join(self.output_dir, 'final_model.pt')
        torch.save(self._state(epochs_done), final_path)

        total_time = time.time() - start_time
        print("\n" + "=" * 60)
        print("Training Complete!")
        print("=" * 60)
        print(f"  Total time: {total_time / 60:.1f} minutes")
        print(f"  Best monitored loss: {self.best_val_loss:.4f}")
        print(f"  Final model: {final_path}")
        print("=" * 60)

        history = {
            'train_losses': self.train_losses,
            'val_losses': self.val_losses,
            'bleu_scores': self.bleu_scores,
            'config': self.config
        }
        with open(os.path.join(self.output_dir, 'training_history.json'), 'w') as f:
            json.dump(history, f, indent=2)

        if self.train_losses:
            plot_losses(self.train_losses, self.val_losses, os.path.join(self.output_dir, 'loss_plot.png'))
        return history


# =============================================================================
# SECTION C: Pipeline
# =============================================================================

def build_config(args, vocab: Dict) -> Dict:
    config = DEFAULT_CONFIG.copy()
    config.update({
        'vocab_size': vocab['vocab_size'],
        'max_len': vocab['max_length'],
        'pad_id': vocab['pad_id'],
        'start_id': vocab['start_id'],
        'end_id': vocab['end_id'],
        'backbone': args.backbone,
        'feature_dim': BACKBONES[args.backbone][2],
        'num_examples': args.num_examples,
        'top_k': args.top_k,
        'batch_size': args.batch_size,
        'epochs': args.epochs,
        'learning_rate': args.lr,
        'patience': args.patience,
        'use_amp': args.amp,
        'num_workers': args.num_workers,
        'seed': args.seed
    })
    return config


def run_pipeline(args) -> Dict:
    set_seed(args.seed)
    device = select_device(args.device)

    annotations, image_folder = args.annotations, args.image_folder
    if args.download:
        annotations, image_folder = download_coco(paths.COCO_DIR)

    print("Loading captions...")
    df = load_captions(annotations, image_folder, num_examples=args.num_examples, seed=args.seed)
    print(f"  Captions: {len(df)}  Images: {df['image_path'].nunique()}")

    print("\nBuilding vocabulary...")
    vocab = build_vocab(df['caption'], top_k=args.top_k)
    save_vocab(vocab, args.vocab_out)
    print(f"  Vocabulary size: {vocab['vocab_size']}  Max length: {vocab['max_length']}")
    print(f"  Saved to {args.vocab_out}")

    feature_dir = args.feature_dir or os.path.join(paths.DATA_DIR, 'features', args.backbone)
    if not args.skip_feature_cache:
        print("\nCaching backbone features...")
        extractor = build_feature_extractor(args.backbone)
        cache_features(df['image_path'], feature_dir, extractor, args.backbone,
                       batch_size=16, device=device)
        del extractor

    train_df, val_df = split_by_image(df, DEFAULT_CONFIG['train_fraction'], seed=args.seed)
    print(f"\n  Train captions: {len(train_df)}  Val captions: {len(val_df)}")

    config = build_config(args, vocab)
    collate = make_collate_fn(vocab['pad_id'])

    train_loader = DataLoader(
        CocoFeatureDataset(train_df, vocab, feature_dir),
        batch_size=config['batch_size'],
        shuffle=True,
        num_workers=config['num_workers'],
        pin_memory=device == 'cuda',
        collate_fn=collate,
        drop_last=len(train_df) > config['batch_size']
    )
    val_loader = DataLoader(
        CocoFeatureDataset(val_df, vocab, feature_dir),
        batch_size=config['batch_size'],
        shuffle=False,
        num_workers=config['num_workers'],
        pin_memory=device == 'cuda',
        collate_fn=collate
    )

    print("\nCreating model...")
    model = create_model(vocab['vocab_size'], config)

    trainer = Trainer(
        model=model,
        train_loader=train_loader,
        val_loader=val_loader,
        config=config,
        vocab=vocab,
        device=device,
        output_dir=args.output_dir,
        references=references_by_image(val_df)
    )
    if args.resume:
        trainer.resume()

    return trainer.train()


def get_args(argv=None):
    parser = argparse.ArgumentParser(description='Train the attention captioner on COCO')

    # Data paths
    parser.add_argument('--annotations', type=str, default=paths.ANNOTATION_FILE)
    parser.add_argument('--image_folder', type=str, default=paths.IMAGE_FOLDER)
    parser.add_argument('--download', action='store_true',
                        help='Download COCO train2014 captions and images first')
    parser.add_argument('--feature_dir', type=str, default=None)
    parser.add_argument('--skip_feature_cache', action='store_true',
                        help='Assume features are already cached')
    parser.add_argument('--vocab_out', type=str, default=paths.VOCAB_PATH)
    parser.add_argument('--backbone', type=str, default='inception_v3', choices=sorted(BACKBONES))

    # Output
    parser.add_argument('--output_dir', type=str, default=os.path.dirname(paths.CHECKPOINT_DIR))

    # Training params
    parser.add_argument('--num_examples', type=int, default=DEFAULT_CONFIG['num_examples'])
    parser.add_argument('--top_k', type=int, default=DEFAULT_CONFIG['top_k'])
    parser.add_argument('--batch_size', type=int, default=DEFAULT_CONFIG['batch_size'])
    parser.add_argument('--epochs', type=int, default=DEFAULT_CONFIG['epochs'])
    parser.add_argument('--lr', type=float, default=DEFAULT_CONFIG['learning_rate'])
    parser.add_argument('--patience', type=int, default=DEFAULT_CONFIG['patience'])
    parser.add_argument('--num_workers', type=int, default=DEFAULT_CONFIG['num_workers'])
    parser.add_argument('--amp', action='store_true', help='Mixed precision (CUDA only)')
    parser.add_argument('--seed', type=int, default=DEFAULT_CONFIG['seed'])

    # Resume training
    parser.add_argument('--resume', action='store_true',
                        help='Resume from the latest checkpoint in output_dir')

    # Device
    parser.add_argument('--device', type=str, default='cuda', choices=['cuda', 'cpu', 'mps'])

    return parser.parse_args(argv)


def main(argv=None):
    run_pipeline(get_args(argv))


if __name__ == '__main__':
    main()
