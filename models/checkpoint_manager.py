"""
Checkpoint Manager - rolling training checkpoints plus best-model tracking
Keeps in one folder:
- ckpt-<n>.pt files (only the newest `max_to_keep` survive)
- checkpoint.json (index of surviving checkpoints, newest last)
- best_model.pt + metrics.json (updated when the chosen metric improves)
- history.json (every metrics snapshot, for analysis)
"""

import os
import json
import torch
from datetime import datetime
from typing import Dict, Any, List, Optional


class CheckpointManager:
    """
    Saves numbered checkpoints, prunes old ones and restores the latest.
    Also compares metrics each epoch and keeps the best model separately.
    """

    def __init__(self, directory: str, max_to_keep: int = 5):
        """
        Args:
            directory: Folder for checkpoints and metrics
            max_to_keep: Number of rolling checkpoints to retain
        """
        if max_to_keep < 1:
            raise ValueError(f"max_to_keep must be >= 1, got {max_to_keep}")

        self.directory = directory
        self.max_to_keep = max_to_keep
        os.makedirs(directory, exist_ok=True)

        self.index_path = os.path.join(directory, "checkpoint.json")
        self.best_model_path = os.path.join(directory, "best_model.pt")
        self.metrics_path = os.path.join(directory, "metrics.json")
        self.history_path = os.path.join(directory, "history.json")

        index = self._load_json(self.index_path, {'checkpoints': [], 'save_counter': 0})
        self.checkpoints: List[str] = [c for c in index['checkpoints'] if os.path.exists(c)]
        self.save_counter: int = index['save_counter']

        self.best_metrics = self._load_json(self.metrics_path, None)
        self.history = self._load_json(self.history_path, [])

    @staticmethod
    def _load_json(path, default):
        if os.path.exists(path):
            with open(path, 'r') as f:
                return json.load(f)
        return default

    @staticmethod
    def _save_json(path, payload):
        with open(path, 'w') as f:
            json.dump(payload, f, indent=4)

    # ------------------------------------------------------------------
    # Rolling checkpoints
    # ------------------------------------------------------------------

    @property
    def latest_checkpoint(self) -> Optional[str]:
        return self.checkpoints[-1] if self.checkpoints else None

    def save(self, state: Dict[str, Any]) -> str:
        """
        Write `state` as the next numbered checkpoint and prune old ones.

        Returns:
            Path of the new checkpoint
        """
        self.save_counter += 1
        path = os.path.join(self.directory, f"ckpt-{self.save_counter}.pt")
        torch.save(state, path)
        self.checkpoints.append(path)

        while len(self.checkpoints) > self.max_to_keep:
            stale = self.checkpoints.pop(0)
            if os.path.exists(stale):
                os.remove(stale)

        self._save_json(self.index_path, {
            'checkpoints': self.checkpoints,
            'save_counter': self.save_counter
        })
        print(f"  ✓ Saved checkpoint: {os.path.basename(path)}")
        return path

    def load_latest(self, map_location='cpu') -> Optional[Dict[str, Any]]:
        """Raw state dict of the latest checkpoint, or None."""
        if self.latest_checkpoint is None:
            return None
        return torch.load(self.latest_checkpoint, map_location=map_location, weights_only=False)

    def restore(self, model: torch.nn.Module, optimizer=None, scheduler=None,
                map_location='cpu') -> int:
        """
        Load the latest checkpoint into model (and optimizer/scheduler).

        Returns:
            Epoch to resume from (0 when no checkpoint exists)
        """
        checkpoint = self.load_latest(map_location=map_location)
        if checkpoint is None:
            return 0

        model.load_state_dict(checkpoint['model_state_dict'])
        if optimizer is not None and 'optimizer_state_dict' in checkpoint:
            optimizer.load_state_dict(checkpoint['optimizer_state_dict'])
        if scheduler is not None and 'scheduler_state_dict' in checkpoint:
            scheduler.load_state_dict(checkpoint['scheduler_state_dict'])

        start_epoch = checkpoint.get('epoch', 0)
        print(f"  ✓ Restored {os.path.basename(self.latest_checkpoint)} (resuming at epoch {start_epoch})")
        return start_epoch

    # ------------------------------------------------------------------
    # Best-model tracking
    # ------------------------------------------------------------------

    def _is_better(self, new_metrics: Dict[str, Any], criterion: str = 'val_loss') -> bool:
        """
        Compare new metrics with best metrics to determine if new model is better.

        Args:
            new_metrics: New metrics to compare
            criterion: Primary metric ('val_loss', 'bleu4', 'rouge_l', 'val_accuracy')

        Returns:
            True if new metrics are better, False otherwise
        """
        if self.best_metrics is None:
            return True  # First model is always best

        higher_is_better = {'bleu1', 'bleu2', 'bleu3', 'bleu4', 'rouge_l', 'val_accuracy'}

        new_value = new_metrics.get(criterion)
        best_value = self.best_metrics.get(criterion)
        if new_value is None or best_value is None:
            print(f"⚠️ Warning: Criterion '{criterion}' not found in metrics")
            return False

        if criterion in higher_is_better:
            return new_value > best_value
        # Default: losses, lower is better
        return new_value < best_value

    def save_if_best(self,
                     model: torch.nn.Module,
                     metrics: Dict[str, Any],
                     epoch: int,
                     criterion: str = 'val_loss',
                     additional_info: Optional[Dict[str, Any]] = None) -> bool:
        """
        Save model weights only if `criterion` improved on the previous best.

        Returns:
            True if model was saved (is new best), False otherwise
        """
        current_metrics = {
            **metrics,
            'epoch': epoch,
            'timestamp': datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            'criterion_used': criterion
        }
        if additional_info:
            current_metrics.update(additional_info)

        # Add to history regardless of whether it's best
        self.history.append(current_metrics.copy())
        self._save_json(self.history_path, self.history)

        if not self._is_better(current_metrics, criterion):
            best_val = self.best_metrics.get(criterion, 'N/A')
            print(f"   Current {criterion}: {current_metrics.get(criterion, 'N/A')} (Best: {best_val}) - Not saved")
            return False

        previous = self.best_metrics
        torch.save(model.state_dict(), self.best_model_path)
        self.best_metrics = current_metrics
        self._save_json(self.metrics_path, current_metrics)

        if previous is not None:
            print(f"  ★ New best {criterion}: {previous.get(criterion)} → {current_metrics.get(criterion)}")
        else:
            print(f"  ✓ First model saved as best (Epoch {epoch})")
        return True

    def load_best_model(self, model: torch.nn.Module, map_location='cpu') -> torch.nn.Module:
        if not os.path.exists(self.best_model_path):
            raise FileNotFoundError(f"No best model found at {self.best_model_path}")

        model.load_state_dict(torch.load(self.best_model_path, map_location=map_location))
        print(f"✅ Loaded best model from: {self.best_model_path}")
        return model

    def print_summary(self):
        print(f"\n{'='*70}")
        print("📊 CHECKPOINT SUMMARY")
        print(f"{'='*70}")
        print(f"Directory: {self.directory}")
        print(f"Rolling checkpoints: {len(self.checkpoints)}/{self.max_to_keep}")
        print(f"Latest: {self.latest_checkpoint}")
        print(f"Total evaluations: {len(self.history)}")

        if self.best_metrics:
            criterion = self.best_metrics.get('criterion_used', 'val_loss')
            print(f"\n🏆 Best Model:")
            print(f"   Epoch: {self.best_metrics.get('epoch', 'N/A')}")
            print(f"   Timestamp: {self.best_metrics.get('timestamp', 'N/A')}")
            print(f"   {criterion}: {self.best_metrics.get(criterion, 'N/A')}")
        else:
            print("\n⚠️ No best model saved yet")
        print(f"{'='*70}\n")
