"""
Image Classifier with Architecture Search
=========================================
Follows the usage pattern of AutoML image classifiers:

    clf = ImageClassifier(max_trials=20)
    clf.fit(x_train, y_train, time_limit=60 * 60)
    clf.final_fit(x_train, y_train, x_test, y_test, retrain=True)
    accuracy = clf.evaluate(x_test, y_test)
    clf.export_model('mnist_best.pt')

fit() samples architectures from automl.search_space with a searcher,
trains each one briefly on a held-out split and keeps the best. final_fit()
trains the winner on all training data.
"""

import os
import copy
import json
import time
from typing import Dict, List, Optional

import numpy as np
import torch
import torch.nn as nn
import torch.optim as optim
from torch.utils.data import DataLoader, TensorDataset
from tqdm import tqdm

from automl.mnist_data import to_tensor
from automl.search_space import build_model
from automl.searcher import Searcher, get_searcher
from workstation.gpu_info import select_device


class ImageClassifier:
    """
    Args:
        searcher: 'random', 'evolution' or a Searcher instance
        max_trials: Stop after this many trials (None = only the time limit)
        epochs_per_trial: Training epochs for each candidate
        validation_split: Fraction of fit() data held out for scoring
        batch_size: Mini-batch size
        path: Folder for search_history.json (None = no files written)
        device: Preferred device
        seed: Seed for data split, searcher and weight init
        verbose: Print per-trial progress
        search_space: Override DEFAULT_SEARCH_SPACE
    """

    def __init__(
        self,
        searcher='random',
        max_trials: Optional[int] = 10,
        epochs_per_trial: int = 2,
        validation_split: float = 0.1,
        batch_size: int = 128,
        path: Optional[str] = None,
        device: str = 'cuda',
        seed: int = 42,
        verbose: bool = True,
        search_space: Optional[Dict] = None
    ):
        if not 0.0 < validation_split < 1.0:
            raise ValueError(f"validation_split must be in (0, 1), got {validation_split}")
        if max_trials is not None and max_trials < 1:
            raise ValueError(f"max_trials must be >= 1, got {max_trials}")

        if isinstance(searcher, Searcher):
            self.searcher = searcher
        else:
            self.searcher = get_searcher(searcher, space=search_space, seed=seed)

        self.max_trials = max_trials
        self.epochs_per_trial = epochs_per_trial
        self.validation_split = validation_split
        self.batch_size = batch_size
        self.path = path
        self.device = select_device(device)
        self.seed = seed
        self.verbose = verbose

        self.history: List[Dict] = []
        self.best_architecture: Optional[Dict] = None
        self.best_model: Optional[nn.Module] = None
        self.input_shape = None
        self.num_classes = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _log(self, msg):
        if self.verbose:
            print(msg)

    @staticmethod
    def _check_xy(x, y):
        x = np.asarray(x)
        y = np.asarray(y).reshape(-1)
        if len(x) == 0:
            raise ValueError("Empty training data")
        if len(x) != len(y):
            raise ValueError(f"x has {len(x)} samples but y has {len(y)}")
        if not np.issubdtype(y.dtype, np.integer):
            raise ValueError(f"Labels must be integers, got {y.dtype}")
        return to_tensor(x), torch.from_numpy(y.astype(np.int64))

    def _train(self, model: nn.Module, lr: float, x: torch.Tensor, y: torch.Tensor, epochs: int, desc: str):
        model.to(self.device)
        model.train()
        optimizer = optim.Adam(model.parameters(), lr=lr)
        criterion = nn.CrossEntropyLoss()
        loader = DataLoader(TensorDataset(x, y), batch_size=self.batch_size, shuffle=True,
                            generator=torch.Generator().manual_seed(self.seed))

        for epoch in range(epochs):
            total, batches = 0.0, 0
            pbar = tqdm(loader, desc=f"{desc} epoch {epoch + 1}/{epochs}", disable=not self.verbose, leave=False)
            for xb, yb in pbar:
                xb, yb = xb.to(self.device), yb.to(self.device)
                optimizer.zero_grad()
                loss = criterion(model(xb), yb)
                loss.backward()
                optimizer.step()
                total += loss.item()
                batches += 1
                pbar.set_postfix({'loss': f"{total / batches:.4f}"})
        return model

    @torch.no_grad()
    def _predict_tensor(self, model: nn.Module, x: torch.Tensor) -> torch.Tensor:
        model.to(self.device)
        model.eval()
        preds = []
        for start in range(0, len(x), self.batch_size):
            logits = model(x[start:start + self.batch_size].to(self.device))
            preds.append(logits.argmax(dim=-1).cpu())
        return torch.cat(preds) if preds else torch.zeros(0, dtype=torch.long)

    def _accuracy(self, model: nn.Module, x: torch.Tensor, y: torch.Tensor) -> float:
        return float((self._predict_tensor(model, x) == y).float().mean().item())

    def _require_fitted(self):
        if self.best_model is None:
            raise RuntimeError("ImageClassifier is not fitted yet; call fit() first")

    def _save_history(self):
        if self.path is None:
            return
        os.makedirs(self.path, exist_ok=True)
        with open(os.path.join(self.path, 'search_history.json'), 'w') as f:
            json.dump({
                'best_architecture': self.best_architecture,
                'trials': self.history
            }, f, indent=2)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fit(self, x, y, time_limit: Optional[float] = None) -> 'ImageClassifier':
        """
        Search architectures until max_trials or time_limit (seconds) is hit.
        At least one trial always runs.
        """
        x_t, y_t = self._check_xy(x, y)
        if len(x_t) < 2:
            raise ValueError("Need at least two samples to hold out a validation split")

        self.input_shape = tuple(x_t.shape[1:])
        self.num_classes = int(y_t.max().item()) + 1

        perm = torch.from_numpy(np.random.RandomState(self.seed).permutation(len(x_t)))
        n_val = min(max(1, int(len(x_t) * self.validation_split)), len(x_t) - 1)
        val_idx, train_idx = perm[:n_val], perm[n_val:]
        x_train, y_train = x_t[train_idx], y_t[train_idx]
        x_val, y_val = x_t[val_idx], y_t[val_idx]

        self._log("=" * 60)
        self._log("Architecture Search")
        self._log("=" * 60)
        self._log(f"  Searcher: {type(self.searcher).__name__}")
        self._log(f"  Train / val samples: {len(x_train)} / {len(x_val)}")
        self._log(f"  Max trials: {self.max_trials}  Time limit: {time_limit}s")
        self._log("=" * 60)

        start = time.time()
        best_acc = -1.0
        trial = 0
        while True:
            if self.max_trials is not None and trial >= self.max_trials:
                break
            if trial > 0 and time_limit is not None and time.time() - start >= time_limit:
                self._log("⏱ Time limit reached")
                break

            arch, token = self.searcher.sample()
            torch.manual_seed(self.seed + trial)
            model = build_model(arch, self.input_shape, self.num_classes)

            trial_start = time.time()
            self._train(model, arch['learning_rate'], x_train, y_train, self.epochs_per_trial, f"Trial {trial + 1}")
            val_acc = self._accuracy(model, x_val, y_val)
            self.searcher.update(val_acc, token)

            record = {
                'trial_id': trial + 1,
                'architecture': arch,
                'val_accuracy': val_acc,
                'num_params': sum(p.numel() for p in model.parameters()),
                'duration_sec': time.time() - trial_start
            }
            self.history.append(record)

            if val_acc > best_acc:
                best_acc = val_acc
                self.best_architecture = arch
                self.best_model = copy.deepcopy(model).cpu()
                self._log(f"  ★ Trial {trial + 1}: val_acc={val_acc:.4f} (new best) {arch}")
            else:
                self._log(f"    Trial {trial + 1}: val_acc={val_acc:.4f}")

            self._save_history()
            trial += 1

        self._log(f"\nBest validation accuracy: {best_acc:.4f} after {trial} trials "
                  f"({(time.time() - start) / 60:.1f} min)")
        return self

    def final_fit(self, x_train, y_train, x_test, y_test, retrain: bool = False, epochs: int = 10) -> float:
        """
        Train the best architecture on all training data.

        Args:
            retrain: Start from fresh weights instead of the searched ones

        Returns:
            Test accuracy
        """
        self._require_fitted()
        x_t, y_t = self._check_xy(x_train, y_train)

        if retrain:
            torch.manual_seed(self.seed)
            model = build_model(self.best_architecture, self.input_shape, self.num_classes)
        else:
            model = self.best_model

        self._train(model, self.best_architecture['learning_rate'], x_t, y_t, epochs, "Final fit")
        self.best_model = model.cpu()

        accuracy = self.evaluate(x_test, y_test)
        self._log(f"✓ Final fit done: test accuracy {accuracy:.4f}")
        return accuracy

    def predict(self, x) -> np.ndarray:
        self._require_fitted()
        return self._predict_tensor(self.best_model, to_tensor(x)).numpy()

    def evaluate(self, x, y) -> float:
        """Accuracy of the best model on (x, y)."""
        self._require_fitted()
        x_t, y_t = self._check_xy(x, y)
        return self._accuracy(self.best_model, x_t, y_t)

    def export_model(self, model_file_name: str) -> str:
        """Save architecture + weights so load_model can rebuild the network."""
        self._require_fitted()
        os.makedirs(os.path.dirname(os.path.abspath(model_file_name)), exist_ok=True)
        torch.save({
            'architecture': self.best_architecture,
            'input_shape': list(self.input_shape),
            'num_classes': self.num_classes,
            'state_dict': self.best_model.state_dict()
        }, model_file_name)
        self._log(f"✓ Exported model to {model_file_name}")
        return model_file_name

    def summary(self) -> str:
        self._require_fitted()
        return str(self.best_model)


def load_model(model_file_name: str, map_location='cpu') -> nn.Module:
    """Rebuild an exported classifier in eval mode."""
    if not os.path.exists(model_file_name):
        raise FileNotFoundError(f"No exported model at {model_file_name}")

    payload = torch.load(model_file_name, map_location=map_location, weights_only=False)
    model = build_model(payload['architecture'], tuple(payload['input_shape']), payload['num_classes'])
    model.load_state_dict(payload['state_dict'])
    model.eval()
    return model
