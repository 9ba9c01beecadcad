"""
CNN Encoder + GRU Decoder with Bahdanau Attention
==================================================
Architecture:
    - Cached backbone features (64 x 2048 for InceptionV3)
    - Encoder: Linear projection → embed_dim, ReLU
    - Additive (Bahdanau) attention over the spatial positions
    - GRU decoder fed [context ; word embedding] at every step

The encoder never sees pixels: features are extracted once and cached
(see preprocessing/extract.py).
"""

import torch
import torch.nn as nn
import torch.nn.functional as F
from typing import Dict, Optional, Tuple


# =============================================================================
# SECTION A: Encoder
# =============================================================================

class CNNEncoder(nn.Module):
    """
    Projects cached CNN features into the decoder's embedding space.

    Args:
        feature_dim: Channel count of the cached features (2048)
        embed_dim: Output embedding dimension (default 256)
    """

    def __init__(self, feature_dim: int = 2048, embed_dim: int = 256):
        super().__init__()
        self.fc = nn.Linear(feature_dim, embed_dim)

    def forward(self, features: torch.Tensor) -> torch.Tensor:
        """
        Args:
            features: (batch_size, positions, feature_dim)

        Returns:
            (batch_size, positions, embed_dim)
        """
        return F.relu(self.fc(features))


# =============================================================================
# SECTION B: Bahdanau Attention
# =============================================================================

class BahdanauAttention(nn.Module):
    """
    Additive attention: score = V(tanh(W1·features + W2·hidden)).

    Args:
        embed_dim: Dimension of the encoded features
        units: Decoder hidden size
    """

    def __init__(self, embed_dim: int, units: int):
        super().__init__()
        self.W1 = nn.Linear(embed_dim, units)
        self.W2 = nn.Linear(units, units)
        self.V = nn.Linear(units, 1)

    def forward(
        self,
        features: torch.Tensor,
        hidden: torch.Tensor
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Args:
            features: (B, L, embed_dim)
            hidden: (B, units)

        Returns:
            context: (B, embed_dim)
            weights: (B, L), each row sums to 1
        """
        score = self.V(torch.tanh(self.W1(features) + self.W2(hidden).unsqueeze(1)))  # (B, L, 1)
        weights = F.softmax(score, dim=1)
        context = (weights * features).sum(dim=1)
        return context, weights.squeeze(-1)


# =============================================================================
# SECTION C: GRU Decoder
# =============================================================================

class RNNDecoder(nn.Module):
    """
    Single-step GRU decoder with attention.

    Args:
        vocab_size: Vocabulary size
        embed_dim: Word embedding dimension (also the encoder output dim)
        units: GRU hidden size
        pad_id: Padding token id
    """

    def __init__(self, vocab_size: int, embed_dim: int = 256, units: int = 512, pad_id: int = 0):
        super().__init__()
        self.units = units
        self.embedding = nn.Embedding(vocab_size, embed_dim, padding_idx=pad_id)
        self.attention = BahdanauAttention(embed_dim, units)
        self.gru = nn.GRU(embed_dim * 2, units, batch_first=True)
        self.fc1 = nn.Linear(units, units)
        self.fc2 = nn.Linear(units, vocab_size)

    def forward(
        self,
        tokens: torch.Tensor,
        features: torch.Tensor,
        hidden: torch.Tensor
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """
        Args:
            tokens: (B,) previous tokens
            features: (B, L, embed_dim) encoder output
            hidden: (B, units)

        Returns:
            logits: (B, vocab_size)
            hidden: (B, units)
            weights: (B, L)
        """
        context, weights = self.attention(features, hidden)

        x = self.embedding(tokens).unsqueeze(1)  # (B, 1, embed_dim)
        x = torch.cat([context.unsqueeze(1), x], dim=-1)  # (B, 1, 2 * embed_dim)

        output, state = self.gru(x, hidden.unsqueeze(0).contiguous())
        x = self.fc1(output.squeeze(1))
        logits = self.fc2(x)
        return logits, state.squeeze(0), weights

    def reset_state(self, batch_size: int, device=None) -> torch.Tensor:
        return torch.zeros(batch_size, self.units, device=device)


# =============================================================================
# SECTION D: Full Captioner
# =============================================================================

class AttentionCaptioner(nn.Module):
    """
    Encoder + attention decoder.

    Args:
        vocab_size: Size of vocabulary
        embed_dim: Embedding dimension (default 256)
        units: GRU hidden size (default 512)
        feature_dim: Cached feature channels (default 2048)
        max_len: Maximum generated caption length, <start> included
    """

    def __init__(
        self,
        vocab_size: int,
        embed_dim: int = 256,
        units: int = 512,
        feature_dim: int = 2048,
        max_len: int = 50,
        pad_id: int = 0,
        start_id: int = 2,
        end_id: int = 3
    ):
        super().__init__()

        self.vocab_size = vocab_size
        self.max_len = max_len
        self.pad_id = pad_id
        self.start_id = start_id
        self.end_id = end_id

        self.encoder = CNNEncoder(feature_dim=feature_dim, embed_dim=embed_dim)
        self.decoder = RNNDecoder(vocab_size, embed_dim=embed_dim, units=units, pad_id=pad_id)

    def forward(
        self,
        features: torch.Tensor,
        captions: torch.Tensor
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Teacher-forced pass: step i reads captions[:, i] and predicts captions[:, i + 1].

        Args:
            features: (B, L, feature_dim)
            captions: (B, S) token ids starting with <start>

        Returns:
            logits: (B, S - 1, vocab_size)
            attention: (B, S - 1, L)
        """
        encoded = self.encoder(features)
        hidden = self.decoder.reset_state(captions.size(0), device=captions.device)

        all_logits = []
        all_weights = []
        for i in range(captions.size(1) - 1):
            logits, hidden, weights = self.decoder(captions[:, i], encoded, hidden)
            all_logits.append(logits)
            all_weights.append(weights)

        if not all_logits:
            B, L = features.shape[:2]
            return (features.new_zeros(B, 0, self.vocab_size), features.new_zeros(B, 0, L))
        return torch.stack(all_logits, dim=1), torch.stack(all_weights, dim=1)

    @torch.no_grad()
    def generate_greedy(
        self,
        features: torch.Tensor,
        max_len: Optional[int] = None,
        temperature: float = 1.0,
        sample: bool = False
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Greedy (or sampled) decoding.

        Args:
            features: (B, L, feature_dim)
            max_len: Token budget including <start> (default self.max_len)
            temperature: Softmax temperature
            sample: Draw from the distribution instead of taking the argmax

        Returns:
            tokens: (B, T) starting with <start>
            attention: (B, T - 1, L) weights used to produce tokens[:, 1:]
        """
        self.eval()
        max_len = max_len or self.max_len
        batch_size = features.size(0)
        device = features.device

        encoded = self.encoder(features)
        hidden = self.decoder.reset_state(batch_size, device=device)
        current = torch.full((batch_size,), self.start_id, dtype=torch.long, device=device)

        generated = [current]
        attention = []
        finished = torch.zeros(batch_size, dtype=torch.bool, device=device)

        for _ in range(max_len - 1):
            logits, hidden, weights = self.decoder(current, encoded, hidden)
            if temperature != 1.0:
                logits = logits / temperature

            if sample:
                current = torch.multinomial(F.softmax(logits, dim=-1), num_samples=1).squeeze(-1)
            else:
                current = logits.argmax(dim=-1)

            # Rows that already ended keep emitting padding
            current = current.masked_fill(finished, self.pad_id)
            generated.append(current)
            attention.append(weights)

            finished = finished | (current == self.end_id)
            if finished.all():
                break

        tokens = torch.stack(generated, dim=1)
        if attention:
            attention = torch.stack(attention, dim=1)
        else:
            attention = features.new_zeros(batch_size, 0, features.size(1))
        return tokens, attention

    @torch.no_grad()
    def generate_beam(
        self,
        features: torch.Tensor,
        beam_width: int = 3,
        length_penalty: float = 0.7,
        max_len: Optional[int] = None
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Beam search for a single image.

        Args:
            features: (1, L, feature_dim)
            beam_width: Number of beams (default 3)
            length_penalty: Length normalization exponent (default 0.7)

        Returns:
            tokens: (1, T) best sequence starting with <start>
            attention: (1, T - 1, L)
        """
        if features.size(0) != 1:
            raise ValueError("generate_beam decodes one image at a time")
        self.eval()
        max_len = max_len or self.max_len
        device = features.device

        encoded = self.encoder(features)
        beams = [{
            'tokens': [self.start_id],
            'score': 0.0,
            'hidden': self.decoder.reset_state(1, device=device),
            'attention': [],
            'finished': False
        }]

        def score_fn(b):
            return b['score'] / (len(b['tokens']) ** length_penalty)

        for _ in range(max_len - 1):
            candidates = []
            for beam in beams:
                if beam['finished']:
                    candidates.append(beam)
                    continue

                last = torch.tensor([beam['tokens'][-1]], device=device)
                logits, hidden, weights = self.decoder(last, encoded, beam['hidden'])
                log_probs = F.log_softmax(logits, dim=-1).squeeze(0)
                topk_scores, topk_ids = log_probs.topk(beam_width)

                for k in range(beam_width):
                    token_id = topk_ids[k].item()
                    candidates.append({
                        'tokens': beam['tokens'] + [token_id],
                        'score': beam['score'] + topk_scores[k].item(),
                        'hidden': hidden,
                        'attention': beam['attention'] + [weights.squeeze(0)],
                        'finished': token_id == self.end_id
                    })

            beams = sorted(candidates, key=score_fn, reverse=True)[:beam_width]
            if all(b['finished'] for b in beams):
                break

        best = max(beams, key=score_fn)
        tokens = torch.tensor([best['tokens']], device=device)
        if best['attention']:
            attention = torch.stack(best['attention']).unsqueeze(0)
        else:
            attention = features.new_zeros(1, 0, features.size(1))
        return tokens, attention

    def count_parameters(self) -> int:
        """Count trainable parameters."""
        return sum(p.numel() for p in self.parameters() if p.requires_grad)


# =============================================================================
# SECTION E: Loss and Utility Functions
# =============================================================================

def masked_cross_entropy(logits: torch.Tensor, targets: torch.Tensor, pad_id: int = 0) -> torch.Tensor:
    """
    Cross entropy averaged over non-padding targets.

    Args:
        logits: (B, S, V)
        targets: (B, S)
    """
    B, S, V = logits.shape
    total = F.cross_entropy(
        logits.reshape(B * S, V).float(),
        targets.reshape(B * S),
        ignore_index=pad_id,
        reduction='sum'
    )
    num_tokens = (targets != pad_id).sum()
    return total / num_tokens.clamp(min=1)


DEFAULT_MODEL_CONFIG = {
    'embed_dim': 256,
    'units': 512,
    'feature_dim': 2048,
    'max_len': 50,
    'pad_id': 0,
    'start_id': 2,
    'end_id': 3
}


def create_model(vocab_size: int, config: Optional[Dict] = None) -> AttentionCaptioner:
    """
    Factory function to create the captioner from a config dict.

    Unknown keys (training settings) are ignored.
    """
    model_config = DEFAULT_MODEL_CONFIG.copy()
    if config:
        model_config.update({k: v for k, v in config.items() if k in DEFAULT_MODEL_CONFIG})

    model = AttentionCaptioner(vocab_size=vocab_size, **model_config)

    print(f"\n{'='*60}")
    print("Attention Captioner Initialized")
    print(f"{'='*60}")
    print(f"  Vocab size: {vocab_size}")
    print(f"  Embed dim: {model_config['embed_dim']}")
    print(f"  GRU units: {model_config['units']}")
    print(f"  Feature dim: {model_config['feature_dim']}")
    print(f"  Max length: {model_config['max_len']}")
    print(f"  Parameters: {model.count_parameters():,}")
    print(f"{'='*60}\n")
    return model


def load_model_checkpoint(checkpoint_path: str, device: str = 'cpu') -> Tuple[AttentionCaptioner, Dict]:
    """
    Load a captioner saved by the trainer.

    Returns:
        (model, config) with the model in eval mode on `device`
    """
    checkpoint = torch.load(checkpoint_path, map_location=device, weights_only=False)
    config = checkpoint.get('config', {})
    if 'vocab_size' not in config:
        raise ValueError(f"Checkpoint {checkpoint_path} has no vocab_size in its config")

    model = create_model(config['vocab_size'], config)
    model.load_state_dict(checkpoint['model_state_dict'])
    model.to(device)
    model.eval()

    print(f"✓ Loaded model from {checkpoint_path}")
    return model, config
