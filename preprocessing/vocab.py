"""
Caption tokenizer and vocabulary.

The vocabulary is a plain dict so it pickles cleanly next to checkpoints:
    stoi, itos, pad_id, start_id, end_id, unk_id, vocab_size, max_length
"""

import os
import re
import pickle
import argparse
from collections import Counter
from typing import Dict, Iterable, List, Optional

import numpy as np

PAD_TOKEN = "<pad>"
UNK_TOKEN = "<unk>"
START_TOKEN = "<start>"
END_TOKEN = "<end>"

# Keras Tokenizer filters, minus '<' and '>' so the markers survive
FILTERS = '!"#$%&()*+.,-/:;=?@[\\]^_`{|}~\t\n'
_FILTER_RE = re.compile('[' + re.escape(FILTERS) + ']')


def tokenize(text: str) -> List[str]:
    """Lowercase, strip punctuation and split on whitespace."""
    return _FILTER_RE.sub(' ', text.lower()).split()


def build_vocab(captions: Iterable[str], top_k: int = 5000) -> Dict:
    """
    Build a frequency-ranked vocabulary from captions.

    Args:
        captions: Caption strings, normally already wrapped in <start>/<end>
        top_k: Maximum vocabulary size including the special tokens

    Returns:
        Vocab dict (stoi, itos, special ids, vocab_size, max_length)
    """
    if top_k < 4:
        raise ValueError(f"top_k must leave room for the special tokens, got {top_k}")

    counts = Counter()
    max_length = 0
    for caption in captions:
        tokens = tokenize(caption)
        counts.update(tokens)
        max_length = max(max_length, len(tokens))

    itos_list = [PAD_TOKEN, UNK_TOKEN, START_TOKEN, END_TOKEN]
    # Counter.most_common keeps first-seen order for equal counts
    for word, _ in counts.most_common():
        if len(itos_list) >= top_k:
            break
        if word in itos_list:
            continue
        itos_list.append(word)

    itos = {i: tok for i, tok in enumerate(itos_list)}
    stoi = {tok: i for i, tok in itos.items()}

    return {
        "stoi": stoi,
        "itos": itos,
        "pad_id": stoi[PAD_TOKEN],
        "unk_id": stoi[UNK_TOKEN],
        "start_id": stoi[START_TOKEN],
        "end_id": stoi[END_TOKEN],
        "vocab_size": len(itos),
        "max_length": max_length,
    }


def encode(caption: str, vocab: Dict) -> List[int]:
    """Convert a caption string to token ids; unknown words become <unk>."""
    stoi = vocab["stoi"]
    unk_id = vocab["unk_id"]
    return [stoi.get(tok, unk_id) for tok in tokenize(caption)]


def decode(token_ids: Iterable[int], vocab: Dict, stop_at_end: bool = True) -> str:
    """Convert token ids back to text, dropping <pad> and <start>."""
    words = []
    for tid in token_ids:
        tid = int(tid)
        if tid == vocab["end_id"] and stop_at_end:
            break
        if tid in (vocab["pad_id"], vocab["start_id"]):
            continue
        words.append(vocab["itos"].get(tid, UNK_TOKEN))
    return " ".join(words)


def pad_sequences(
    sequences: List[List[int]],
    max_len: Optional[int] = None,
    pad_id: int = 0
) -> np.ndarray:
    """Post-pad (and post-truncate) sequences into a dense int64 array."""
    if max_len is None:
        max_len = max((len(s) for s in sequences), default=0)
    padded = np.full((len(sequences), max_len), pad_id, dtype=np.int64)
    for i, seq in enumerate(sequences):
        seq = list(seq)[:max_len]
        padded[i, :len(seq)] = seq
    return padded


def save_vocab(vocab: Dict, path: str):
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "wb") as f:
        pickle.dump(vocab, f)


def load_vocab(path: str) -> Dict:
    if not os.path.exists(path):
        raise FileNotFoundError(f"Vocabulary not found at {path}")
    with open(path, "rb") as f:
        return pickle.load(f)


def main():
    from preprocessing import get_annotation_path, get_vocab_path
    from preprocessing.coco import load_captions

    parser = argparse.ArgumentParser(description='Build vocab.pkl from COCO captions')
    parser.add_argument('--annotations', type=str, default=get_annotation_path())
    parser.add_argument('--image_folder', type=str, default='')
    parser.add_argument('--num_examples', type=int, default=30000)
    parser.add_argument('--top_k', type=int, default=5000)
    parser.add_argument('--output', type=str, default=get_vocab_path())
    args = parser.parse_args()

    df = load_captions(args.annotations, args.image_folder, num_examples=args.num_examples)
    vocab = build_vocab(df['caption'], top_k=args.top_k)
    save_vocab(vocab, args.output)

    print(f"Saved vocab.pkl to {args.output}")
    print(f"  Vocabulary size: {vocab['vocab_size']}")
    print(f"  Max caption length: {vocab['max_length']}")


if __name__ == "__main__":
    main()
