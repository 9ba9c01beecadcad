"""
Evaluate BLEU and ROUGE metrics for the trained attention captioner.
Each image is captioned once and scored against all of its COCO references.
"""

import os
import json
import argparse
from typing import Dict

import numpy as np
import torch
from torch.utils.data import DataLoader, Subset
from tqdm import tqdm
from nltk.translate.bleu_score import corpus_bleu, SmoothingFunction
from rouge_score import rouge_scorer

from models.attention_model import load_model_checkpoint
from models.collate import make_collate_fn
from models.dataloader import CocoFeatureDataset
from models import paths
from preprocessing.coco import load_captions, references_by_image, split_by_image
from preprocessing.vocab import decode, load_vocab
from workstation.gpu_info import select_device


def decode_caption(token_ids, vocab):
    """Convert token IDs to readable text."""
    return decode(token_ids, vocab)


def calculate_bleu_scores(references, hypotheses):
    """
    Calculate corpus BLEU-1 to BLEU-4.

    Args:
        references: One entry per image, each a list of tokenized references
        hypotheses: One tokenized prediction per image

    Returns:
        Dict with bleu1..bleu4
    """
    if len(references) != len(hypotheses):
        raise ValueError(f"{len(references)} references vs {len(hypotheses)} hypotheses")
    if not hypotheses:
        return {'bleu1': 0.0, 'bleu2': 0.0, 'bleu3': 0.0, 'bleu4': 0.0}

    smoothing = SmoothingFunction().method1
    weights = {
        'bleu1': (1.0, 0, 0, 0),
        'bleu2': (0.5, 0.5, 0, 0),
        'bleu3': (1 / 3, 1 / 3, 1 / 3, 0),
        'bleu4': (0.25, 0.25, 0.25, 0.25),
    }
    return {
        name: float(corpus_bleu(references, hypotheses, weights=w, smoothing_function=smoothing))
        for name, w in weights.items()
    }


def calculate_rouge_scores(references, hypotheses):
    """
    Calculate ROUGE-L F1, taking the best-matching reference per image.

    Args:
        references: One entry per image, each a list of reference strings
        hypotheses: One predicted string per image
    """
    if not hypotheses:
        return {'rouge_l': 0.0, 'rouge_l_std': 0.0}

    scorer = rouge_scorer.RougeScorer(['rougeL'], use_stemmer=True)
    scores = []
    for refs, hyp in zip(references, hypotheses):
        scores.append(max(scorer.score(ref, hyp)['rougeL'].fmeasure for ref in refs))

    return {
        'rouge_l': float(np.mean(scores)),
        'rouge_l_std': float(np.std(scores)),
    }


def evaluate_model(model, dataset, references, vocab, device, batch_size=32, max_len=None,
                   save_predictions=False):
    """
    Caption every unique image in `dataset` and compute BLEU/ROUGE.

    Args:
        model: AttentionCaptioner
        dataset: CocoFeatureDataset
        references: image_path -> list of reference strings
        vocab: Vocabulary dict

    Returns:
        metrics: Dict with BLEU/ROUGE scores
        predictions: List of dicts (empty unless save_predictions)
    """
    model.eval()

    first_index = {}
    for idx, img_path in enumerate(dataset.df['image_path']):
        first_index.setdefault(img_path, idx)
    unique = Subset(dataset, list(first_index.values()))

    loader = DataLoader(unique, batch_size=batch_size, shuffle=False,
                        collate_fn=make_collate_fn(vocab['pad_id']))

    refs_words, refs_text = [], []
    hyps_words, hyps_text = [], []
    predictions = []

    for features, _, image_paths in tqdm(loader, desc="Evaluating"):
        tokens, _ = model.generate_greedy(features.to(device), max_len=max_len)
        for img_path, ids in zip(image_paths, tokens.cpu().tolist()):
            pred_text = decode_caption(ids, vocab)
            img_refs = references[img_path]

            hyps_text.append(pred_text)
            hyps_words.append(pred_text.split())
            refs_text.append(img_refs)
            refs_words.append([r.split() for r in img_refs])

            if save_predictions:
                predictions.append({
                    'image_path': img_path,
                    'prediction': pred_text,
                    'references': img_refs
                })

    print("\n" + "="*70)
    print("COMPUTING METRICS...")
    print("="*70)

    metrics = {
        **calculate_bleu_scores(refs_words, hyps_words),
        **calculate_rouge_scores(refs_text, hyps_text),
        'num_images': len(hyps_text),
        'avg_pred_length': float(np.mean([len(h) for h in hyps_words])) if hyps_words else 0.0,
    }
    return metrics, predictions


def print_metrics(metrics):
    """Pretty print metrics."""
    print("\n" + "="*70)
    print("📊 EVALUATION RESULTS")
    print("="*70)

    print("\n🔵 BLEU Scores (Corpus-level):")
    for n in range(1, 5):
        print(f"   BLEU-{n}: {metrics[f'bleu{n}']:.4f}")

    print("\n🔴 ROUGE-L:")
    print(f"   Mean:   {metrics['rouge_l']:.4f}")
    print(f"   Std:    {metrics['rouge_l_std']:.4f}")

    print("\n📏 Caption Statistics:")
    print(f"   Images evaluated: {metrics['num_images']}")
    print(f"   Avg prediction length: {metrics['avg_pred_length']:.1f} words")
    print("\n" + "="*70)


# Used only when the checkpoint config predates these keys
SPLIT_DEFAULTS = {
    'num_examples': 30000,
    'seed': 42,
    'train_fraction': 0.8,
    'backbone': paths.BACKBONE,
}


def get_args(argv=None):
    parser = argparse.ArgumentParser(description='Evaluate BLEU/ROUGE metrics')
    parser.add_argument('--checkpoint', type=str, default=paths.find_latest_checkpoint())
    parser.add_argument('--vocab', type=str, default=paths.VOCAB_PATH)
    parser.add_argument('--annotations', type=str, default=paths.ANNOTATION_FILE)
    parser.add_argument('--image_folder', type=str, default=paths.IMAGE_FOLDER)
    parser.add_argument('--feature_dir', type=str, default=None,
                        help='Defaults to DATA_DIR/features/<backbone>')
    # Split settings default to the ones stored in the checkpoint config
    parser.add_argument('--num_examples', type=int, default=None)
    parser.add_argument('--seed', type=int, default=None)
    parser.add_argument('--train_fraction', type=float, default=None)
    parser.add_argument('--backbone', type=str, default=None)
    parser.add_argument('--split', type=str, default='val', choices=['train', 'val'])
    parser.add_argument('--batch_size', type=int, default=32)
    parser.add_argument('--device', type=str, default='cuda', choices=['cuda', 'cpu', 'mps'])
    parser.add_argument('--save_predictions', action='store_true')
    parser.add_argument('--output_dir', type=str, default=paths.OUTPUTS_DIR)
    return parser.parse_args(argv)


def split_settings(args, config: Dict) -> Dict:
    """
    Resolve how the captions were loaded and split at training time.

    Command line flags win over the checkpoint config, which wins over
    SPLIT_DEFAULTS.
    """
    settings = {}
    for key, default in SPLIT_DEFAULTS.items():
        value = getattr(args, key)
        settings[key] = value if value is not None else config.get(key, default)
    settings['feature_dir'] = args.feature_dir or os.path.join(
        paths.DATA_DIR, 'features', settings['backbone'])
    return settings


def main(argv=None):
    args = get_args(argv)
    device = select_device(args.device)

    print("="*70)
    print("🧪 IMAGE CAPTIONING MODEL EVALUATION")
    print("="*70)

    print(f"\n📚 Loading vocabulary from: {args.vocab}")
    vocab = load_vocab(args.vocab)

    print(f"\n🤖 Loading model from: {args.checkpoint}")
    model, config = load_model_checkpoint(args.checkpoint, device=device)

    settings = split_settings(args, config)
    print(f"   Split: num_examples={settings['num_examples']}, seed={settings['seed']}, "
          f"train_fraction={settings['train_fraction']}, backbone={settings['backbone']}")

    df = load_captions(args.annotations, args.image_folder,
                       num_examples=settings['num_examples'], seed=settings['seed'])
    train_df, val_df = split_by_image(df, settings['train_fraction'], seed=settings['seed'])
    split_df = train_df if args.split == 'train' else val_df

    dataset = CocoFeatureDataset(split_df, vocab, settings['feature_dir'])
    print(f"   Evaluating on {args.split} split: {split_df['image_path'].nunique()} images")

    metrics, predictions = evaluate_model(
        model, dataset, references_by_image(split_df), vocab, device,
        batch_size=args.batch_size, save_predictions=args.save_predictions
    )
    print_metrics(metrics)

    os.makedirs(args.output_dir, exist_ok=True)
    metrics_file = os.path.join(args.output_dir, f'metrics_{args.split}.json')
    with open(metrics_file, 'w') as f:
        json.dump(metrics, f, indent=4)
    print(f"\n💾 Metrics saved to: {metrics_file}")

    if args.save_predictions:
        pred_file = os.path.join(args.output_dir, f'predictions_{args.split}.json')
        with open(pred_file, 'w') as f:
            json.dump(predictions, f, indent=2)
        print(f"💾 Predictions saved to: {pred_file}")

        print("\n📝 SAMPLE PREDICTIONS (first 5):")
        for i, pred in enumerate(predictions[:5]):
            print(f"\n[{i+1}] {os.path.basename(pred['image_path'])}")
            print(f"   Prediction: {pred['prediction']}")
            print(f"   Reference:  {pred['references'][0]}")


if __name__ == '__main__':
    main()
