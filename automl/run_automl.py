"""
MNIST architecture search, end to end.

Usage:
    python -m automl.run_automl --time_limit 60 --max_trials 20
    python -m automl.run_automl --searcher evolution --final_epochs 20 --retrain
"""

import os
import json
import argparse

from automl.image_classifier import ImageClassifier
from automl.mnist_data import load_mnist
from models import paths
from workstation.gpu_info import set_seed


def get_args(argv=None):
    parser = argparse.ArgumentParser(description='Architecture search on MNIST')
    parser.add_argument('--data_dir', type=str, default=paths.MNIST_DIR)
    parser.add_argument('--output_dir', type=str, default=paths.AUTOML_DIR)
    parser.add_argument('--searcher', type=str, default='random', choices=['random', 'evolution'])
    parser.add_argument('--max_trials', type=int, default=10)
    parser.add_argument('--time_limit', type=float, default=None,
                        help='Search budget in minutes')
    parser.add_argument('--epochs_per_trial', type=int, default=2)
    parser.add_argument('--final_epochs', type=int, default=10)
    parser.add_argument('--retrain', action='store_true',
                        help='Final fit from fresh weights')
    parser.add_argument('--batch_size', type=int, default=128)
    parser.add_argument('--subset', type=int, default=0,
                        help='Use only the first N training images during search (0 = all)')
    parser.add_argument('--device', type=str, default='cuda', choices=['cuda', 'cpu', 'mps'])
    parser.add_argument('--seed', type=int, default=42)
    return parser.parse_args(argv)


def main(argv=None):
    args = get_args(argv)
    set_seed(args.seed)

    print("Loading MNIST...")
    (x_train, y_train), (x_test, y_test) = load_mnist(args.data_dir)
    print(f"  Train: {x_train.shape}  Test: {x_test.shape}")

    x_search, y_search = x_train, y_train
    if args.subset > 0:
        x_search, y_search = x_train[:args.subset], y_train[:args.subset]

    clf = ImageClassifier(
        searcher=args.searcher,
        max_trials=args.max_trials,
        epochs_per_trial=args.epochs_per_trial,
        batch_size=args.batch_size,
        path=args.output_dir,
        device=args.device,
        seed=args.seed
    )
    time_limit = args.time_limit * 60 if args.time_limit else None
    clf.fit(x_search, y_search, time_limit=time_limit)

    accuracy = clf.final_fit(x_train, y_train, x_test, y_test,
                             retrain=args.retrain, epochs=args.final_epochs)

    model_path = clf.export_model(os.path.join(args.output_dir, 'best_model.pt'))
    results = {
        'test_accuracy': accuracy,
        'best_architecture': clf.best_architecture,
        'num_trials': len(clf.history),
        'model_path': model_path
    }
    with open(os.path.join(args.output_dir, 'results.json'), 'w') as f:
        json.dump(results, f, indent=2)

    print("\n" + "=" * 60)
    print(f"Test accuracy: {accuracy:.4f}")
    print(f"Best architecture: {clf.best_architecture}")
    print("=" * 60)
    print(clf.summary())
    return results


if __name__ == '__main__':
    main()
