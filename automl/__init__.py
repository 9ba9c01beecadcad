# AutoML subpackage
"""
Architecture search for image classifiers (MNIST walkthrough).

Contains:
- search_space.py: Discrete hyperparameters and the CNN search space
- searcher.py: Random and regularized-evolution searchers
- image_classifier.py: ImageClassifier with fit / final_fit / evaluate / export
- mnist_data.py: MNIST as channels-last numpy arrays
- run_automl.py: End-to-end command line
"""

from .image_classifier import ImageClassifier, load_model

__all__ = ['ImageClassifier', 'load_model']
