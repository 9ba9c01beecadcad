import os
import json

import numpy as np
import pytest
import torch

from automl.image_classifier import ImageClassifier, load_model
from automl.mnist_data import to_tensor

TINY_SPACE = {
    'num_conv_blocks': [1],
    'filters': [4, 8],
    'kernel_size': [3],
    'use_batchnorm': [False],
    'dropout': [0.0],
    'dense_units': [16],
    'learning_rate': [1e-2],
}


def _data(n=40, seed=0):
    """Two classes: bright left half vs bright right half."""
    rng = np.random.RandomState(seed)
    y = rng.randint(0, 2, size=n).astype(np.int64)
    x = rng.randint(0, 40, size=(n, 8, 8, 1)).astype(np.uint8)
    for i, label in enumerate(y):
        if label == 0:
            x[i, :, :4] += 200
        else:
            x[i, :, 4:] += 200
    return x, y


def _classifier(tmp_path, **kwargs):
    config = dict(max_trials=2, epochs_per_trial=3, batch_size=8, path=str(tmp_path / 'search'),
                  device='cpu', seed=0, verbose=False, search_space=TINY_SPACE)
    config.update(kwargs)
    return ImageClassifier(**config)


def test_to_tensor_layout():
    t = to_tensor(np.full((2, 5, 6, 1), 255, dtype=np.uint8))
    assert t.shape == (2, 1, 5, 6)
    assert torch.allclose(t, torch.ones_like(t))

    assert to_tensor(np.zeros((3, 5, 6), dtype=np.float32)).shape == (3, 1, 5, 6)
    with pytest.raises(ValueError):
        to_tensor(np.zeros((5, 6)))


def test_fit_records_history(tmp_path):
    x, y = _data()
    clf = _classifier(tmp_path).fit(x, y)

    assert len(clf.history) == 2
    assert clf.best_architecture['filters'] in (4, 8)
    assert clf.input_shape == (1, 8, 8)
    assert clf.num_classes == 2

    with open(os.path.join(str(tmp_path / 'search'), 'search_history.json')) as f:
        saved = json.load(f)
    assert [t['trial_id'] for t in saved['trials']] == [1, 2]
    assert saved['best_architecture'] == clf.best_architecture


def test_time_limit_still_runs_one_trial(tmp_path):
    x, y = _data()
    clf = _classifier(tmp_path, max_trials=None).fit(x, y, time_limit=0)
    assert len(clf.history) == 1


def test_final_fit_predict_evaluate(tmp_path):
    x, y = _data(60)
    x_test, y_test = _data(20, seed=1)
    clf = _classifier(tmp_path).fit(x, y)

    accuracy = clf.final_fit(x, y, x_test, y_test, retrain=True, epochs=5)
    assert 0.0 <= accuracy <= 1.0
    assert accuracy == clf.evaluate(x_test, y_test)

    preds = clf.predict(x_test)
    assert isinstance(preds, np.ndarray)
    assert preds.shape == (20,)


def test_export_and_load(tmp_path):
    x, y = _data()
    clf = _classifier(tmp_path).fit(x, y)
    path = clf.export_model(str(tmp_path / 'export' / 'model.pt'))

    model = load_model(path)
    assert not model.training
    with torch.no_grad():
        preds = model(to_tensor(x)).argmax(dim=-1).numpy()
    np.testing.assert_array_equal(preds, clf.predict(x))

    with pytest.raises(FileNotFoundError):
        load_model(str(tmp_path / 'missing.pt'))


def test_unfitted_use(tmp_path):
    clf = _classifier(tmp_path)
    x, y = _data(4)
    with pytest.raises(RuntimeError):
        clf.predict(x)
    with pytest.raises(RuntimeError):
        clf.export_model(str(tmp_path / 'model.pt'))


def test_bad_inputs(tmp_path):
    clf = _classifier(tmp_path)
    x, y = _data(10)
    with pytest.raises(ValueError):
        clf.fit(x, y[:5])
    with pytest.raises(ValueError):
        clf.fit(x[:0], y[:0])
    with pytest.raises(ValueError):
        clf.fit(x, y.astype(np.float32))
    with pytest.raises(ValueError):
        _classifier(tmp_path, validation_split=1.5)
