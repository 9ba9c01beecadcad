import os
import json

import torch
from torch.utils.data import DataLoader

from models.attention_model import create_model
from models.collate import make_collate_fn
from models.dataloader import CocoFeatureDataset
from models.train_captioner import DEFAULT_CONFIG, Trainer
from preprocessing.coco import references_by_image, split_by_image


def _trainer(caption_df, vocab, feature_dir, output_dir, **overrides):
    torch.manual_seed(0)
    config = DEFAULT_CONFIG.copy()
    config.update({
        'vocab_size': vocab['vocab_size'],
        'max_len': vocab['max_length'],
        'embed_dim': 8,
        'units': 12,
        'feature_dim': 8,
        'batch_size': 2,
        'epochs': 2,
        'save_every': 1,
        'max_to_keep': 1,
        'num_workers': 0,
        'pad_id': vocab['pad_id'],
        'start_id': vocab['start_id'],
        'end_id': vocab['end_id'],
    })
    config.update(overrides)

    train_df, val_df = split_by_image(caption_df, 0.5)
    collate = make_collate_fn(vocab['pad_id'])
    train_loader = DataLoader(CocoFeatureDataset(train_df, vocab, feature_dir), batch_size=2,
                              shuffle=True, collate_fn=collate)
    val_loader = DataLoader(CocoFeatureDataset(val_df, vocab, feature_dir), batch_size=2,
                            collate_fn=collate)

    model = create_model(vocab['vocab_size'], config)
    return Trainer(model, train_loader, val_loader, config, vocab, device='cpu',
                   output_dir=output_dir, references=references_by_image(val_df))


def test_train_writes_outputs(caption_df, vocab, feature_dir, tmp_path):
    output_dir = str(tmp_path / 'run')
    trainer = _trainer(caption_df, vocab, feature_dir, output_dir)
    history = trainer.train()

    assert len(history['train_losses']) == 2
    assert len(history['val_losses']) == 2
    assert set(history['bleu_scores'][0]) == {'bleu1', 'bleu2', 'bleu3', 'bleu4'}

    for name in ('final_model.pt', 'training_history.json', 'loss_plot.png'):
        assert os.path.exists(os.path.join(output_dir, name))

    checkpoint_dir = os.path.join(output_dir, 'checkpoints')
    assert sorted(f for f in os.listdir(checkpoint_dir) if f.startswith('ckpt-')) == ['ckpt-2.pt']
    assert os.path.exists(os.path.join(checkpoint_dir, 'best_model.pt'))

    with open(os.path.join(output_dir, 'training_history.json')) as f:
        assert json.load(f)['config']['epochs'] == 2


def test_train_step_returns_float(caption_df, vocab, feature_dir, tmp_path):
    trainer = _trainer(caption_df, vocab, feature_dir, str(tmp_path / 'run'))
    features, captions, _ = next(iter(trainer.train_loader))
    loss = trainer.train_step(features, captions)
    assert isinstance(loss, float)
    assert loss > 0


def test_resume_continues_from_checkpoint(caption_df, vocab, feature_dir, tmp_path):
    output_dir = str(tmp_path / 'run')
    _trainer(caption_df, vocab, feature_dir, output_dir, epochs=1).train()

    resumed = _trainer(caption_df, vocab, feature_dir, output_dir, epochs=2)
    assert resumed.resume() == 1
    assert len(resumed.train_losses) == 1

    history = resumed.train()
    assert len(history['train_losses']) == 2


def test_early_stopping(caption_df, vocab, feature_dir, tmp_path):
    trainer = _trainer(caption_df, vocab, feature_dir, str(tmp_path / 'run'),
                       epochs=10, patience=1, learning_rate=0.0)
    history = trainer.train()
    assert len(history['train_losses']) < 10


def test_resume_restores_patience_and_final_epoch(caption_df, vocab, feature_dir, tmp_path):
    output_dir = str(tmp_path / 'run')
    first = _trainer(caption_df, vocab, feature_dir, output_dir, patience=5, learning_rate=0.0)
    first.train()
    assert first.patience_counter == 1

    # Already at the last epoch: nothing left to run
    resumed = _trainer(caption_df, vocab, feature_dir, output_dir, patience=5, learning_rate=0.0)
    assert resumed.resume() == 2
    assert resumed.patience_counter == 1

    resumed.train()
    final = torch.load(os.path.join(output_dir, 'final_model.pt'), weights_only=False)
    assert final['epoch'] == 2
    assert final['patience_counter'] == 1
