import os

import pytest
import torch

from models.attention_model import (AttentionCaptioner, BahdanauAttention, create_model,
                                    load_model_checkpoint, masked_cross_entropy)

VOCAB_SIZE = 20
L, D = 6, 16


def _model(**kwargs):
    torch.manual_seed(0)
    config = dict(vocab_size=VOCAB_SIZE, embed_dim=8, units=12, feature_dim=D, max_len=7)
    config.update(kwargs)
    return AttentionCaptioner(**config)


def test_attention_weights_are_a_distribution():
    attention = BahdanauAttention(embed_dim=8, units=12)
    context, weights = attention(torch.randn(3, L, 8), torch.randn(3, 12))

    assert context.shape == (3, 8)
    assert weights.shape == (3, L)
    assert torch.all(weights >= 0)
    assert torch.allclose(weights.sum(dim=1), torch.ones(3), atol=1e-5)


def test_forward_aligns_with_shifted_targets():
    model = _model()
    captions = torch.tensor([[2, 5, 6, 3, 0], [2, 7, 3, 0, 0]])
    logits, attention = model(torch.randn(2, L, D), captions)

    assert logits.shape == (2, 4, VOCAB_SIZE)
    assert attention.shape == (2, 4, L)


def test_masked_cross_entropy_ignores_padding():
    logits = torch.randn(2, 3, VOCAB_SIZE)
    targets = torch.tensor([[4, 5, 0], [6, 0, 0]])

    loss = masked_cross_entropy(logits, targets, pad_id=0)
    expected = torch.nn.functional.cross_entropy(
        torch.stack([logits[0, 0], logits[0, 1], logits[1, 0]]), torch.tensor([4, 5, 6]))
    assert torch.allclose(loss, expected, atol=1e-5)


def test_masked_cross_entropy_all_padding_is_zero():
    loss = masked_cross_entropy(torch.randn(1, 2, VOCAB_SIZE), torch.zeros(1, 2, dtype=torch.long))
    assert loss.item() == 0.0


def test_loss_decreases_when_overfitting():
    model = _model()
    features = torch.randn(2, L, D)
    captions = torch.tensor([[2, 5, 6, 3], [2, 7, 8, 3]])
    optimizer = torch.optim.Adam(model.parameters(), lr=1e-2)

    losses = []
    for _ in range(30):
        optimizer.zero_grad()
        logits, _ = model(features, captions)
        loss = masked_cross_entropy(logits, captions[:, 1:])
        loss.backward()
        optimizer.step()
        losses.append(loss.item())
    assert losses[-1] < losses[0]


def test_greedy_shapes_and_start_token():
    model = _model()
    tokens, attention = model.generate_greedy(torch.randn(3, L, D))

    assert tokens.shape[0] == 3
    assert tokens.shape[1] <= 7
    assert torch.all(tokens[:, 0] == model.start_id)
    assert attention.shape == (3, tokens.shape[1] - 1, L)


def test_greedy_pads_after_end():
    model = _model()
    # Force <end> as the first prediction
    with torch.no_grad():
        model.decoder.fc2.weight.zero_()
        model.decoder.fc2.bias.zero_()
        model.decoder.fc2.bias[model.end_id] = 10.0
    tokens, _ = model.generate_greedy(torch.randn(2, L, D))

    assert tokens.tolist() == [[model.start_id, model.end_id]] * 2


def test_greedy_pads_rows_that_end_early(monkeypatch):
    model = _model()
    # Row 0 ends on the first step, row 1 emits two words before <end>
    script = [[model.end_id, 5, 5, 5], [5, 6, model.end_id, 7]]
    step = {'t': 0}

    def scripted(tokens, features, hidden):
        logits = torch.zeros(tokens.size(0), VOCAB_SIZE)
        for row, seq in enumerate(script):
            logits[row, seq[step['t']]] = 1.0
        step['t'] += 1
        weights = torch.full((tokens.size(0), features.size(1)), 1.0 / features.size(1))
        return logits, hidden, weights

    monkeypatch.setattr(model.decoder, 'forward', scripted)
    tokens, attention = model.generate_greedy(torch.randn(2, L, D))

    assert tokens.tolist() == [
        [model.start_id, model.end_id, model.pad_id, model.pad_id],
        [model.start_id, 5, 6, model.end_id],
    ]
    assert attention.shape == (2, tokens.shape[1] - 1, L)


def test_sampling_respects_max_len():
    model = _model()
    tokens, attention = model.generate_greedy(torch.randn(2, L, D), max_len=4, temperature=0.5, sample=True)
    assert tokens.shape[1] <= 4
    assert attention.shape[1] == tokens.shape[1] - 1


def test_beam_search_single_image():
    model = _model()
    tokens, attention = model.generate_beam(torch.randn(1, L, D), beam_width=3)

    assert tokens.shape[0] == 1
    assert tokens[0, 0].item() == model.start_id
    assert attention.shape == (1, tokens.shape[1] - 1, L)

    with pytest.raises(ValueError):
        model.generate_beam(torch.randn(2, L, D))


def test_create_model_ignores_training_keys():
    model = create_model(VOCAB_SIZE, {'embed_dim': 8, 'units': 12, 'feature_dim': D, 'batch_size': 64})
    assert model.decoder.units == 12
    assert model.count_parameters() > 0


def test_checkpoint_round_trip(tmp_path):
    config = {'vocab_size': VOCAB_SIZE, 'embed_dim': 8, 'units': 12, 'feature_dim': D, 'max_len': 7}
    model = create_model(VOCAB_SIZE, config)
    path = os.path.join(str(tmp_path), 'model.pt')
    torch.save({'model_state_dict': model.state_dict(), 'config': config}, path)

    loaded, loaded_config = load_model_checkpoint(path)
    assert loaded_config == config
    assert not loaded.training
    for a, b in zip(model.parameters(), loaded.parameters()):
        assert torch.equal(a, b)


def test_checkpoint_without_vocab_size(tmp_path):
    path = os.path.join(str(tmp_path), 'bad.pt')
    torch.save({'model_state_dict': {}, 'config': {}}, path)
    with pytest.raises(ValueError):
        load_model_checkpoint(path)
