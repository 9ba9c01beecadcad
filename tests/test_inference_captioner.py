import os

import pytest
import torch
from PIL import Image

from models.attention_model import create_model
from models.inference_captioner import CaptionGenerator
from preprocessing.vocab import build_vocab, save_vocab


@pytest.fixture
def generator(tmp_path):
    vocab = build_vocab(["<start> a dog on the grass <end>", "<start> a cat on a couch <end>"])
    vocab_path = str(tmp_path / 'vocab.pkl')
    save_vocab(vocab, vocab_path)

    config = {'vocab_size': vocab['vocab_size'], 'embed_dim': 8, 'units': 12, 'feature_dim': 2048,
              'max_len': 6, 'backbone': 'resnet50'}
    torch.manual_seed(0)
    model = create_model(vocab['vocab_size'], config)
    model_path = str(tmp_path / 'final_model.pt')
    torch.save({'model_state_dict': model.state_dict(), 'config': config}, model_path)

    return CaptionGenerator(model_path, vocab_path, device='cpu', pretrained_backbone=False)


def _image(folder, name='photo.jpg'):
    path = os.path.join(folder, name)
    Image.new('RGB', (80, 60), (30, 160, 40)).save(path)
    return path


def test_uses_backbone_from_checkpoint(generator):
    assert generator.backbone == 'resnet50'


@pytest.mark.parametrize('method', ['greedy', 'beam', 'sample'])
def test_caption_features(generator, method):
    caption, token_ids, attention = generator.caption_features(torch.randn(1, 49, 2048), method=method)

    assert token_ids[0] == generator.vocab['start_id']
    assert len(token_ids) <= 6
    assert attention.shape == (len(token_ids) - 1, 49)
    assert isinstance(caption, str)


def test_unknown_method(generator):
    with pytest.raises(ValueError):
        generator.caption_features(torch.randn(1, 49, 2048), method='nucleus')


def test_words_for_stops_at_end(generator):
    vocab = generator.vocab
    ids = [vocab['start_id'], vocab['stoi']['a'], vocab['stoi']['dog'], vocab['end_id'], vocab['stoi']['cat']]
    assert generator.words_for(ids) == ['a', 'dog']
    assert generator.decode_tokens(ids) == 'a dog'


def test_caption_image_and_plot(generator, tmp_path):
    result = generator.caption_image(_image(str(tmp_path)))

    assert set(result) == {'image_path', 'caption', 'token_ids', 'attention'}
    assert result['attention'].shape[1] == 49

    words = generator.words_for(result['token_ids'])
    if words:
        assert os.path.exists(generator.plot(result, str(tmp_path / 'attn.png')))


def test_batch_caption_folder(generator, tmp_path):
    folder = tmp_path / 'images'
    folder.mkdir()
    _image(str(folder), 'a.jpg')
    _image(str(folder), 'b.png')
    (folder / 'notes.txt').write_text('skip me')

    results = generator.batch_caption_folder(str(folder))
    assert [os.path.basename(r['image_path']) for r in results] == ['a.jpg', 'b.png']

    with pytest.raises(FileNotFoundError):
        generator.batch_caption_folder(str(tmp_path / 'missing'))


def test_vocab_mismatch(tmp_path):
    vocab = build_vocab(["<start> a dog <end>"])
    vocab_path = str(tmp_path / 'vocab.pkl')
    save_vocab(vocab, vocab_path)

    config = {'vocab_size': vocab['vocab_size'] + 3, 'embed_dim': 8, 'units': 12, 'feature_dim': 2048}
    model = create_model(config['vocab_size'], config)
    model_path = str(tmp_path / 'model.pt')
    torch.save({'model_state_dict': model.state_dict(), 'config': config}, model_path)

    with pytest.raises(ValueError):
        CaptionGenerator(model_path, vocab_path, device='cpu', backbone='resnet50', pretrained_backbone=False)
