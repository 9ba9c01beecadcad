import os
import argparse
from typing import Dict, Iterable

import numpy as np
import timm
import torch
import torch.nn as nn
from PIL import Image
from torchvision import transforms
from tqdm import tqdm

# --- CONFIGURATION ---
# backbone -> (timm model name, input size, channels of the last feature map)
BACKBONES = {
    'inception_v3': ('inception_v3.tv_in1k', 299, 2048),
    'resnet50': ('resnet50.tv_in1k', 224, 2048),
}

IMAGENET_MEAN = [0.485, 0.456, 0.406]
IMAGENET_STD = [0.229, 0.224, 0.225]
# ---------------------


def _backbone_spec(backbone):
    if backbone not in BACKBONES:
        raise ValueError(f"Unknown backbone '{backbone}'. Choose from {sorted(BACKBONES)}")
    return BACKBONES[backbone]


class SpatialFeatureExtractor(nn.Module):
    """Wraps a timm backbone so it returns (batch, positions, channels)."""

    def __init__(self, body: nn.Module):
        super().__init__()
        self.body = body

    def forward(self, images: torch.Tensor) -> torch.Tensor:
        fmap = self.body.forward_features(images)  # (B, C, H, W)
        B, C, H, W = fmap.shape
        return fmap.reshape(B, C, H * W).permute(0, 2, 1).contiguous()


def build_feature_extractor(backbone: str = 'inception_v3', pretrained: bool = True) -> SpatialFeatureExtractor:
    """
    Build an ImageNet backbone without its pooling and classifier head.

    inception_v3 -> (B, 64, 2048) for 299x299 inputs
    resnet50     -> (B, 49, 2048) for 224x224 inputs
    """
    model_name = _backbone_spec(backbone)[0]
    # global_pool='' keeps the spatial grid instead of a pooled vector
    body = timm.create_model(model_name, pretrained=pretrained, num_classes=0, global_pool='')
    for param in body.parameters():
        param.requires_grad = False

    extractor = SpatialFeatureExtractor(body)
    extractor.eval()
    return extractor


def image_transform(backbone: str = 'inception_v3') -> transforms.Compose:
    image_size = _backbone_spec(backbone)[1]
    return transforms.Compose([
        transforms.Resize((image_size, image_size)),
        transforms.ToTensor(),
        transforms.Normalize(mean=IMAGENET_MEAN, std=IMAGENET_STD),
    ])


def load_image(image_path: str, backbone: str = 'inception_v3') -> torch.Tensor:
    """Load an image file as a normalized (3, H, W) tensor."""
    with Image.open(image_path) as img:
        # Fixes PNG transparency (RGBA) and grayscale (L) inputs
        img = img.convert('RGB')
        return image_transform(backbone)(img)


def feature_cache_path(image_path: str, feature_dir: str) -> str:
    return os.path.join(feature_dir, os.path.basename(image_path) + '.npy')


def cache_features(
    image_paths: Iterable[str],
    feature_dir: str,
    extractor: nn.Module,
    backbone: str = 'inception_v3',
    batch_size: int = 16,
    device: str = 'cpu',
    overwrite: bool = False
) -> Dict[str, str]:
    """
    Run images through the extractor once and store features as .npy files.

    Args:
        image_paths: Image files (duplicates are processed once)
        feature_dir: Destination folder
        extractor: Module returning (B, positions, channels)
        backbone: Decides the resize applied before extraction
        batch_size: Images per forward pass
        device: torch device
        overwrite: Recompute features that are already cached

    Returns:
        Mapping image_path -> .npy path
    """
    os.makedirs(feature_dir, exist_ok=True)
    unique_paths = sorted(set(image_paths))
    mapping = {p: feature_cache_path(p, feature_dir) for p in unique_paths}

    pending = [p for p in unique_paths if overwrite or not os.path.exists(mapping[p])]
    print(f"Caching features: {len(pending)} to compute, {len(unique_paths) - len(pending)} cached")
    if not pending:
        return mapping

    extractor = extractor.to(device)
    extractor.eval()

    for start in tqdm(range(0, len(pending), batch_size), desc="Extracting features"):
        batch_paths = pending[start:start + batch_size]
        images = torch.stack([load_image(p, backbone) for p in batch_paths]).to(device)
        with torch.no_grad():
            features = extractor(images).cpu().numpy().astype(np.float32)
        for path, feat in zip(batch_paths, features):
            np.save(mapping[path], feat)

    return mapping


def main():
    from preprocessing import get_annotation_path, get_feature_dir
    from preprocessing.coco import load_captions
    from workstation.gpu_info import select_device

    parser = argparse.ArgumentParser(description='Cache CNN features for COCO images')
    parser.add_argument('--annotations', type=str, default=get_annotation_path())
    parser.add_argument('--image_folder', type=str, required=True)
    parser.add_argument('--backbone', type=str, default='inception_v3', choices=sorted(BACKBONES))
    parser.add_argument('--feature_dir', type=str, default=None)
    parser.add_argument('--num_examples', type=int, default=30000)
    parser.add_argument('--batch_size', type=int, default=16)
    parser.add_argument('--device', type=str, default='cuda', choices=['cuda', 'cpu', 'mps'])
    parser.add_argument('--overwrite', action='store_true')
    args = parser.parse_args()

    device = select_device(args.device)
    feature_dir = args.feature_dir or get_feature_dir(args.backbone)

    df = load_captions(args.annotations, args.image_folder, num_examples=args.num_examples)
    extractor = build_feature_extractor(args.backbone)

    print("-" * 30)
    print(f"Backbone: {args.backbone}")
    print(f"Images:   {df['image_path'].nunique()}")
    print(f"Target:   {feature_dir}")
    print("-" * 30)

    cache_features(df['image_path'], feature_dir, extractor, args.backbone,
                   batch_size=args.batch_size, device=device, overwrite=args.overwrite)
    print(f"Features are located in: {feature_dir}")


if __name__ == "__main__":
    main()
