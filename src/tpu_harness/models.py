"""
Reference models for device inference.
"""

import logging

import torch.nn as nn

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def load_resnet50(pretrained: bool = False) -> nn.Module:
    """
    Load torchvision's ResNet50 in eval mode.

    Args:
        pretrained: Download ImageNet weights (network access required)

    Raises:
        ConfigurationError: If torchvision is not installed
    """
    try:
        from torchvision.models import ResNet50_Weights, resnet50
    except ImportError as e:
        raise ConfigurationError("model", "resnet50", f"torchvision is required ({e})") from e

    weights = ResNet50_Weights.DEFAULT if pretrained else None
    model = resnet50(weights=weights)
    model.eval()
    logger.info("Loaded ResNet50 (pretrained=%s)", pretrained)
    return model


def imagenet_categories():
    """ImageNet class names shipped with the pretrained ResNet50 weights."""
    try:
        from torchvision.models import ResNet50_Weights
    except ImportError as e:
        raise ConfigurationError("model", "resnet50", f"torchvision is required ({e})") from e
    return ResNet50_Weights.DEFAULT.meta["categories"]
