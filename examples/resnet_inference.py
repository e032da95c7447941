"""
ResNet50 Inference on a TPU

Loads torchvision's ResNet50, maps every layer to the session device,
compiles the forward pass once and runs it on a batch of images.

On Colab the TPU address is read from ``COLAB_TPU_ADDR``; elsewhere an
``xrt_server`` is launched locally unless ``--target`` says otherwise.

Run:
    python examples/resnet_inference.py --target local://cpu
    python examples/resnet_inference.py --pretrained cat.jpg dog.jpg
"""

import argparse
import sys
import time

import numpy as np
import torch

from tpu_harness import AcceleratorBootstrap, HarnessConfig, ServerConfig, SessionConfig
from tpu_harness.logging_config import configure_logging
from tpu_harness.model_mapping import compile_inference, map_to_device
from tpu_harness.models import imagenet_categories, load_resnet50


def load_images(paths, batch_size):
    """Preprocessed image batch, random when no paths are given."""
    if not paths:
        rng = np.random.default_rng(0)
        return rng.standard_normal((batch_size, 3, 224, 224)).astype(np.float32)

    from torchvision.io import ImageReadMode, read_image
    from torchvision.models import ResNet50_Weights

    preprocess = ResNet50_Weights.DEFAULT.transforms()
    batch = torch.stack([preprocess(read_image(p, mode=ImageReadMode.RGB)) for p in paths])
    return batch.numpy()


def print_top_k(logits, labels, k=5, names=None):
    probs = torch.softmax(torch.from_numpy(logits), dim=-1)
    top_p, top_i = probs.topk(k, dim=-1)
    for row, (p_row, i_row) in enumerate(zip(top_p, top_i)):
        print(f"\nImage {names[row] if names else row}:")
        for p, i in zip(p_row.tolist(), i_row.tolist()):
            label = labels[i] if labels else f"class {i}"
            print(f"  {p:6.2%}  {label}")


def main():
    parser = argparse.ArgumentParser(description="ResNet50 inference through the TPU harness")
    parser.add_argument("images", nargs="*", help="Image files (default: random batch)")
    parser.add_argument("--target", type=str, help="Session target (default: from the environment)")
    parser.add_argument("--no-server", action="store_true", help="Do not launch xrt_server")
    parser.add_argument("--pretrained", action="store_true", help="Download ImageNet weights")
    parser.add_argument("--batch-size", type=int, default=2, help="Random batch size")
    parser.add_argument("--iterations", type=int, default=3, help="Timed runs of the compiled model")
    args = parser.parse_args()

    config = HarnessConfig.from_environment()
    if args.target:
        config.session = SessionConfig(target=args.target)
    if args.no_server:
        config.server = ServerConfig(command=config.server.command, launch=False)
    configure_logging(config.log_level)

    print("=" * 60)
    print(f"ResNet50 inference against {config.session.target}")
    print("=" * 60)

    model = load_resnet50(pretrained=args.pretrained)
    images = load_images(args.images, args.batch_size)

    with AcceleratorBootstrap(config) as session:
        model = map_to_device(model, session)
        x = session.transfer(images)

        start = time.time()
        executable, state = compile_inference(session, model, x)
        print(f"Compiled {executable} in {time.time() - start:.2f}s")

        for i in range(args.iterations):
            start = time.time()
            logits = session.run(executable, state, x)
            local = logits.to_local()
            print(f"Run {i + 1}: {time.time() - start:.3f}s")
            logits.release()

    labels = imagenet_categories() if args.pretrained else None
    print_top_k(local, labels, names=args.images or None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
