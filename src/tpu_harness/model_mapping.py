"""
Model Mapping for Device Execution

Walks a model and rewrites each layer for execution on the session
device. Layers fall into a closed set of kinds, each with its own
conversion rule:

- CONVOLUTION: weights moved to the device as float32
- NORMALIZATION: frozen for inference (eval mode) and moved
- CHAIN: containers; children are visited recursively
- ACTIVATION: stateless, kept as is
- OTHER: own parameters and buffers moved, children visited

The mapped model is then compiled into a single inference executable that
takes the model state as a ``RemoteStruct``.
"""

import logging
from enum import Enum
from typing import Dict, Tuple

import torch
import torch.nn as nn

from .arrays import DeviceArray, RemoteStruct
from .autodiff import functional_model
from .compiler import Executable
from .session import Session

logger = logging.getLogger(__name__)


class LayerKind(Enum):
    """Layer categories with distinct device conversion rules."""
    CONVOLUTION = "convolution"
    NORMALIZATION = "normalization"
    CHAIN = "chain"
    ACTIVATION = "activation"
    OTHER = "other"


_CONVOLUTIONS = (nn.Conv1d, nn.Conv2d, nn.Conv3d,
                 nn.ConvTranspose1d, nn.ConvTranspose2d, nn.ConvTranspose3d)
_NORMALIZATIONS = (nn.modules.batchnorm._BatchNorm, nn.LayerNorm, nn.GroupNorm,
                   nn.modules.instancenorm._InstanceNorm)
_CHAINS = (nn.Sequential, nn.ModuleList, nn.ModuleDict)
_ACTIVATIONS = (nn.ReLU, nn.ReLU6, nn.LeakyReLU, nn.GELU, nn.SiLU, nn.Sigmoid,
                nn.Tanh, nn.Softmax, nn.Identity, nn.Hardswish, nn.ELU)


def classify_layer(module: nn.Module) -> LayerKind:
    if isinstance(module, _CONVOLUTIONS):
        return LayerKind.CONVOLUTION
    if isinstance(module, _NORMALIZATIONS):
        return LayerKind.NORMALIZATION
    if isinstance(module, _CHAINS):
        return LayerKind.CHAIN
    if isinstance(module, _ACTIVATIONS):
        return LayerKind.ACTIVATION
    return LayerKind.OTHER


def _move_own_state(module: nn.Module, device: torch.device, dtype=None) -> None:
    """Move parameters and buffers registered directly on ``module``."""
    for name, param in list(module.named_parameters(recurse=False)):
        data = param.data.to(device=device, dtype=dtype if param.is_floating_point() else None)
        module._parameters[name] = nn.Parameter(data, requires_grad=param.requires_grad)
    for name, buf in list(module.named_buffers(recurse=False)):
        if buf is not None:
            module._buffers[name] = buf.to(device=device, dtype=dtype if buf.is_floating_point() else None)


class LayerVisitor:
    """Dispatches each layer to the handler for its ``LayerKind``."""

    def visit(self, module: nn.Module) -> nn.Module:
        kind = classify_layer(module)
        handler = {
            LayerKind.CONVOLUTION: self.visit_convolution,
            LayerKind.NORMALIZATION: self.visit_normalization,
            LayerKind.CHAIN: self.visit_chain,
            LayerKind.ACTIVATION: self.visit_activation,
            LayerKind.OTHER: self.visit_other,
        }[kind]
        return handler(module)

    def visit_children(self, module: nn.Module) -> nn.Module:
        for name, child in list(module.named_children()):
            setattr(module, name, self.visit(child))
        return module

    def visit_convolution(self, module: nn.Module) -> nn.Module:
        return module

    def visit_normalization(self, module: nn.Module) -> nn.Module:
        return module

    def visit_chain(self, module: nn.Module) -> nn.Module:
        return self.visit_children(module)

    def visit_activation(self, module: nn.Module) -> nn.Module:
        return module

    def visit_other(self, module: nn.Module) -> nn.Module:
        return self.visit_children(module)


class DevicePlacementVisitor(LayerVisitor):
    """Rewrites a model in place for inference on the session device."""

    def __init__(self, session: Session, dtype: torch.dtype = torch.float32):
        self.device = session.device
        self.dtype = dtype
        self.counts: Dict[LayerKind, int] = {kind: 0 for kind in LayerKind}

    def visit(self, module: nn.Module) -> nn.Module:
        self.counts[classify_layer(module)] += 1
        return super().visit(module)

    def visit_convolution(self, module):
        _move_own_state(module, self.device, self.dtype)
        return module

    def visit_normalization(self, module):
        # Running statistics are kept and used as constants
        module.eval()
        _move_own_state(module, self.device, self.dtype)
        return module

    def visit_other(self, module):
        _move_own_state(module, self.device, self.dtype)
        return self.visit_children(module)


def map_to_device(model: nn.Module, session: Session) -> nn.Module:
    """Rewrite ``model`` for the session device and put it in eval mode."""
    visitor = DevicePlacementVisitor(session)
    mapped = visitor.visit(model)
    mapped.eval()
    logger.info(
        "Mapped model to %s: %s",
        session.device,
        ", ".join(f"{kind.value}={count}" for kind, count in visitor.counts.items() if count),
    )
    return mapped


def model_state(model: nn.Module, session: Session) -> RemoteStruct:
    """
    Parameters and buffers of ``model`` as a RemoteStruct keyed by dotted name.

    State already placed by ``map_to_device`` is shared, not copied.
    """
    _, state = functional_model(model)
    return session.remote_struct({name: session.wrap(t) for name, t in state.items()})


def compile_inference(session: Session, model: nn.Module,
                      sample: DeviceArray) -> Tuple[Executable, RemoteStruct]:
    """
    Compile the forward pass of a mapped model.

    Returns:
        ``(executable, state)``; run with ``session.run(executable, state, x)``
    """
    forward, _ = functional_model(model)
    state = model_state(model, session)

    def inference(state, x):
        return forward(state, x)

    return session.compile(inference, state, sample), state


def run_inference(session: Session, model: nn.Module, images) -> DeviceArray:
    """Map, compile and run ``model`` on a batch of host images."""
    model = map_to_device(model, session)
    x = images if isinstance(images, DeviceArray) else session.transfer(images, dtype=torch.float32)
    executable, state = compile_inference(session, model, x)
    return session.run(executable, state, x)
