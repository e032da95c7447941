"""
Reverse-mode helpers for compiled gradient computations.

Built on ``torch.func`` so the whole backward pass is traced into the
executable together with the forward pass.
"""

from typing import Any, Callable, Dict, Tuple

import torch
import torch.nn as nn
from torch.func import functional_call, vjp


def functional_model(module: nn.Module) -> Tuple[Callable[..., Any], Dict[str, torch.Tensor]]:
    """
    Split a module into a pure function and its state.

    Returns:
        ``(fn, state)`` where ``fn(state, *inputs)`` runs the module with the
        given parameters and buffers, keyed by dotted name
    """
    state = {**dict(module.named_parameters()), **dict(module.named_buffers())}

    def fn(params, *inputs):
        return functional_call(module, params, inputs)

    return fn, {name: t.detach() for name, t in state.items()}


def value_and_pullback(loss_fn: Callable[..., torch.Tensor], params: Any, *args: Any,
                       seed: float = 1.0) -> Tuple[torch.Tensor, Any]:
    """
    Evaluate a scalar loss and pull ``seed`` back to ``params``.

    Args:
        loss_fn: ``loss_fn(params, *args)`` returning a 0-d tensor
        params: Tensor or tree of tensors to differentiate with respect to
        *args: Extra inputs held constant
        seed: Cotangent of the loss

    Returns:
        ``(loss, grads)`` with ``grads`` shaped like ``params``
    """
    loss, back = vjp(lambda p: loss_fn(p, *args), params)
    if loss.dim() != 0:
        raise ValueError(f"loss must be a scalar, got shape {tuple(loss.shape)}")
    (grads,) = back(torch.full_like(loss, seed))
    return loss, grads


def pullback(loss_fn: Callable[..., torch.Tensor], params: Any, *args: Any,
             seed: float = 1.0) -> Any:
    """Gradient of ``loss_fn`` with respect to ``params``, seeded with ``seed``."""
    return value_and_pullback(loss_fn, params, *args, seed=seed)[1]
