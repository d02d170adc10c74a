"""
Reverse-mode rule for the banded update.

The update ``new_state = A @ state`` is registered with autograd as an opaque
primitive. Its forward writes into a scratch buffer in place, which autograd
never sees; its backward is the hand-derived pullback

    d(loss)/d(state) = A^T @ d(loss)/d(new_state)

computed with the same O(n * m) shifted-sum trick as the forward. The band
width is structural and receives no gradient, and the operator has no
parameters of its own.
"""

from __future__ import annotations

import logging
from typing import Callable, Tuple

import torch

from banded_recurrence.banded_operator import (
    banded_apply,
    banded_apply_transpose,
    check_band_width,
)
from banded_recurrence.triton_banded import banded_apply_triton

logger = logging.getLogger(__name__)

Tensor = torch.Tensor

_BACKENDS = ("auto", "torch", "triton")


def resolve_backend(state: Tensor, backend: str) -> str:
    """Map ``backend`` to the concrete implementation for ``state``."""

    if backend not in _BACKENDS:
        raise ValueError(f"Unsupported backend '{backend}'. Use 'auto', 'triton', or 'torch'.")
    if backend == "auto":
        return "triton" if state.device.type == "cuda" and state.is_floating_point() else "torch"
    return backend


def _apply(state: Tensor, m: int, backend: str, transpose: bool) -> Tensor:
    if backend == "triton":
        return banded_apply_triton(state, m, transpose=transpose)
    if transpose:
        return banded_apply_transpose(state, m)
    return banded_apply(state, m)


class BandedUpdateFunction(torch.autograd.Function):
    """Autograd primitive for ``A @ state`` with a supplied backward.

    Nothing is saved for backward: the pullback is linear and depends only on
    the band width, which lives on ``ctx`` as a python int.
    """

    @staticmethod
    def forward(ctx, state: Tensor, m: int, backend: str) -> Tensor:
        ctx.m = m
        ctx.backend = backend
        return _apply(state, m, backend, transpose=False)

    @staticmethod
    def backward(ctx, grad_output: Tensor):
        grad_state = None
        if ctx.needs_input_grad[0]:
            grad_state = _apply(grad_output.contiguous(), ctx.m, ctx.backend, transpose=True)
        # No gradient for the band width or the backend selector.
        return grad_state, None, None


def banded_update(state: Tensor, m, backend: str = "auto") -> Tensor:
    """One step of the recurrence without the additive input."""

    m = check_band_width(m)
    backend = resolve_backend(state, backend)
    return BandedUpdateFunction.apply(state, m, backend)


def banded_update_vjp(
    state: Tensor, m, backend: str = "auto"
) -> Tuple[Tensor, Callable[[Tensor], Tensor]]:
    """Forward value plus pullback of the banded update, without autograd.

    Returns ``(new_state, pullback)`` where ``pullback(state_grad)`` maps the
    gradient w.r.t. ``new_state`` to the gradient w.r.t. ``state``. The
    closure only captures ``m`` and the backend, so it can be called any
    number of times with different gradients.
    """

    m = check_band_width(m)
    backend = resolve_backend(state, backend)
    n = state.shape[-1]

    with torch.no_grad():
        new_state = _apply(state, m, backend, transpose=False)

    def pullback(state_grad: Tensor) -> Tensor:
        if state_grad.shape[-1] != n:
            raise ValueError(
                f"Upstream gradient has last dimension {state_grad.shape[-1]}, expected {n}."
            )
        with torch.no_grad():
            return _apply(state_grad, m, backend, transpose=True)

    return new_state, pullback


__all__ = [
    "BandedUpdateFunction",
    "banded_update",
    "banded_update_vjp",
    "resolve_backend",
]
