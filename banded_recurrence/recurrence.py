"""
High-level recurrence interface exposed to PyTorch.

Notation (x always [n, T]):
    x[:, t]: additive input at step t
    A:       banded operator (see banded_operator.py), fixed across steps
    s(0) = x[:, 0]
    s(t) = A @ s(t-1) + x[:, t]
    y    = s(T-1)[0]

The forward pass keeps a single state vector and never forms A. The
backward pass is driven by autograd; each step's ``A @ s`` node is a
``BandedUpdateFunction`` whose backward applies A^T directly, so the whole
gradient costs O(n * m * T) time and O(n * T) memory instead of O(n^2 * T).
"""

from __future__ import annotations

import logging

import torch
from einops import rearrange

from banded_recurrence.adjoint import banded_update, resolve_backend
from banded_recurrence.banded_operator import check_band_width
from banded_recurrence.errors import InvalidShape, UnsupportedDifferentiation

logger = logging.getLogger(__name__)

Tensor = torch.Tensor

_STRUCTURAL = ("m", "n", "T")


def _as_input_matrix(x) -> Tensor:
    if not isinstance(x, torch.Tensor):
        x = torch.as_tensor(x)
    if x.dim() != 2:
        raise InvalidShape(f"Input sequence must be a [n, T] matrix, got shape {tuple(x.shape)}.")
    n, T = x.shape
    if n < 1:
        raise InvalidShape("Input sequence must have at least one row (n >= 1).")
    if T < 1:
        raise InvalidShape("Input sequence must have at least one column (T >= 1).")
    return x


def _run(x: Tensor, m: int, backend: str, keep_states: bool):
    # Iterate over columns as rows of the transposed view.
    columns = rearrange(x, "n t -> t n")
    state = columns[0]
    states = [state] if keep_states else None
    for col in columns[1:]:
        state = banded_update(state, m, backend) + col
        if keep_states:
            states.append(state)
    return state, states


def evaluate(
    x,
    m,
    *,
    return_trajectory: bool = False,
    backend: str = "auto",
) -> Tensor:
    """Run the banded recurrence over ``x`` and return the first coordinate
    of the final state as a 0-d tensor.

    Args:
        x: input sequence of shape ``[n, T]``; column ``t`` is added at step ``t``.
            Integer dtypes are evaluated exactly.
        m: band width (>= 1). May exceed ``n``.
        return_trajectory: return the ``[n, T]`` matrix of all states instead.
            This is for inspection only and runs under ``torch.no_grad()``.
        backend: "auto" (default), "triton", or "torch".

    Returns:
        0-d tensor ``s(T-1)[0]``, or the ``[n, T]`` trajectory.
    """

    m = check_band_width(m)
    x = _as_input_matrix(x)
    n, T = x.shape
    chosen_backend = resolve_backend(x, backend)
    logger.debug("evaluate n=%d T=%d m=%d backend=%s dtype=%s", n, T, m, chosen_backend, x.dtype)

    if return_trajectory:
        with torch.no_grad():
            _, states = _run(x, m, chosen_backend, keep_states=True)
        return rearrange(torch.stack(states), "t n -> n t")

    state, _ = _run(x, m, chosen_backend, keep_states=False)
    return state[0]


def gradient(
    x,
    m,
    *,
    wrt: str = "x",
    backend: str = "auto",
) -> Tensor:
    """Gradient of ``evaluate(x, m)`` w.r.t. every entry of ``x``.

    Args:
        x: input sequence of shape ``[n, T]``. Integer inputs are promoted
            to float64, since autograd only tracks floating tensors.
        m: band width (>= 1).
        wrt: which argument to differentiate. Only "x" is differentiable;
            "m", "n" and "T" are structural.
        backend: "auto" (default), "triton", or "torch".

    Returns:
        Tensor of shape ``[n, T]``.
    """

    if wrt != "x":
        if wrt in _STRUCTURAL:
            raise UnsupportedDifferentiation(
                f"'{wrt}' is a structural parameter of the recurrence and has no gradient."
            )
        raise UnsupportedDifferentiation(f"Unknown differentiation target '{wrt}'; only 'x' is supported.")

    m = check_band_width(m)
    x = _as_input_matrix(x)
    if not x.is_floating_point():
        x = x.to(torch.float64)

    leaf = x.detach().requires_grad_(True)
    with torch.enable_grad():
        y = evaluate(leaf, m, backend=backend)
        (grad_x,) = torch.autograd.grad(y, leaf)
    return grad_x


__all__ = ["evaluate", "gradient"]
