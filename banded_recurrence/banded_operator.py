"""
The banded transition operator used at every step of the recurrence.

For band width ``m`` and state dimension ``n`` the operator A has

    A[i, i + d] = m - d    for 0 <= d <= m - 1 and i + d < n

and zeros everywhere else (0-indexed). For n=4, m=2:

    [[2, 1, 0, 0],
     [0, 2, 1, 0],
     [0, 0, 2, 1],
     [0, 0, 0, 2]]

Only the action of A and of A^T are needed by the recurrence, and both cost
O(n * m) as a sum of ``m`` shifted copies of the input. The dense matrix is
available through ``BandedOperator.dense`` for inspection and reference
checks; nothing on the hot path calls it.
"""

from __future__ import annotations

import numbers
from typing import Optional

import torch

from banded_recurrence.errors import InvalidShape, UnsupportedDifferentiation

Tensor = torch.Tensor


def check_band_width(m) -> int:
    """Validate ``m`` and return it as a python int.

    A tensor band width is accepted if it holds a single integer, but never
    one that requires grad: the band width is structural.
    """

    if isinstance(m, torch.Tensor):
        if m.requires_grad:
            raise UnsupportedDifferentiation(
                "The band width m is a structural parameter and cannot be differentiated."
            )
        if m.numel() != 1 or m.is_floating_point() or m.is_complex() or m.dtype == torch.bool:
            raise InvalidShape(f"Band width must be a single integer, got tensor {m!r}.")
        m = m.item()
    if isinstance(m, bool) or not isinstance(m, numbers.Integral):
        raise InvalidShape(f"Band width must be an integer, got {type(m).__name__}.")
    m = int(m)
    if m < 1:
        raise InvalidShape(f"Band width must be >= 1, got m={m}.")
    return m


def _check_dimension(n) -> int:
    if isinstance(n, bool) or not isinstance(n, numbers.Integral):
        raise InvalidShape(f"State dimension must be an integer, got {type(n).__name__}.")
    n = int(n)
    if n < 1:
        raise InvalidShape(f"State dimension must be >= 1, got n={n}.")
    return n


def banded_apply(state: Tensor, m: int) -> Tensor:
    """Return ``A @ state`` along the last dimension.

    out[i] = sum_{d=0}^{min(m-1, n-1-i)} (m - d) * state[i + d]

    Writes go into a freshly allocated buffer, never into ``state``.
    """

    n = state.shape[-1]
    out = torch.zeros_like(state)
    for d in range(min(m, n)):
        out[..., : n - d] += (m - d) * state[..., d:]
    return out


def banded_apply_transpose(vector: Tensor, m: int) -> Tensor:
    """Return ``A^T @ vector`` along the last dimension.

    Swapping the row and column offsets of ``banded_apply`` gives

    out[i] = sum_{d=0, i-d>=0}^{m-1} (m - d) * vector[i - d]
    """

    n = vector.shape[-1]
    out = torch.zeros_like(vector)
    for d in range(min(m, n)):
        out[..., d:] += (m - d) * vector[..., : n - d]
    return out


class BandedOperator:
    """Immutable handle on the (m, n) banded operator.

    Both parameters are validated here so that a bad configuration fails at
    construction and not in the middle of a recurrence.
    """

    __slots__ = ("_m", "_n")

    def __init__(self, m, n):
        object.__setattr__(self, "_m", check_band_width(m))
        object.__setattr__(self, "_n", _check_dimension(n))

    def __setattr__(self, name, value):
        raise AttributeError("BandedOperator is immutable.")

    @property
    def m(self) -> int:
        return self._m

    @property
    def n(self) -> int:
        return self._n

    @property
    def shape(self):
        return (self._n, self._n)

    def _check_input(self, x: Tensor) -> None:
        if x.dim() < 1 or x.shape[-1] != self._n:
            raise InvalidShape(
                f"Expected a tensor whose last dimension is n={self._n}, got shape {tuple(x.shape)}."
            )

    def apply(self, state: Tensor) -> Tensor:
        self._check_input(state)
        return banded_apply(state, self._m)

    def apply_transpose(self, vector: Tensor) -> Tensor:
        self._check_input(vector)
        return banded_apply_transpose(vector, self._m)

    __call__ = apply

    def dense(self, dtype: Optional[torch.dtype] = None, device=None) -> Tensor:
        """Materialize the n x n matrix. O(n^2); for diagnostics only."""

        A = torch.zeros(self._n, self._n, dtype=dtype or torch.int64, device=device)
        for d in range(min(self._m, self._n)):
            idx = torch.arange(self._n - d, device=device)
            A[idx, idx + d] = self._m - d
        return A

    def __eq__(self, other):
        if not isinstance(other, BandedOperator):
            return NotImplemented
        return self._m == other._m and self._n == other._n

    def __hash__(self):
        return hash((BandedOperator, self._m, self._n))

    def __repr__(self):
        return f"BandedOperator(m={self._m}, n={self._n})"


__all__ = [
    "BandedOperator",
    "banded_apply",
    "banded_apply_transpose",
    "check_band_width",
]
