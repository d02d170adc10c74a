"""
Triton kernel for the banded operator and its transpose on CUDA tensors.

The state is viewed as ``rows x n`` (all leading dims flattened). Each
program owns one row and a ``BLOCK_N`` slice of output indices and
accumulates the ``m`` shifted, weighted loads for that slice:

    forward:    out[i] += (m - d) * state[i + d]    valid while i + d < n
    transpose:  out[i] += (m - d) * state[i - d]    valid while i - d >= 0

Grid: (rows, cdiv(n, BLOCK_N))
    - Program 0: row index
    - Program 1: block of output indices within the row

Work per row is O(n * m); nothing of size n x n is ever allocated.
"""

import logging

import torch
import triton
import triton.language as tl

logger = logging.getLogger(__name__)


@triton.jit
def banded_kernel(
    # --- Input/Output Pointers ---
    in_ptr,        # Input rows: shape (rows, n), contiguous
    out_ptr,       # Output rows: shape (rows, n), contiguous
    # --- Shapes / band ---
    n,             # State dimension
    m,             # Band width (coefficient of the diagonal)
    d_max,         # min(m, n): offsets past n never hit a valid index
    # --- Algorithm Parameters ---
    BLOCK_N: tl.constexpr,
    TRANSPOSE: tl.constexpr,
):
    row_id = tl.program_id(0)
    block_id = tl.program_id(1)

    offs = block_id * BLOCK_N + tl.arange(0, BLOCK_N)
    mask = offs < n
    row_base = row_id * n

    acc = tl.zeros((BLOCK_N,), dtype=out_ptr.dtype.element_ty)
    for d in range(0, d_max):
        if TRANSPOSE:
            src = offs - d
            valid = mask & (src >= 0)
        else:
            src = offs + d
            valid = mask & (src < n)
        v = tl.load(in_ptr + row_base + src, mask=valid, other=0.0)
        coef = (m - d).to(out_ptr.dtype.element_ty)
        acc += coef * v

    tl.store(out_ptr + row_base + offs, acc, mask=mask)


def banded_apply_triton(
    state: torch.Tensor,
    m: int,
    transpose: bool = False,
    BLOCK_N: int = 1024,
) -> torch.Tensor:
    """Apply A (or A^T when ``transpose``) along the last dim of ``state``.

    Args:
        state: floating CUDA tensor of shape (..., n).
        m: band width, already validated.
        transpose: apply the transpose instead.
        BLOCK_N: number of output indices per program.

    Returns:
        A new tensor with the same shape and dtype as ``state``.
    """
    if state.device.type != "cuda":
        raise RuntimeError("Triton backend requires CUDA tensors.")
    if not state.is_floating_point():
        raise RuntimeError("Triton backend only supports floating point states.")

    n = state.shape[-1]
    rows = state.reshape(-1, n).contiguous()
    out = torch.empty_like(rows)
    n_rows = rows.shape[0]
    if n_rows == 0:
        return out.reshape(state.shape)

    grid = (n_rows, triton.cdiv(n, BLOCK_N))
    logger.debug(
        "banded_kernel grid=%s n=%d m=%d transpose=%s dtype=%s", grid, n, m, transpose, state.dtype
    )
    banded_kernel[grid](
        rows, out, n, m, min(m, n),
        BLOCK_N=BLOCK_N, TRANSPOSE=transpose,
    )
    return out.reshape(state.shape)


__all__ = ["banded_apply_triton", "banded_kernel"]
