import numpy as np
import torch
from typing import Callable, Optional

from banded_recurrence.banded_operator import BandedOperator, check_band_width
from banded_recurrence.errors import AdjointMismatch, InvalidShape


# Naive dense implementations (for reference & testing)


def dense_operator(m: int, n: int, dtype: Optional[torch.dtype] = None, device=None) -> torch.Tensor:
    """
    Builds the banded operator as a dense n x n matrix.

    Built with NumPy, outside anything autograd could trace: the matrix only
    depends on the structural parameters (m, n).

    Args:
        m: Band width (>= 1).
        n: State dimension (>= 1).
        dtype: Torch dtype of the result. Defaults to int64.

    Returns:
        Tensor A of shape (n, n) with A[j, j+d] = m - d.
    """
    m = check_band_width(m)
    if n < 1:
        raise InvalidShape(f"State dimension must be >= 1, got n={n}.")
    A = np.zeros((n, n), dtype=np.int64)
    for d in range(m):
        for j in range(n - d):
            A[j, j + d] = m - d
    return torch.as_tensor(A, dtype=dtype or torch.int64, device=device)


def naive_evaluate(x: torch.Tensor, m: int, return_trajectory: bool = False) -> torch.Tensor:
    """
    Computes the recurrence with a dense matmul at every step:
        s(0) = x[:, 0]
        s(t) = A @ s(t-1) + x[:, t]

    Costs O(n^2) per step. Autograd traces straight through the matmul, which
    makes this the reference for the hand-written backward.

    Args:
        x: Input tensor of shape (n, T).
        m: Band width.
        return_trajectory: Return all states (n, T) instead of s(T-1)[0].

    Returns:
        0-d tensor s(T-1)[0], or the (n, T) trajectory.
    """
    if x.dim() != 2 or x.shape[0] < 1 or x.shape[1] < 1:
        raise InvalidShape(f"Input sequence must be a non-empty [n, T] matrix, got {tuple(x.shape)}.")
    n, T = x.shape
    A = dense_operator(m, n, dtype=x.dtype, device=x.device)

    state = x[:, 0]
    states = [state]
    for t in range(1, T):
        state = A @ state + x[:, t]
        states.append(state)
    if return_trajectory:
        return torch.stack(states, dim=1)
    return state[0]


def naive_gradient(x: torch.Tensor, m: int) -> torch.Tensor:
    """
    Gradient of naive_evaluate w.r.t. x, via autograd through the dense path.
    """
    if not x.is_floating_point():
        x = x.to(torch.float64)
    leaf = x.detach().requires_grad_(True)
    with torch.enable_grad():
        y = naive_evaluate(leaf, m)
        (dx,) = torch.autograd.grad(y, leaf)
    return dx


def finite_difference_gradient(
    fn: Callable[[torch.Tensor], torch.Tensor],
    x: torch.Tensor,
    eps: float = 1e-6,
) -> torch.Tensor:
    """
    Central differences of a scalar function w.r.t. every entry of x.

    (fn(x + eps*e_k) - fn(x - eps*e_k)) / (2*eps), computed in float64.
    """
    x = x.detach().to(torch.float64)
    grad = torch.zeros_like(x)
    flat = grad.view(-1)
    for k in range(x.numel()):
        x_plus = x.clone()
        x_minus = x.clone()
        x_plus.view(-1)[k] += eps
        x_minus.view(-1)[k] -= eps
        flat[k] = (fn(x_plus) - fn(x_minus)) / (2 * eps)
    return grad


def check_adjoint_identity(
    op: BandedOperator,
    u: torch.Tensor,
    v: torch.Tensor,
    atol: float = 1e-8,
    rtol: float = 1e-6,
) -> None:
    """
    Raises AdjointMismatch unless <A^T u, v> == <u, A v> within tolerance.
    """
    lhs = torch.dot(op.apply_transpose(u), v)
    rhs = torch.dot(u, op.apply(v))
    if not torch.allclose(lhs, rhs, atol=atol, rtol=rtol):
        raise AdjointMismatch(
            f"{op}: <A^T u, v>={lhs.item():.6e} but <u, A v>={rhs.item():.6e} "
            f"(atol={atol}, rtol={rtol})"
        )
