import pytest
import torch

from banded_recurrence.adjoint import BandedUpdateFunction, banded_update, banded_update_vjp
from banded_recurrence.errors import InvalidShape, UnsupportedDifferentiation
from banded_recurrence.naive_baseline import dense_operator


def _compare(device: str, n: int = 33, m: int = 4, backend: str = "auto"):
    torch.manual_seed(0)
    dtype = torch.float64 if device == "cpu" else torch.float32
    A = dense_operator(m, n, dtype=dtype, device=device)

    s_ref = torch.randn(3, n, device=device, dtype=dtype, requires_grad=True)
    s = s_ref.detach().clone().requires_grad_(True)
    w = torch.randn(3, n, device=device, dtype=dtype)

    # Reference: autograd through the dense matmul
    out_ref = s_ref @ A.T
    (out_ref * w).sum().backward()

    # Under test: opaque primitive with the hand-written backward
    out = banded_update(s, m, backend=backend)
    (out * w).sum().backward()

    atol = 1e-10 if dtype == torch.float64 else 1e-4
    assert torch.allclose(out, out_ref, atol=atol)
    assert torch.allclose(s.grad, s_ref.grad, atol=atol)


def test_backward_matches_dense_cpu():
    _compare(device="cpu")


@pytest.mark.parametrize("m", [1, 2, 5, 40])
def test_gradcheck(m):
    torch.manual_seed(m)
    s = torch.randn(2, 7, dtype=torch.float64, requires_grad=True)
    assert torch.autograd.gradcheck(lambda t: BandedUpdateFunction.apply(t, m, "torch"), (s,))


def test_backward_is_transpose_of_forward():
    # The backward of A @ s seeded with e_j is row j of A, i.e. A^T e_j.
    n, m = 6, 3
    A = dense_operator(m, n, dtype=torch.float64)
    s = torch.zeros(n, dtype=torch.float64, requires_grad=True)
    out = banded_update(s, m)
    for j in range(n):
        e = torch.zeros(n, dtype=torch.float64)
        e[j] = 1.0
        (g,) = torch.autograd.grad(out, s, grad_outputs=e, retain_graph=True)
        assert torch.equal(g, A[j])


def test_vjp_pullback_repeatable():
    n, m = 10, 3
    A = dense_operator(m, n, dtype=torch.float64)
    state = torch.arange(n, dtype=torch.float64)
    new_state, pullback = banded_update_vjp(state, m)
    assert torch.allclose(new_state, A @ state)

    g1 = torch.randn(n, dtype=torch.float64)
    g2 = torch.randn(n, dtype=torch.float64)
    g1_copy = g1.clone()
    r1 = pullback(g1)
    r2 = pullback(g2)
    r1_again = pullback(g1)

    assert torch.allclose(r1, A.T @ g1)
    assert torch.allclose(r2, A.T @ g2)
    assert torch.equal(r1, r1_again)
    assert torch.equal(g1, g1_copy)
    assert torch.equal(state, torch.arange(n, dtype=torch.float64))


def test_vjp_integer_exact():
    state = torch.tensor([1, 2, 3, 4])
    new_state, pullback = banded_update_vjp(state, 2)
    assert torch.equal(new_state, torch.tensor([4, 7, 10, 8]))
    assert torch.equal(pullback(torch.tensor([1, 1, 1, 1])), torch.tensor([2, 3, 3, 3]))


def test_vjp_rejects_wrong_gradient_length():
    _, pullback = banded_update_vjp(torch.zeros(4), 2)
    with pytest.raises(ValueError):
        pullback(torch.zeros(5))


def test_band_width_is_not_differentiable():
    s = torch.randn(4, requires_grad=True)
    with pytest.raises(UnsupportedDifferentiation):
        banded_update(s, torch.tensor(2.0, requires_grad=True))
    with pytest.raises(InvalidShape):
        banded_update(s, 0)


def test_backend_selection_errors():
    s = torch.randn(4)
    with pytest.raises(ValueError):
        banded_update(s, 2, backend="jax")
    with pytest.raises(RuntimeError):
        banded_update(s, 2, backend="triton")


@pytest.mark.skipif(not torch.cuda.is_available(), reason="CUDA not available")
def test_backward_matches_dense_cuda():
    _compare(device="cuda", n=4099, m=3, backend="triton")
    _compare(device="cuda", n=5, m=9, backend="triton")


if __name__ == "__main__":
    test_backward_matches_dense_cpu()
    test_vjp_pullback_repeatable()
    if torch.cuda.is_available():
        test_backward_matches_dense_cuda()
        print("CUDA check passed.")
    print("Adjoint checks passed.")
