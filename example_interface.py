"""
Minimal usage example for the recurrence interface.
"""

import torch

from banded_recurrence import evaluate, gradient


def main():
    device = "cuda" if torch.cuda.is_available() else "cpu"
    dtype = torch.float32 if device == "cuda" else torch.float64

    n, T, m = 1000, 10, 2
    x = torch.rand(n, T, device=device, dtype=dtype)

    y = evaluate(x, m)
    dx = gradient(x, m)
    print("y", y.item(), "dx shape", tuple(dx.shape), "dx[0, :3]", dx[0, :3].tolist())


if __name__ == "__main__":
    main()
