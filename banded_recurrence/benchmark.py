"""
Worked example and scaling measurement for the banded recurrence.

Prints the worked-example output (with its trajectory and gradient), then
times the banded forward/gradient against the dense O(n^2) reference for a
sweep of state sizes and reports how the runtime grows when n doubles.
"""

import argparse
import logging
import time

import numpy as np
import torch
from tqdm import tqdm

from banded_recurrence.naive_baseline import naive_evaluate, naive_gradient
from banded_recurrence.recurrence import evaluate, gradient

logger = logging.getLogger(__name__)


def worked_example_inputs(n: int, T: int, dtype: torch.dtype = torch.int64) -> torch.Tensor:
    """(1..n*T) mod T laid out column-major into an [n, T] matrix.

    Equivalently X[i, t] = (t*n + i + 1) % T for 0-indexed i, t.
    For n=9, T=11, m=2 the recurrence output is 355053.
    """
    values = np.arange(1, n * T + 1) % T
    return torch.as_tensor(values.reshape(n, T, order="F").copy(), dtype=dtype)


def time_forward(fn, repeats: int = 5) -> float:
    """Best-of-``repeats`` wall time of ``fn()`` in seconds."""
    best = float("inf")
    for _ in range(repeats):
        t0 = time.perf_counter()
        fn()
        if torch.cuda.is_available():
            torch.cuda.synchronize()
        best = min(best, time.perf_counter() - t0)
    return best


def measure_scaling(sizes, T: int, m: int, repeats: int, device: torch.device, dense_limit: int = 2048):
    """Time banded and dense paths for each n in ``sizes``.

    The dense reference is skipped above ``dense_limit`` since it allocates n x n.
    """
    torch.manual_seed(0)
    rows = []
    for n in tqdm(sizes, desc="n sweep"):
        x = torch.rand(n, T, device=device, dtype=torch.float64)
        row = {
            "n": n,
            "banded_fwd": time_forward(lambda: evaluate(x, m), repeats),
            "banded_grad": time_forward(lambda: gradient(x, m), repeats),
        }
        if n <= dense_limit:
            row["dense_fwd"] = time_forward(lambda: naive_evaluate(x, m), repeats)
            row["dense_grad"] = time_forward(lambda: naive_gradient(x, m), repeats)
        logger.debug("timings %s", row)
        rows.append(row)

    for prev, cur in zip(rows, rows[1:]):
        cur["fwd_ratio"] = cur["banded_fwd"] / prev["banded_fwd"]
    return rows


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--n", type=int, default=9)
    ap.add_argument("--T", type=int, default=11)
    ap.add_argument("--m", type=int, default=2)
    ap.add_argument("--sizes", type=int, nargs="+", default=[1000, 2000, 4000, 8000])
    ap.add_argument("--scan-T", type=int, default=10)
    ap.add_argument("--repeats", type=int, default=5)
    ap.add_argument("--device", choices=["auto", "cpu", "cuda"], default="auto")
    ap.add_argument("--show-state", action="store_true")
    ap.add_argument("--log-level", default="WARNING")
    args = ap.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(name)s %(levelname)s %(message)s")

    if args.device == "auto":
        device = torch.device("cuda" if torch.cuda.is_available() else "cpu")
    else:
        device = torch.device(args.device)

    X = worked_example_inputs(args.n, args.T)
    y = evaluate(X, args.m)
    y_dense = naive_evaluate(X, args.m)
    print({"n": args.n, "T": args.T, "m": args.m, "y": y.item(), "y_dense": y_dense.item()})
    if args.show_state:
        print("states =")
        print(evaluate(X, args.m, return_trajectory=True))
    print("dy/dX =")
    print(gradient(X, args.m))

    for row in measure_scaling(args.sizes, args.scan_T, args.m, args.repeats, device):
        print(row)


if __name__ == "__main__":
    main()
