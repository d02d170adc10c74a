"""
Exceptions raised by the banded recurrence.

All of them subclass a builtin so callers that already catch ``ValueError``
or ``RuntimeError`` around the scan interface keep working.
"""


class InvalidShape(ValueError):
    """Band width, state dimension or time horizon is out of range."""


class UnsupportedDifferentiation(RuntimeError):
    """A gradient was requested w.r.t. a structural (shape) parameter.

    ``m``, ``n`` and ``T`` only decide which entries of the operator exist;
    there is no meaningful derivative, so we refuse instead of returning zeros.
    """


class AdjointMismatch(AssertionError):
    """``<A^T u, v> != <u, A v>`` beyond tolerance. Only raised by test helpers."""


__all__ = ["InvalidShape", "UnsupportedDifferentiation", "AdjointMismatch"]
