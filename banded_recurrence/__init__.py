from banded_recurrence.adjoint import BandedUpdateFunction, banded_update, banded_update_vjp
from banded_recurrence.banded_operator import BandedOperator
from banded_recurrence.errors import AdjointMismatch, InvalidShape, UnsupportedDifferentiation
from banded_recurrence.recurrence import evaluate, gradient

__all__ = [
    "BandedOperator",
    "BandedUpdateFunction",
    "banded_update",
    "banded_update_vjp",
    "evaluate",
    "gradient",
    "InvalidShape",
    "UnsupportedDifferentiation",
    "AdjointMismatch",
]
