"""Target convergence: the adaptive borrow/transfer control loop and its targets."""

from acctops.convergence.engine import ConvergenceEngine
from acctops.convergence.models import (
    ConvergenceResult,
    ConvergenceState,
    ConvergenceStatus,
)
from acctops.convergence.targets import (
    ConvergenceTarget,
    FlexibleLoanTarget,
    MarginLoanTarget,
    TransferTarget,
)

__all__ = [
    "ConvergenceEngine",
    "ConvergenceResult",
    "ConvergenceState",
    "ConvergenceStatus",
    "ConvergenceTarget",
    "FlexibleLoanTarget",
    "MarginLoanTarget",
    "TransferTarget",
]
