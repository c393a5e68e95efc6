"""Data models for the target convergence loop.

All amounts are Decimal. ConvergenceState is owned by a single engine run
and never shared between accounts.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class ConvergenceStatus(str, Enum):
    """Why a convergence run stopped."""

    CONVERGED = "converged"
    CANCELLED = "cancelled"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    MAX_ITERATIONS = "max_iterations"
    FAILED = "failed"


@dataclass
class ConvergenceState:
    """Mutable bookkeeping of one run.

    Invariant: current_amount + remaining == target_amount.
    current_amount is replaced by ground truth on every re-sync and
    advanced by bookkeeping in between.
    """

    target_amount: Decimal
    current_amount: Decimal
    remaining: Decimal
    step: Decimal
    iterations: int = 0
    successes: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    backoff: float = 0.0
    applied_total: Decimal = Decimal("0")
    resyncs: int = 0

    def record_applied(self, amount: Decimal) -> None:
        self.current_amount += amount
        self.remaining -= amount
        self.applied_total += amount

    def resync(self, current: Decimal) -> None:
        self.current_amount = current
        self.remaining = self.target_amount - current
        self.resyncs += 1


@dataclass
class ConvergenceResult:
    """Terminal report of a convergence run."""

    status: ConvergenceStatus
    target_amount: Decimal
    current_amount: Decimal
    remaining: Decimal
    applied_total: Decimal
    iterations: int
    successes: int
    failures: int
    reason: str | None = None

    @property
    def converged(self) -> bool:
        return self.status is ConvergenceStatus.CONVERGED
