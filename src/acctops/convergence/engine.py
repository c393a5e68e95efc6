"""Incremental target convergence engine.

Drives an account-side quantity (borrowed amount, destination balance)
toward a target through repeated bounded suboperations against a
rate-limited, partially unreliable exchange API.

Each iteration:
  1. STOP: cancel event, deadline, iteration cap (all optional)
  2. SYNC: every resync_interval iterations (and first) read ground truth
  3. SIZE: near the target, attempt exactly the remainder; always clamp
     the step to [min_step, remaining]
  4. APPLY: one suboperation via the target
  5. ADAPT: success grows the step and sleeps a jittered delay; failure
     shrinks the step and backs off linearly up to backoff_max

Gateway errors are retried. Validation and balance errors end the run.
The engine reports a ConvergenceResult instead of raising.
"""

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from decimal import ROUND_DOWN, Decimal
from typing import Any

from acctops.config import ConvergenceSettings
from acctops.convergence.models import (
    ConvergenceResult,
    ConvergenceState,
    ConvergenceStatus,
)
from acctops.convergence.targets import ConvergenceTarget
from acctops.exceptions import (
    AccountOpsError,
    ConvergedAlready,
    GatewayError,
    ValidationError,
)
from acctops.logging import get_logger
from acctops.numeric import ZERO, clamp, to_decimal

logger = get_logger(__name__)


class ConvergenceEngine:
    """Adaptive step-size control loop toward a target amount.

    Args:
        settings: Step policy, backoff and stop-condition parameters.
        sleep: Awaitable delay function (injected in tests).
        rng: Random source for jitter (seeded in tests).
        clock: Monotonic clock used for the optional deadline.
    """

    def __init__(
        self,
        settings: ConvergenceSettings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock
        self._quantum = Decimal(1).scaleb(-settings.amount_decimals)

    # ──────────────────────────────────────────────
    # Step policy
    # ──────────────────────────────────────────────

    def step_after_success(self, step: Decimal, remaining: Decimal) -> Decimal:
        """min(step * growth_factor, remaining)."""
        return min(step * self._settings.growth_factor, remaining)

    def step_after_failure(self, step: Decimal) -> Decimal:
        """max(step * decay_factor, min_step)."""
        return max(step * self._settings.decay_factor, self._settings.min_step)

    def backoff_delay(self, consecutive_failures: int) -> float:
        """min(failures * backoff_base, backoff_max) seconds."""
        return min(
            consecutive_failures * self._settings.backoff_base,
            self._settings.backoff_max,
        )

    def attempt_amount(self, state: ConvergenceState) -> Decimal:
        """Size the next suboperation.

        Within near_threshold of the target the whole remainder is
        attempted. The result lies in [min_step, remaining] (or equals the
        remainder when that is smaller than min_step) and is truncated to
        amount_decimals.
        """
        step = state.step
        if state.remaining <= self._settings.near_threshold * state.target_amount:
            step = state.remaining
        step = clamp(step, self._settings.min_step, state.remaining)
        return step.quantize(self._quantum, rounding=ROUND_DOWN)

    def is_converged(self, state: ConvergenceState) -> bool:
        return (
            state.remaining <= ZERO
            or state.remaining < self._settings.convergence_floor
        )

    # ──────────────────────────────────────────────
    # Main loop
    # ──────────────────────────────────────────────

    async def run(
        self,
        target: ConvergenceTarget,
        target_amount: Any,
        cancel_event: asyncio.Event | None = None,
    ) -> ConvergenceResult:
        """Run the loop until converged or a stop condition fires.

        Args:
            target: Reads ground truth and applies one bounded step.
            target_amount: The amount to converge to (> 0).
            cancel_event: Checked at the top of every iteration.

        Returns:
            ConvergenceResult describing why the run ended.
        """
        try:
            goal = to_decimal(target_amount)
            if goal <= ZERO:
                raise ValidationError(f"Target amount must be positive, got {goal}")
        except ValidationError as exc:
            logger.error("convergence_invalid_target", target=target.describe(), error=str(exc))
            return ConvergenceResult(
                status=ConvergenceStatus.FAILED,
                target_amount=ZERO,
                current_amount=ZERO,
                remaining=ZERO,
                applied_total=ZERO,
                iterations=0,
                successes=0,
                failures=0,
                reason=str(exc),
            )

        state = ConvergenceState(
            target_amount=goal,
            current_amount=ZERO,
            remaining=goal,
            step=self._settings.initial_step,
        )
        deadline = (
            self._clock() + self._settings.deadline_seconds
            if self._settings.deadline_seconds is not None
            else None
        )
        synced = False

        logger.info(
            "convergence_started",
            target=target.describe(),
            target_amount=str(goal),
            initial_step=str(state.step),
            max_iterations=self._settings.max_iterations,
            deadline_seconds=self._settings.deadline_seconds,
        )

        while True:
            attempted: Decimal | None = None
            try:
                if synced and self.is_converged(state):
                    raise ConvergedAlready()

                stop = self._stop_status(state, cancel_event, deadline)
                if stop is not None:
                    return self._finish(target, state, stop)

                iteration = state.iterations
                state.iterations += 1

                if not synced or iteration % self._settings.resync_interval == 0:
                    await self._resync(target, state)
                    synced = True

                attempted = self.attempt_amount(state)
                applied = await target.apply(attempted)
            except ConvergedAlready:
                return self._finish(target, state, ConvergenceStatus.CONVERGED)
            except GatewayError as exc:
                await self._on_failure(target, state, attempted, exc)
                continue
            except AccountOpsError as exc:
                state.failures += 1
                return self._finish(target, state, ConvergenceStatus.FAILED, reason=str(exc))

            await self._on_success(target, state, attempted, applied)

    async def _resync(self, target: ConvergenceTarget, state: ConvergenceState) -> None:
        """Replace bookkeeping with ground truth; signal when already there."""
        current = await target.read_current()
        state.resync(current)
        logger.info(
            "convergence_resynced",
            target=target.describe(),
            current=str(state.current_amount),
            remaining=str(state.remaining),
            iteration=state.iterations,
        )
        if self.is_converged(state):
            raise ConvergedAlready()

    def _stop_status(
        self,
        state: ConvergenceState,
        cancel_event: asyncio.Event | None,
        deadline: float | None,
    ) -> ConvergenceStatus | None:
        if cancel_event is not None and cancel_event.is_set():
            return ConvergenceStatus.CANCELLED
        if deadline is not None and self._clock() >= deadline:
            return ConvergenceStatus.DEADLINE_EXCEEDED
        max_iterations = self._settings.max_iterations
        if max_iterations is not None and state.iterations >= max_iterations:
            return ConvergenceStatus.MAX_ITERATIONS
        return None

    async def _on_success(
        self,
        target: ConvergenceTarget,
        state: ConvergenceState,
        attempted: Decimal,
        applied: Decimal | None,
    ) -> None:
        amount = attempted if applied is None else applied
        state.record_applied(amount)
        state.successes += 1
        state.consecutive_failures = 0
        state.backoff = 0.0
        state.step = self.step_after_success(attempted, state.remaining)

        delay = self._rng.uniform(self._settings.jitter_min, self._settings.jitter_max)
        logger.info(
            "convergence_step_applied",
            target=target.describe(),
            amount=str(amount),
            current=str(state.current_amount),
            remaining=str(state.remaining),
            next_step=str(state.step),
        )
        await self._sleep(delay)

    async def _on_failure(
        self,
        target: ConvergenceTarget,
        state: ConvergenceState,
        attempted: Decimal | None,
        exc: GatewayError,
    ) -> None:
        state.failures += 1
        state.consecutive_failures += 1
        state.backoff = self.backoff_delay(state.consecutive_failures)
        # a failed ground-truth read is not a failed step; keep the step size
        if attempted is not None:
            state.step = self.step_after_failure(attempted)

        logger.warning(
            "convergence_step_failed",
            target=target.describe(),
            attempted=str(attempted) if attempted is not None else None,
            consecutive_failures=state.consecutive_failures,
            backoff_seconds=state.backoff,
            next_step=str(state.step),
            code=exc.code,
            error=str(exc),
        )
        await self._sleep(state.backoff)

    def _finish(
        self,
        target: ConvergenceTarget,
        state: ConvergenceState,
        status: ConvergenceStatus,
        reason: str | None = None,
    ) -> ConvergenceResult:
        result = ConvergenceResult(
            status=status,
            target_amount=state.target_amount,
            current_amount=state.current_amount,
            remaining=max(state.remaining, ZERO),
            applied_total=state.applied_total,
            iterations=state.iterations,
            successes=state.successes,
            failures=state.failures,
            reason=reason,
        )
        log = logger.info if result.converged else logger.warning
        log(
            "convergence_finished",
            target=target.describe(),
            status=status.value,
            current=str(result.current_amount),
            remaining=str(result.remaining),
            applied_total=str(result.applied_total),
            iterations=result.iterations,
            failures=result.failures,
            reason=reason,
        )
        return result
