"""Exact base-10 arithmetic helpers for money-like quantities.

All monetary values use Decimal. Never use float for balances, step sizes
or borrow amounts: exchange payloads arrive as strings or floats and are
converted through ``str()`` so no binary rounding leaks in.
"""

from decimal import Decimal, InvalidOperation, getcontext, localcontext
from typing import Any

from acctops.exceptions import CalculationError

ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    """Convert an exchange or user supplied value to an exact Decimal.

    Floats go through ``str()`` first (``Decimal(0.1)`` would carry the
    binary expansion).

    Raises:
        CalculationError: If the value is None, a bool, non-numeric,
            NaN or infinite.
    """
    if isinstance(value, Decimal):
        result = value
    elif value is None or isinstance(value, bool):
        raise CalculationError(f"Not a numeric value: {value!r}")
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as exc:
            raise CalculationError(f"Not a numeric value: {value!r}") from exc

    if not result.is_finite():
        raise CalculationError(f"Not a finite value: {value!r}")
    return result


# Largest working precision the step helpers will widen to
MAX_PRECISION = 200


def _step_precision(value: Decimal, step: Decimal) -> int:
    """Digits needed for ``value // step`` and its product with ``step``.

    Raises:
        CalculationError: If the quotient would need more than MAX_PRECISION digits.
    """
    needed = (
        value.adjusted()
        - step.adjusted()
        + len(value.as_tuple().digits)
        + len(step.as_tuple().digits)
        + 2
    )
    if needed > MAX_PRECISION:
        raise CalculationError(
            f"{value} is too large relative to step {step} for exact rounding"
        )
    return max(getcontext().prec, needed)


def round_to_step(value: Decimal, step: Decimal) -> Decimal:
    """Round a value down to the nearest step increment.

    Uses integer division to ensure we always round DOWN (never up),
    which prevents exceeding the available balance. The division runs in
    a context wide enough for the quotient, so large balances with tiny
    steps stay exact.

    Args:
        value: The raw quantity to round.
        step: The minimum increment (e.g., 0.001 for BTC).

    Returns:
        The value rounded down to the nearest step.

    Raises:
        CalculationError: If the operands cannot be divided exactly.
    """
    try:
        with localcontext() as ctx:
            ctx.prec = _step_precision(value, step)
            return (value // step) * step
    except InvalidOperation as exc:
        raise CalculationError(f"Cannot round {value} to step {step}") from exc


def is_step_aligned(value: Decimal, step: Decimal) -> bool:
    """Whether ``value`` is an integer multiple of ``step``."""
    try:
        with localcontext() as ctx:
            ctx.prec = _step_precision(value, step)
            return value % step == ZERO
    except InvalidOperation as exc:
        raise CalculationError(f"Cannot align {value} to step {step}") from exc


def clamp(value: Decimal, lower: Decimal, upper: Decimal) -> Decimal:
    """Clamp ``value`` into ``[lower, upper]``; ``upper`` wins if they cross."""
    return min(max(value, lower), upper)
