"""Order quantity calculation with lot-size constraints.

All calculations use Decimal arithmetic exclusively -- no float conversions.
Uses round_to_step from numeric.py for step rounding (always down).

Sizing flow:
1. Take the raw spot balance
2. Round down to the symbol's step_size
3. Validate against min_quantity
"""

from decimal import Decimal
from typing import Any

from acctops.exceptions import CalculationError, InsufficientBalanceError
from acctops.exchange.types import TradingRule
from acctops.numeric import ZERO, round_to_step, to_decimal


def compute_trade_quantity(balance: Any, step_size: Any) -> Decimal:
    """Largest step-aligned quantity that does not exceed the balance.

    quantity = floor(balance / step_size) * step_size

    Args:
        balance: Free balance, >= 0. Decimal, int or numeric string.
        step_size: Exchange step size, > 0.

    Returns:
        The tradable quantity; Decimal("0") for a zero balance.

    Raises:
        CalculationError: If an input is non-numeric, the balance is
            negative or the step size is not positive. Not retryable.
    """
    balance = to_decimal(balance)
    step_size = to_decimal(step_size)

    if step_size <= ZERO:
        raise CalculationError(f"step_size must be positive, got {step_size}")
    if balance < ZERO:
        raise CalculationError(f"balance must not be negative, got {balance}")
    if balance.is_zero():
        return ZERO

    return round_to_step(balance, step_size)


def size_order(balance: Any, rule: TradingRule) -> Decimal:
    """Size an order from a balance and validate it against the symbol's minimum.

    Raises:
        CalculationError: On invalid inputs (see compute_trade_quantity).
        InsufficientBalanceError: If the aligned quantity is below min_quantity.
    """
    quantity = compute_trade_quantity(balance, rule.step_size)
    if quantity.is_zero() or quantity < rule.min_quantity:
        raise InsufficientBalanceError(
            f"Balance below minimum order quantity for {rule.symbol}: "
            f"sized {quantity}, minimum {rule.min_quantity}"
        )
    return quantity
