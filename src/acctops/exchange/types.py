"""Exchange-specific type definitions.

All monetary values use Decimal. Never use float for balances, quantities or debts.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from acctops.exceptions import ValidationError

# Binance error code returned by cancel-all when the symbol has no open orders
NO_OPEN_ORDERS_CODE = "-2011"


class AccountType(str, Enum):
    """Wallets an asset can sit in."""

    SPOT = "SPOT"
    MARGIN = "MARGIN"
    FUNDING = "FUNDING"

    @classmethod
    def parse(cls, value: "str | AccountType") -> "AccountType":
        """Parse a user supplied account type, case-insensitively.

        Raises:
            ValidationError: If the value is not one of SPOT, MARGIN, FUNDING.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            supported = ", ".join(member.value for member in cls)
            raise ValidationError(
                f"Unsupported account type {value!r}, expected one of: {supported}"
            ) from None


@dataclass(frozen=True)
class TradingRule:
    """Lot-size constraints for a symbol.

    Fetched from the exchange's LOT_SIZE filter once per sizing operation.
    Valid order quantities are multiples of step_size no smaller than min_quantity.
    """

    symbol: str
    min_quantity: Decimal
    step_size: Decimal


@dataclass(frozen=True)
class BalanceEntry:
    """Free balance of one asset in one account type."""

    asset: str
    free: Decimal


@dataclass(frozen=True)
class LoanStatus:
    """An ongoing flexible (collateralised) loan."""

    loan_coin: str
    total_debt: Decimal
    collateral_coin: str | None = None
