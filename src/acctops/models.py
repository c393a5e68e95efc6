"""Shared data models for account operations.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities or amounts.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from acctops.exchange.types import AccountType, TradingRule


class OrderSide(str, Enum):
    """Order direction."""

    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    """Order type."""

    MARKET = "market"
    LIMIT = "limit"


class OrderState(str, Enum):
    """Lifecycle of one order submission."""

    PREPARING = "preparing"
    SIZED = "sized"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class OrderRequest:
    """Request to place an order. Never mutated and never resubmitted."""

    symbol: str
    side: OrderSide
    order_type: OrderType
    quantity: Decimal
    price: Decimal | None = None


@dataclass
class PreparationResult:
    """Outcome of the pre-trade sizing step."""

    success: bool
    quantity: Decimal | None = None
    rule: TradingRule | None = None
    transferred: Decimal = Decimal("0")  # moved FUNDING -> SPOT beforehand
    reason: str | None = None
    error: Exception | None = None


@dataclass
class OrderOutcome:
    """Terminal result of an order submission."""

    state: OrderState
    request: OrderRequest | None = None
    order_id: str | None = None
    reason: str | None = None
    error: Exception | None = None

    @property
    def success(self) -> bool:
        return self.state is OrderState.CONFIRMED


@dataclass
class CancelOutcome:
    """Result of cancelling every open order on a symbol."""

    success: bool
    symbol: str
    cancelled: int = 0
    nothing_to_cancel: bool = False
    reason: str | None = None
    error: Exception | None = None


@dataclass
class TransferOutcome:
    """Result of moving an asset between two account types."""

    success: bool
    asset: str
    amount: Decimal | None  # None when the supplied amount was not numeric
    from_account: AccountType | None = None
    to_account: AccountType | None = None
    transfer_id: str | None = None
    reason: str | None = None
    error: Exception | None = None


@dataclass
class WithdrawOutcome:
    """Result of a withdrawal request from the SPOT wallet to an external address."""

    success: bool
    asset: str
    amount: Decimal | None
    address: str | None = None
    network: str | None = None
    withdrawal_id: str | None = None
    reason: str | None = None
    error: Exception | None = None


@dataclass
class AssetSnapshot:
    """Free balance of one asset across the three account types.

    A value of None means that account could not be read.
    """

    asset: str
    spot: Decimal | None
    funding: Decimal | None
    margin: Decimal | None
