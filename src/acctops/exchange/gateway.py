"""Abstract account gateway interface.

Defines the contract for all exchange implementations.
Sizing, order and convergence code depends only on this interface,
keeping Binance-specific details isolated in the concrete implementation.

Every method either returns its typed payload or raises GatewayError
(TransientGatewayError for network, timeout and rate-limit failures).
Query methods are idempotent; mutating methods are not and must not be
retried blindly by callers that cannot tolerate duplicates.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import TYPE_CHECKING

from acctops.exchange.types import AccountType, BalanceEntry, LoanStatus, TradingRule

if TYPE_CHECKING:
    from acctops.models import OrderRequest


class AccountGateway(ABC):
    """Abstract base class for credential-bound exchange gateways."""

    @abstractmethod
    async def connect(self) -> None:
        """Initialize connection and load markets."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Clean up resources (CRITICAL for ccxt async)."""
        ...

    @abstractmethod
    async def query_balance(
        self, account_type: AccountType, asset: str | None = None
    ) -> list[BalanceEntry]:
        """Return free balances in one account type.

        With ``asset`` set, the list holds at most one entry; an empty list
        means the account does not hold that asset.
        """
        ...

    @abstractmethod
    async def query_trading_rule(self, symbol: str) -> TradingRule:
        """Get lot-size constraints for a symbol such as ``BTC/USDT``."""
        ...

    @abstractmethod
    async def query_loan_status(self) -> list[LoanStatus]:
        """Return all ongoing flexible loans of the account."""
        ...

    @abstractmethod
    async def query_margin_borrowed(self, asset: str) -> Decimal:
        """Return the amount of ``asset`` currently borrowed on cross margin."""
        ...

    @abstractmethod
    async def borrow(
        self,
        loan_coin: str,
        loan_amount: Decimal,
        collateral_coin: str,
        collateral_amount: Decimal | None = None,
    ) -> dict:
        """Take a flexible loan. Collateral amount None lets the exchange pick it."""
        ...

    @abstractmethod
    async def margin_borrow(self, asset: str, amount: Decimal) -> dict:
        """Borrow ``amount`` of ``asset`` on the cross-margin account."""
        ...

    @abstractmethod
    async def transfer(
        self,
        asset: str,
        amount: Decimal,
        from_account: AccountType,
        to_account: AccountType,
    ) -> dict:
        """Move an asset between two account types."""
        ...

    @abstractmethod
    async def withdraw(
        self,
        asset: str,
        amount: Decimal,
        address: str,
        network: str | None = None,
    ) -> dict:
        """Withdraw from SPOT to an external address. Not idempotent.

        ``network`` selects the chain (e.g. ``TRX``); None lets the exchange
        use the asset's default network.
        """
        ...

    @abstractmethod
    async def place_order(self, request: OrderRequest) -> dict:
        """Place an order. Not idempotent: a repeat creates a second order."""
        ...

    @abstractmethod
    async def cancel_all_orders(self, symbol: str) -> list[dict]:
        """Cancel every open order on a symbol.

        Raises GatewayError with code NO_OPEN_ORDERS_CODE when there is
        nothing to cancel.
        """
        ...
