"""Account gateway layer -- Binance wallets, loans and orders via ccxt."""

from acctops.exchange.gateway import AccountGateway
from acctops.exchange.types import (
    NO_OPEN_ORDERS_CODE,
    AccountType,
    BalanceEntry,
    LoanStatus,
    TradingRule,
)

__all__ = [
    "NO_OPEN_ORDERS_CODE",
    "AccountGateway",
    "AccountType",
    "BalanceEntry",
    "LoanStatus",
    "TradingRule",
]
