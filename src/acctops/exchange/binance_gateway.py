"""Binance account gateway implementation via ccxt async.

Wraps ccxt.async_support.binance with market loading, LOT_SIZE extraction,
wallet/loan endpoints that ccxt only exposes through its implicit API, and
translation of ccxt exceptions into the gateway error taxonomy.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal
from typing import TYPE_CHECKING

import ccxt.async_support as ccxt_async

from acctops.config import AccountSettings, ExchangeSettings
from acctops.exceptions import GatewayError, TransientGatewayError
from acctops.exchange.gateway import AccountGateway
from acctops.exchange.types import (
    NO_OPEN_ORDERS_CODE,
    AccountType,
    BalanceEntry,
    LoanStatus,
    TradingRule,
)
from acctops.logging import get_logger
from acctops.numeric import to_decimal

if TYPE_CHECKING:
    from acctops.models import OrderRequest

logger = get_logger(__name__)

# Universal transfer wallet names; Binance calls the spot wallet MAIN
_WALLET_NAMES = {
    AccountType.SPOT: "MAIN",
    AccountType.MARGIN: "MARGIN",
    AccountType.FUNDING: "FUNDING",
}

_ERROR_CODE_RE = re.compile(r'"code"\s*:\s*(-?\d+)')

# ccxt exceptions that mean "try again later", not "the exchange said no"
_TRANSIENT_ERRORS = (
    ccxt_async.NetworkError,  # includes RequestTimeout, RateLimitExceeded, ExchangeNotAvailable
)


def _extract_code(exc: Exception) -> str | None:
    match = _ERROR_CODE_RE.search(str(exc))
    return match.group(1) if match else None


class BinanceGateway(AccountGateway):
    """Concrete Binance gateway bound to one account's credentials."""

    def __init__(self, account: AccountSettings, settings: ExchangeSettings) -> None:
        self._account = account
        self._settings = settings

        config: dict = {
            "apiKey": account.api_key.get_secret_value(),
            "secret": account.api_secret.get_secret_value(),
            "enableRateLimit": True,
            "timeout": settings.request_timeout_ms,
            "options": {
                "defaultType": "spot",
            },
        }

        self._exchange = ccxt_async.binance(config)
        if settings.testnet:
            self._exchange.set_sandbox_mode(True)
        self._markets: dict = {}

    @property
    def exchange(self) -> ccxt_async.binance:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    @contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        """Re-raise ccxt exceptions as GatewayError / TransientGatewayError."""
        try:
            yield
        except _TRANSIENT_ERRORS as exc:
            logger.warning("gateway_transient_error", operation=operation, error=str(exc))
            raise TransientGatewayError(str(exc), code=_extract_code(exc)) from exc
        except ccxt_async.BaseError as exc:
            code = _extract_code(exc)
            logger.warning(
                "gateway_request_rejected", operation=operation, code=code, error=str(exc)
            )
            raise GatewayError(str(exc), code=code) from exc

    async def connect(self) -> None:
        """Initialize connection by loading markets."""
        logger.info("connecting_to_binance", testnet=self._settings.testnet)
        with self._translate_errors("load_markets"):
            self._markets = await self._exchange.load_markets()
        logger.info("binance_connected", market_count=len(self._markets))

    async def close(self) -> None:
        """Clean up ccxt async resources. CRITICAL: must be called to avoid resource leaks."""
        await self._exchange.close()
        logger.debug("binance_connection_closed")

    async def query_balance(
        self, account_type: AccountType, asset: str | None = None
    ) -> list[BalanceEntry]:
        """Read free balances from the spot, funding or cross-margin wallet."""
        params = {"asset": asset} if asset else {}

        with self._translate_errors(f"query_balance_{account_type.value.lower()}"):
            if account_type is AccountType.SPOT:
                rows = await self._exchange.sapiv3_post_asset_getuserasset(params)
            elif account_type is AccountType.FUNDING:
                rows = await self._exchange.sapi_post_asset_get_funding_asset(params)
            else:
                margin = await self._exchange.sapi_get_margin_account()
                rows = margin.get("userAssets", [])
                if asset:
                    rows = [row for row in rows if row.get("asset") == asset]

        return [
            BalanceEntry(asset=row["asset"], free=to_decimal(row.get("free", "0")))
            for row in rows
        ]

    async def query_trading_rule(self, symbol: str) -> TradingRule:
        """Extract the LOT_SIZE filter for a symbol from cached market data.

        Falls back to ccxt's normalised limits/precision when the raw
        filter list is missing.
        """
        if not self._markets:
            with self._translate_errors("load_markets"):
                self._markets = await self._exchange.load_markets()

        market = self._markets.get(symbol)
        if not market:
            raise GatewayError(f"Symbol {symbol} not found in loaded markets")

        filters = market.get("info", {}).get("filters", [])
        lot_size = next(
            (item for item in filters if item.get("filterType") == "LOT_SIZE"), None
        )
        if lot_size is not None:
            return TradingRule(
                symbol=symbol,
                min_quantity=to_decimal(lot_size["minQty"]),
                step_size=to_decimal(lot_size["stepSize"]),
            )

        amount_limits = market.get("limits", {}).get("amount", {})
        return TradingRule(
            symbol=symbol,
            min_quantity=to_decimal(amount_limits.get("min") or 0),
            step_size=to_decimal(market.get("precision", {}).get("amount") or 0),
        )

    async def query_loan_status(self) -> list[LoanStatus]:
        """List ongoing flexible loans."""
        with self._translate_errors("query_loan_status"):
            response = await self._exchange.sapiv2_get_loan_flexible_ongoing_orders()

        return [
            LoanStatus(
                loan_coin=row["loanCoin"],
                total_debt=to_decimal(row.get("totalDebt", "0")),
                collateral_coin=row.get("collateralCoin"),
            )
            for row in response.get("rows", [])
        ]

    async def query_margin_borrowed(self, asset: str) -> Decimal:
        """Return the borrowed principal of ``asset`` on cross margin."""
        with self._translate_errors("query_margin_borrowed"):
            margin = await self._exchange.sapi_get_margin_account()

        for row in margin.get("userAssets", []):
            if row.get("asset") == asset:
                return to_decimal(row.get("borrowed", "0"))
        return Decimal("0")

    async def borrow(
        self,
        loan_coin: str,
        loan_amount: Decimal,
        collateral_coin: str,
        collateral_amount: Decimal | None = None,
    ) -> dict:
        """Take a flexible loan; anything but status ``Succeeds`` is a rejection."""
        params = {
            "loanCoin": loan_coin,
            "loanAmount": str(loan_amount),
            "collateralCoin": collateral_coin,
        }
        if collateral_amount is not None:
            params["collateralAmount"] = str(collateral_amount)

        with self._translate_errors("borrow"):
            result = await self._exchange.sapiv2_post_loan_flexible_borrow(params)

        status = result.get("status")
        if status != "Succeeds":
            raise GatewayError(f"Flexible loan not completed, status: {status}")
        return result

    async def margin_borrow(self, asset: str, amount: Decimal) -> dict:
        """Borrow on the cross-margin account."""
        params = {
            "asset": asset,
            "isIsolated": "FALSE",
            "amount": str(amount),
            "type": "BORROW",
        }
        with self._translate_errors("margin_borrow"):
            return await self._exchange.sapi_post_margin_borrow_repay(params)

    async def transfer(
        self,
        asset: str,
        amount: Decimal,
        from_account: AccountType,
        to_account: AccountType,
    ) -> dict:
        """Universal transfer, e.g. type FUNDING_MAIN for FUNDING -> SPOT."""
        params = {
            "type": f"{_WALLET_NAMES[from_account]}_{_WALLET_NAMES[to_account]}",
            "asset": asset,
            "amount": str(amount),
        }
        logger.info(
            "submitting_transfer",
            asset=asset,
            amount=str(amount),
            transfer_type=params["type"],
        )
        with self._translate_errors("transfer"):
            return await self._exchange.sapi_post_asset_transfer(params)

    async def withdraw(
        self,
        asset: str,
        amount: Decimal,
        address: str,
        network: str | None = None,
    ) -> dict:
        params = {"network": network} if network else {}
        logger.info(
            "submitting_withdrawal",
            asset=asset,
            amount=str(amount),
            address=address,
            network=network,
        )
        with self._translate_errors("withdraw"):
            return await self._exchange.withdraw(
                asset, float(amount), address, None, params=params
            )

    async def place_order(self, request: OrderRequest) -> dict:
        """Place a market or GTC limit order via ccxt."""
        params: dict = {}
        if request.price is not None:
            params["timeInForce"] = "GTC"

        logger.info(
            "creating_order",
            symbol=request.symbol,
            order_type=request.order_type.value,
            side=request.side.value,
            quantity=str(request.quantity),
            price=str(request.price) if request.price is not None else None,
        )
        with self._translate_errors("place_order"):
            return await self._exchange.create_order(
                request.symbol,
                request.order_type.value,
                request.side.value,
                float(request.quantity),
                float(request.price) if request.price is not None else None,
                params=params,
            )

    async def cancel_all_orders(self, symbol: str) -> list[dict]:
        """Cancel every open order on a symbol via ccxt."""
        try:
            with self._translate_errors("cancel_all_orders"):
                return await self._exchange.cancel_all_orders(symbol)
        except GatewayError as exc:
            if isinstance(exc.__cause__, ccxt_async.OrderNotFound) and exc.code is None:
                exc.code = NO_OPEN_ORDERS_CODE
            raise
