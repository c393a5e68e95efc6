"""Order lifecycle coordination for one account.

Order flow (OrderState):
1. PREPARING: move any FUNDING balance to SPOT and confirm it landed
2. SIZED: read SPOT balance + LOT_SIZE rule, size via compute_trade_quantity
3. SUBMITTED: place the order exactly once
4. CONFIRMED / REJECTED: terminal, reported to the caller

Submissions are never retried here: the gateway's place_order is not
idempotent, so a rejected order is a terminal outcome. Every public method
returns an outcome dataclass instead of raising domain errors.
"""

import asyncio
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import Any

from acctops.config import TradingSettings
from acctops.exceptions import (
    AccountOpsError,
    GatewayError,
    InsufficientBalanceError,
    TransientGatewayError,
    ValidationError,
)
from acctops.exchange.gateway import AccountGateway
from acctops.exchange.types import NO_OPEN_ORDERS_CODE, AccountType, TradingRule
from acctops.logging import get_logger
from acctops.models import (
    AssetSnapshot,
    CancelOutcome,
    OrderOutcome,
    OrderRequest,
    OrderSide,
    OrderState,
    OrderType,
    PreparationResult,
    TransferOutcome,
    WithdrawOutcome,
)
from acctops.numeric import ZERO, is_step_aligned, to_decimal
from acctops.trading.sizing import size_order

logger = get_logger(__name__)


def _parse_side(side: "str | OrderSide") -> OrderSide:
    if isinstance(side, OrderSide):
        return side
    try:
        return OrderSide(str(side).lower())
    except ValueError:
        raise ValidationError(f"Order side must be BUY or SELL, got {side!r}") from None


def _positive(value: Any, name: str) -> Decimal:
    amount = to_decimal(value)
    if amount <= ZERO:
        raise ValidationError(f"{name} must be positive, got {amount}")
    return amount


class OrderCoordinator:
    """Sizes, submits and cancels spot orders and moves funds between wallets.

    Args:
        gateway: The account's exchange gateway.
        settings: Quote asset and post-transfer confirmation parameters.
        sleep: Awaitable delay function (injected in tests).
    """

    def __init__(
        self,
        gateway: AccountGateway,
        settings: TradingSettings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._gateway = gateway
        self._settings = settings or TradingSettings()
        self._sleep = sleep

    def symbol_for(self, coin: str) -> str:
        """Market symbol for a coin against the configured quote asset."""
        return f"{coin}/{self._settings.quote_asset}"

    # ──────────────────────────────────────────────
    # Balances and transfers
    # ──────────────────────────────────────────────

    async def _free_balance(self, account_type: AccountType, asset: str) -> Decimal:
        entries = await self._gateway.query_balance(account_type, asset)
        for entry in entries:
            if entry.asset == asset:
                return entry.free
        return ZERO

    async def transfer_funds(
        self,
        asset: str,
        amount: Any,
        from_account: "str | AccountType",
        to_account: "str | AccountType",
    ) -> TransferOutcome:
        """Move ``amount`` of ``asset`` between SPOT, MARGIN and FUNDING.

        Inputs are validated and the source balance is checked before the
        transfer primitive is called, so invalid or unfunded transfers never
        reach the exchange's transfer endpoint.
        """
        parsed_amount: Decimal | None = None
        source: AccountType | None = None
        destination: AccountType | None = None
        try:
            if not asset:
                raise ValidationError("Transfer asset must not be empty")
            parsed_amount = _positive(amount, "Transfer amount")
            source = AccountType.parse(from_account)
            destination = AccountType.parse(to_account)
            if source is destination:
                raise ValidationError(
                    f"Source and destination account are both {source.value}"
                )

            available = await self._free_balance(source, asset)
            if available < parsed_amount:
                raise InsufficientBalanceError(
                    f"{source.value} {asset} balance {available} is below {parsed_amount}"
                )

            result = await self._gateway.transfer(
                asset, parsed_amount, source, destination
            )
        except AccountOpsError as exc:
            logger.error(
                "transfer_failed",
                asset=asset,
                amount=str(amount),
                from_account=str(from_account),
                to_account=str(to_account),
                error=str(exc),
            )
            return TransferOutcome(
                success=False,
                asset=asset,
                amount=parsed_amount,
                from_account=source,
                to_account=destination,
                reason=str(exc),
                error=exc,
            )

        transfer_id = result.get("tranId") if isinstance(result, dict) else None
        logger.info(
            "transfer_completed",
            asset=asset,
            amount=str(parsed_amount),
            from_account=source.value,
            to_account=destination.value,
            transfer_id=transfer_id,
        )
        return TransferOutcome(
            success=True,
            asset=asset,
            amount=parsed_amount,
            from_account=source,
            to_account=destination,
            transfer_id=str(transfer_id) if transfer_id is not None else None,
        )

    async def withdraw(
        self,
        asset: str,
        amount: Any,
        address: str | None,
        network: str | None = None,
    ) -> WithdrawOutcome:
        """Withdraw ``amount`` of ``asset`` from SPOT to an external address.

        The withdrawal is submitted once; a rejection is reported, never retried.
        """
        parsed_amount: Decimal | None = None
        try:
            if not asset:
                raise ValidationError("Withdrawal asset must not be empty")
            if not address:
                raise ValidationError("Withdrawal address must not be empty")
            parsed_amount = _positive(amount, "Withdrawal amount")

            available = await self._free_balance(AccountType.SPOT, asset)
            if available < parsed_amount:
                raise InsufficientBalanceError(
                    f"SPOT {asset} balance {available} is below {parsed_amount}"
                )

            result = await self._gateway.withdraw(asset, parsed_amount, address, network)
        except AccountOpsError as exc:
            logger.error(
                "withdrawal_failed",
                asset=asset,
                amount=str(amount),
                network=network,
                error=str(exc),
            )
            return WithdrawOutcome(
                success=False,
                asset=asset,
                amount=parsed_amount,
                address=address,
                network=network,
                reason=str(exc),
                error=exc,
            )

        withdrawal_id = result.get("id") if isinstance(result, dict) else None
        logger.info(
            "withdrawal_submitted",
            asset=asset,
            amount=str(parsed_amount),
            network=network,
            withdrawal_id=withdrawal_id,
        )
        return WithdrawOutcome(
            success=True,
            asset=asset,
            amount=parsed_amount,
            address=address,
            network=network,
            withdrawal_id=str(withdrawal_id) if withdrawal_id is not None else None,
        )

    async def _confirm_spot_balance(self, coin: str, expected: Decimal) -> Decimal:
        """Poll SPOT until the transferred amount is visible.

        The gateway gives no cross-call consistency guarantee, so sizing
        must not read SPOT until this confirmation read has succeeded.
        """
        attempts = self._settings.confirm_attempts
        balance = ZERO
        for attempt in range(attempts):
            balance = await self._free_balance(AccountType.SPOT, coin)
            if balance >= expected:
                return balance
            logger.debug(
                "transfer_not_yet_visible",
                coin=coin,
                spot_balance=str(balance),
                expected=str(expected),
                attempt=attempt + 1,
            )
            if attempt < attempts - 1:
                await self._sleep(self._settings.confirm_delay)

        raise TransientGatewayError(
            f"Transferred {coin} not visible in SPOT after {attempts} reads "
            f"(balance {balance}, expected {expected})"
        )

    # ──────────────────────────────────────────────
    # Sizing
    # ──────────────────────────────────────────────

    async def prepare(self, coin: str) -> PreparationResult:
        """Pre-trade preparation for selling the whole balance of ``coin``.

        1. Move any FUNDING balance to SPOT and confirm it arrived
        2. Read SPOT balance and the symbol's LOT_SIZE rule
        3. Size the largest valid quantity, rejecting sub-minimum results
        """
        symbol = self.symbol_for(coin)
        transferred = ZERO
        logger.debug("order_state", symbol=symbol, state=OrderState.PREPARING.value)
        try:
            funding_balance = await self._free_balance(AccountType.FUNDING, coin)
            if funding_balance > ZERO:
                spot_before = await self._free_balance(AccountType.SPOT, coin)
                outcome = await self.transfer_funds(
                    coin, funding_balance, AccountType.FUNDING, AccountType.SPOT
                )
                if not outcome.success:
                    raise outcome.error or GatewayError(outcome.reason or "transfer failed")
                transferred = funding_balance
                spot_balance = await self._confirm_spot_balance(
                    coin, spot_before + funding_balance
                )
            else:
                logger.debug("no_funding_balance", coin=coin)
                spot_balance = await self._free_balance(AccountType.SPOT, coin)

            if spot_balance <= ZERO:
                raise InsufficientBalanceError(f"No {coin} in SPOT account to trade")

            rule = await self._gateway.query_trading_rule(symbol)
            quantity = size_order(spot_balance, rule)
        except AccountOpsError as exc:
            logger.error("trade_preparation_failed", coin=coin, error=str(exc))
            return PreparationResult(
                success=False, transferred=transferred, reason=str(exc), error=exc
            )

        logger.info(
            "order_state",
            symbol=symbol,
            state=OrderState.SIZED.value,
            spot_balance=str(spot_balance),
            quantity=str(quantity),
            step_size=str(rule.step_size),
        )
        return PreparationResult(
            success=True, quantity=quantity, rule=rule, transferred=transferred
        )

    async def _validate_explicit_quantity(self, symbol: str, quantity: Any) -> Decimal:
        amount = _positive(quantity, "Order quantity")
        rule: TradingRule = await self._gateway.query_trading_rule(symbol)
        if not is_step_aligned(amount, rule.step_size):
            raise ValidationError(
                f"Quantity {amount} is not a multiple of step size {rule.step_size}"
            )
        if amount < rule.min_quantity:
            raise ValidationError(
                f"Quantity {amount} is below minimum {rule.min_quantity}"
            )
        return amount

    async def _resolve_quantity(
        self, coin: str, side: OrderSide, quantity: Any
    ) -> Decimal:
        """Explicit quantity if given; SELL may derive it, BUY may not."""
        if quantity is not None:
            return await self._validate_explicit_quantity(self.symbol_for(coin), quantity)
        if side is OrderSide.BUY:
            raise ValidationError("BUY orders require an explicit quantity")

        preparation = await self.prepare(coin)
        if not preparation.success:
            raise preparation.error or AccountOpsError(preparation.reason)
        return preparation.quantity

    # ──────────────────────────────────────────────
    # Orders
    # ──────────────────────────────────────────────

    async def _submit(
        self,
        coin: str,
        side: Any,
        order_type: OrderType,
        quantity: Any,
        price: Any = None,
    ) -> OrderOutcome:
        symbol = self.symbol_for(coin)
        try:
            order_side = _parse_side(side)
            limit_price = _positive(price, "Limit price") if order_type is OrderType.LIMIT else None
            order_quantity = await self._resolve_quantity(coin, order_side, quantity)
        except AccountOpsError as exc:
            logger.error(
                "order_preparation_failed",
                symbol=symbol,
                order_type=order_type.value,
                error=str(exc),
            )
            return OrderOutcome(state=OrderState.REJECTED, reason=str(exc), error=exc)

        request = OrderRequest(
            symbol=symbol,
            side=order_side,
            order_type=order_type,
            quantity=order_quantity,
            price=limit_price,
        )
        logger.info(
            "order_state",
            symbol=symbol,
            state=OrderState.SUBMITTED.value,
            side=order_side.value,
            order_type=order_type.value,
            quantity=str(order_quantity),
            price=str(limit_price) if limit_price is not None else None,
        )

        try:
            result = await self._gateway.place_order(request)
        except GatewayError as exc:
            logger.error(
                "order_rejected",
                symbol=symbol,
                side=order_side.value,
                code=exc.code,
                error=str(exc),
            )
            return OrderOutcome(
                state=OrderState.REJECTED, request=request, reason=str(exc), error=exc
            )

        order_id = str(result.get("id", "")) if isinstance(result, dict) else ""
        logger.info(
            "order_state",
            symbol=symbol,
            state=OrderState.CONFIRMED.value,
            order_id=order_id,
        )
        return OrderOutcome(
            state=OrderState.CONFIRMED, request=request, order_id=order_id or None
        )

    async def submit_market(
        self, coin: str, side: Any, quantity: Any = None
    ) -> OrderOutcome:
        """Submit a market order; a SELL without quantity sells the whole balance."""
        return await self._submit(coin, side, OrderType.MARKET, quantity)

    async def submit_limit(
        self, coin: str, side: Any, price: Any, quantity: Any = None
    ) -> OrderOutcome:
        """Submit a good-till-cancelled limit order. Fill status is not polled."""
        return await self._submit(coin, side, OrderType.LIMIT, quantity, price)

    async def cancel_all(self, coin: str) -> CancelOutcome:
        """Cancel all open orders on the coin's symbol.

        Idempotent: the exchange's "no open orders" error is reported as success.
        """
        symbol = self.symbol_for(coin)
        try:
            cancelled = await self._gateway.cancel_all_orders(symbol)
        except GatewayError as exc:
            if exc.code == NO_OPEN_ORDERS_CODE:
                logger.warning("no_open_orders_to_cancel", symbol=symbol)
                return CancelOutcome(success=True, symbol=symbol, nothing_to_cancel=True)
            logger.error("cancel_orders_failed", symbol=symbol, code=exc.code, error=str(exc))
            return CancelOutcome(success=False, symbol=symbol, reason=str(exc), error=exc)

        count = len(cancelled) if isinstance(cancelled, list) else 0
        logger.info("orders_cancelled", symbol=symbol, cancelled=count)
        return CancelOutcome(success=True, symbol=symbol, cancelled=count)

    # ──────────────────────────────────────────────
    # Reporting
    # ──────────────────────────────────────────────

    async def query_asset(self, asset: str) -> AssetSnapshot:
        """Free balance of ``asset`` in SPOT, FUNDING and MARGIN.

        An account that cannot be read is reported as None instead of
        failing the whole snapshot.
        """
        balances: dict[AccountType, Decimal | None] = {}
        for account_type in AccountType:
            try:
                balances[account_type] = await self._free_balance(account_type, asset)
            except GatewayError as exc:
                logger.warning(
                    "asset_query_failed",
                    asset=asset,
                    account_type=account_type.value,
                    error=str(exc),
                )
                balances[account_type] = None

        snapshot = AssetSnapshot(
            asset=asset,
            spot=balances[AccountType.SPOT],
            funding=balances[AccountType.FUNDING],
            margin=balances[AccountType.MARGIN],
        )
        logger.info(
            "asset_snapshot",
            asset=asset,
            spot=_display(snapshot.spot),
            funding=_display(snapshot.funding),
            margin=_display(snapshot.margin),
        )
        return snapshot


def _display(value: Decimal | None) -> str:
    return "unavailable" if value is None else str(value)
