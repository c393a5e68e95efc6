"""Tests for OrderCoordinator -- transfers, preparation, submission and cancellation.

The gateway is an AsyncMock backed by an in-memory wallet so transfers
change later balance reads the way the exchange would.
"""

from decimal import Decimal

import pytest

from acctops.exceptions import (
    CalculationError,
    GatewayError,
    InsufficientBalanceError,
    TransientGatewayError,
    ValidationError,
)
from acctops.exchange.types import AccountType, BalanceEntry, TradingRule
from acctops.models import OrderSide, OrderState, OrderType
from acctops.trading.coordinator import OrderCoordinator

RULE = TradingRule(symbol="BTC/USDT", min_quantity=Decimal("0.001"), step_size=Decimal("0.001"))


class Wallet:
    """In-memory balances wired into the gateway mock."""

    def __init__(self, gateway, balances: dict[AccountType, dict[str, Decimal]]) -> None:
        self.balances = balances
        self.gateway = gateway
        gateway.query_balance.side_effect = self.query_balance
        gateway.transfer.side_effect = self.transfer
        gateway.query_trading_rule.return_value = RULE

    async def query_balance(self, account_type, asset=None):
        held = self.balances.get(account_type, {})
        return [
            BalanceEntry(asset=name, free=free)
            for name, free in held.items()
            if asset is None or name == asset
        ]

    async def transfer(self, asset, amount, from_account, to_account):
        source = self.balances.setdefault(from_account, {})
        source[asset] = source.get(asset, Decimal("0")) - amount
        destination = self.balances.setdefault(to_account, {})
        destination[asset] = destination.get(asset, Decimal("0")) + amount
        return {"tranId": 1001}


@pytest.fixture
def coordinator(gateway, trading_settings, sleep) -> OrderCoordinator:
    return OrderCoordinator(gateway, trading_settings, sleep=sleep)


class TestTransferFunds:
    @pytest.mark.asyncio
    async def test_successful_transfer(self, coordinator, gateway) -> None:
        wallet = Wallet(gateway, {AccountType.FUNDING: {"USDT": Decimal("50")}})

        outcome = await coordinator.transfer_funds("USDT", "20", "funding", "SPOT")

        assert outcome.success
        assert outcome.amount == Decimal("20")
        assert outcome.from_account is AccountType.FUNDING
        assert outcome.to_account is AccountType.SPOT
        assert outcome.transfer_id == "1001"
        assert wallet.balances[AccountType.SPOT]["USDT"] == Decimal("20")

    @pytest.mark.asyncio
    async def test_same_account_rejected_without_gateway_call(self, coordinator, gateway) -> None:
        outcome = await coordinator.transfer_funds("USDT", "5", "SPOT", "SPOT")

        assert not outcome.success
        assert isinstance(outcome.error, ValidationError)
        gateway.query_balance.assert_not_awaited()
        gateway.transfer.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-3", "lots"])
    async def test_invalid_amount_rejected(self, coordinator, gateway, amount) -> None:
        outcome = await coordinator.transfer_funds("USDT", amount, "FUNDING", "SPOT")

        assert not outcome.success
        assert isinstance(outcome.error, ValidationError)
        gateway.transfer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_account_type_rejected(self, coordinator, gateway) -> None:
        outcome = await coordinator.transfer_funds("USDT", "5", "FUTURES", "SPOT")

        assert not outcome.success
        assert isinstance(outcome.error, ValidationError)
        gateway.transfer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_insufficient_source_balance(self, coordinator, gateway) -> None:
        Wallet(gateway, {AccountType.SPOT: {"USDT": Decimal("4")}})

        outcome = await coordinator.transfer_funds("USDT", "5", "SPOT", "MARGIN")

        assert not outcome.success
        assert isinstance(outcome.error, InsufficientBalanceError)
        gateway.transfer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gateway_rejection_reported(self, coordinator, gateway) -> None:
        Wallet(gateway, {AccountType.SPOT: {"USDT": Decimal("10")}})
        gateway.transfer.side_effect = GatewayError("transfer disabled", code="-3041")

        outcome = await coordinator.transfer_funds("USDT", "5", "SPOT", "FUNDING")

        assert not outcome.success
        assert outcome.error.code == "-3041"


class TestWithdraw:
    @pytest.mark.asyncio
    async def test_successful_withdrawal(self, coordinator, gateway) -> None:
        Wallet(gateway, {AccountType.SPOT: {"USDT": Decimal("100")}})
        gateway.withdraw.return_value = {"id": "7213fea8e94b4a5593d507237e5a555b"}

        outcome = await coordinator.withdraw("USDT", "25.5", "TXyz123", "TRX")

        assert outcome.success
        assert outcome.amount == Decimal("25.5")
        assert outcome.withdrawal_id == "7213fea8e94b4a5593d507237e5a555b"
        gateway.withdraw.assert_awaited_once_with("USDT", Decimal("25.5"), "TXyz123", "TRX")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("address", [None, ""])
    async def test_missing_address_rejected_without_gateway_call(
        self, coordinator, gateway, address
    ) -> None:
        outcome = await coordinator.withdraw("USDT", "5", address)

        assert not outcome.success
        assert isinstance(outcome.error, ValidationError)
        gateway.query_balance.assert_not_awaited()
        gateway.withdraw.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-1", "all"])
    async def test_invalid_amount_rejected(self, coordinator, gateway, amount) -> None:
        outcome = await coordinator.withdraw("USDT", amount, "TXyz123")

        assert not outcome.success
        assert isinstance(outcome.error, ValidationError)
        gateway.withdraw.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_insufficient_spot_balance(self, coordinator, gateway) -> None:
        Wallet(
            gateway,
            {
                AccountType.SPOT: {"USDT": Decimal("4")},
                AccountType.FUNDING: {"USDT": Decimal("500")},
            },
        )

        outcome = await coordinator.withdraw("USDT", "5", "TXyz123")

        assert not outcome.success
        assert isinstance(outcome.error, InsufficientBalanceError)
        gateway.query_balance.assert_awaited_once_with(AccountType.SPOT, "USDT")
        gateway.withdraw.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gateway_rejection_reported_once(self, coordinator, gateway) -> None:
        Wallet(gateway, {AccountType.SPOT: {"USDT": Decimal("10")}})
        gateway.withdraw.side_effect = GatewayError("address not whitelisted", code="-4014")

        outcome = await coordinator.withdraw("USDT", "5", "TXyz123")

        assert not outcome.success
        assert outcome.error.code == "-4014"
        assert outcome.address == "TXyz123"
        gateway.withdraw.assert_awaited_once()


class TestPrepare:
    @pytest.mark.asyncio
    async def test_moves_funding_to_spot_then_sizes(self, coordinator, gateway) -> None:
        wallet = Wallet(
            gateway,
            {
                AccountType.FUNDING: {"BTC": Decimal("0.0123")},
                AccountType.SPOT: {"BTC": Decimal("0.0101")},
            },
        )

        result = await coordinator.prepare("BTC")

        assert result.success
        assert result.transferred == Decimal("0.0123")
        assert result.quantity == Decimal("0.022")
        assert result.rule == RULE
        assert wallet.balances[AccountType.FUNDING]["BTC"] == Decimal("0")
        gateway.query_trading_rule.assert_awaited_once_with("BTC/USDT")

    @pytest.mark.asyncio
    async def test_waits_until_transfer_visible(self, coordinator, gateway, sleep) -> None:
        wallet = Wallet(gateway, {AccountType.FUNDING: {"BTC": Decimal("0.5")}})
        visible_after = {"reads": 0}
        real_query = wallet.query_balance

        async def lagging_query(account_type, asset=None):
            if account_type is AccountType.SPOT and wallet.balances.get(AccountType.SPOT):
                visible_after["reads"] += 1
                if visible_after["reads"] == 1:
                    return []
            return await real_query(account_type, asset)

        gateway.query_balance.side_effect = lagging_query

        result = await coordinator.prepare("BTC")

        assert result.success
        assert result.quantity == Decimal("0.5")
        sleep.assert_awaited_once_with(0.0)

    @pytest.mark.asyncio
    async def test_unconfirmed_transfer_fails(self, coordinator, gateway, sleep) -> None:
        wallet = Wallet(gateway, {AccountType.FUNDING: {"BTC": Decimal("0.5")}})

        # accepted by the exchange but never credited to SPOT
        gateway.transfer.side_effect = None
        gateway.transfer.return_value = {"tranId": 1}

        result = await coordinator.prepare("BTC")

        assert not result.success
        assert isinstance(result.error, TransientGatewayError)
        assert sleep.await_count == 2
        gateway.query_trading_rule.assert_not_awaited()
        assert wallet.balances[AccountType.FUNDING]["BTC"] == Decimal("0.5")

    @pytest.mark.asyncio
    async def test_no_funding_uses_spot_directly(self, coordinator, gateway) -> None:
        Wallet(gateway, {AccountType.SPOT: {"BTC": Decimal("1.23456")}})

        result = await coordinator.prepare("BTC")

        assert result.success
        assert result.transferred == Decimal("0")
        assert result.quantity == Decimal("1.234")
        gateway.transfer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_spot_is_insufficient(self, coordinator, gateway) -> None:
        Wallet(gateway, {})

        result = await coordinator.prepare("BTC")

        assert not result.success
        assert isinstance(result.error, InsufficientBalanceError)

    @pytest.mark.asyncio
    async def test_dust_below_minimum_is_insufficient(self, coordinator, gateway) -> None:
        Wallet(gateway, {AccountType.SPOT: {"BTC": Decimal("0.0009")}})

        result = await coordinator.prepare("BTC")

        assert not result.success
        assert isinstance(result.error, InsufficientBalanceError)


class TestSubmitOrders:
    @pytest.mark.asyncio
    async def test_market_sell_without_quantity_sells_balance(self, coordinator, gateway) -> None:
        Wallet(gateway, {AccountType.SPOT: {"BTC": Decimal("0.0256")}})
        gateway.place_order.return_value = {"id": "A1"}

        outcome = await coordinator.submit_market("BTC", "SELL")

        assert outcome.success
        assert outcome.state is OrderState.CONFIRMED
        assert outcome.order_id == "A1"
        request = gateway.place_order.await_args.args[0]
        assert request.symbol == "BTC/USDT"
        assert request.side is OrderSide.SELL
        assert request.order_type is OrderType.MARKET
        assert request.quantity == Decimal("0.025")
        assert request.price is None

    @pytest.mark.asyncio
    async def test_buy_without_quantity_rejected(self, coordinator, gateway) -> None:
        outcome = await coordinator.submit_market("BTC", "BUY")

        assert outcome.state is OrderState.REJECTED
        assert isinstance(outcome.error, ValidationError)
        gateway.place_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_side_rejected(self, coordinator, gateway) -> None:
        outcome = await coordinator.submit_market("BTC", "HOLD", "1")

        assert outcome.state is OrderState.REJECTED
        gateway.place_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_explicit_quantity_must_be_step_aligned(self, coordinator, gateway) -> None:
        gateway.query_trading_rule.return_value = RULE

        outcome = await coordinator.submit_market("BTC", "BUY", "0.0015")

        assert outcome.state is OrderState.REJECTED
        assert "step size" in outcome.reason
        gateway.place_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_explicit_quantity_below_minimum_rejected(self, coordinator, gateway) -> None:
        gateway.query_trading_rule.return_value = TradingRule(
            symbol="BTC/USDT", min_quantity=Decimal("0.01"), step_size=Decimal("0.001")
        )

        outcome = await coordinator.submit_market("BTC", "buy", "0.005")

        assert outcome.state is OrderState.REJECTED
        gateway.place_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exchange_rejection_not_retried(self, coordinator, gateway) -> None:
        gateway.query_trading_rule.return_value = RULE
        gateway.place_order.side_effect = GatewayError("insufficient balance", code="-2010")

        outcome = await coordinator.submit_market("BTC", "BUY", "0.002")

        assert outcome.state is OrderState.REJECTED
        assert outcome.request is not None
        assert outcome.error.code == "-2010"
        assert gateway.place_order.await_count == 1

    @pytest.mark.asyncio
    async def test_limit_order_carries_price(self, coordinator, gateway) -> None:
        gateway.query_trading_rule.return_value = RULE
        gateway.place_order.return_value = {"id": 77}

        outcome = await coordinator.submit_limit("BTC", "BUY", "64000.5", "0.002")

        assert outcome.success
        assert outcome.order_id == "77"
        request = gateway.place_order.await_args.args[0]
        assert request.order_type is OrderType.LIMIT
        assert request.price == Decimal("64000.5")
        assert request.quantity == Decimal("0.002")

    @pytest.mark.asyncio
    async def test_limit_order_requires_positive_price(self, coordinator, gateway) -> None:
        outcome = await coordinator.submit_limit("BTC", "BUY", "0", "0.002")

        assert outcome.state is OrderState.REJECTED
        gateway.place_order.assert_not_awaited()


class TestCancelAll:
    @pytest.mark.asyncio
    async def test_reports_cancelled_count(self, coordinator, gateway) -> None:
        gateway.cancel_all_orders.return_value = [{"id": "1"}, {"id": "2"}]

        outcome = await coordinator.cancel_all("BTC")

        assert outcome.success
        assert outcome.cancelled == 2
        gateway.cancel_all_orders.assert_awaited_once_with("BTC/USDT")

    @pytest.mark.asyncio
    async def test_no_open_orders_is_success(self, coordinator, gateway) -> None:
        gateway.cancel_all_orders.side_effect = GatewayError("Unknown order sent.", code="-2011")

        outcome = await coordinator.cancel_all("BTC")

        assert outcome.success
        assert outcome.nothing_to_cancel
        assert outcome.cancelled == 0

    @pytest.mark.asyncio
    async def test_other_errors_are_failures(self, coordinator, gateway) -> None:
        gateway.cancel_all_orders.side_effect = GatewayError("banned", code="-1003")

        outcome = await coordinator.cancel_all("BTC")

        assert not outcome.success
        assert outcome.error.code == "-1003"


class TestWideBalances:
    @pytest.mark.asyncio
    async def test_prepare_large_balance_with_tiny_step(self, coordinator, gateway) -> None:
        Wallet(gateway, {AccountType.SPOT: {"SHIB": Decimal("100000000000000000000")}})
        gateway.query_trading_rule.return_value = TradingRule(
            symbol="SHIB/USDT", min_quantity=Decimal("1"), step_size=Decimal("0.0000000001")
        )

        result = await coordinator.prepare("SHIB")

        assert result.success
        assert result.quantity == Decimal("100000000000000000000")

    @pytest.mark.asyncio
    async def test_prepare_unroundable_balance_fails_cleanly(self, coordinator, gateway) -> None:
        Wallet(gateway, {AccountType.SPOT: {"SHIB": Decimal("1E+300")}})
        gateway.query_trading_rule.return_value = TradingRule(
            symbol="SHIB/USDT", min_quantity=Decimal("1"), step_size=Decimal("1E-300")
        )

        result = await coordinator.prepare("SHIB")

        assert not result.success
        assert isinstance(result.error, CalculationError)

    @pytest.mark.asyncio
    async def test_explicit_quantity_with_tiny_step(self, coordinator, gateway) -> None:
        gateway.query_trading_rule.return_value = TradingRule(
            symbol="SHIB/USDT", min_quantity=Decimal("1"), step_size=Decimal("0.0000000001")
        )
        gateway.place_order.return_value = {"id": "S1"}

        outcome = await coordinator.submit_market("SHIB", "BUY", "100000000000000000000")

        assert outcome.success


class TestQueryAsset:
    @pytest.mark.asyncio
    async def test_snapshot_of_all_wallets(self, coordinator, gateway) -> None:
        Wallet(
            gateway,
            {
                AccountType.SPOT: {"USDT": Decimal("1.5")},
                AccountType.FUNDING: {"USDT": Decimal("2")},
            },
        )

        snapshot = await coordinator.query_asset("USDT")

        assert snapshot.spot == Decimal("1.5")
        assert snapshot.funding == Decimal("2")
        assert snapshot.margin == Decimal("0")

    @pytest.mark.asyncio
    async def test_unreadable_wallet_reported_as_none(self, coordinator, gateway) -> None:
        wallet = Wallet(gateway, {AccountType.SPOT: {"USDT": Decimal("1")}})

        async def margin_down(account_type, asset=None):
            if account_type is AccountType.MARGIN:
                raise GatewayError("margin account not opened", code="-3003")
            return await wallet.query_balance(account_type, asset)

        gateway.query_balance.side_effect = margin_down

        snapshot = await coordinator.query_asset("USDT")

        assert snapshot.spot == Decimal("1")
        assert snapshot.margin is None
