"""Entry point for multi-account exchange operations.

Loads settings, sets up logging, and runs exactly one top-level command for
every configured account concurrently (see runner.run_for_accounts).

Commands:
  asset          free balance of an asset in SPOT / FUNDING / MARGIN
  flexible-loan  borrow until the flexible-loan debt reaches a target
  margin-loan    borrow until the cross-margin debt reaches a target
  fill-balance   transfer in steps until a wallet holds a target amount
  market         market order (SELL without --quantity sells everything)
  limit          GTC limit order, optionally cancelling open orders first
  cancel         cancel all open orders on a coin
  transfer       move an asset between SPOT, MARGIN and FUNDING
  withdraw       send an asset from SPOT to an external address

SIGINT/SIGTERM set a shared cancel event; convergence loops stop at the
top of their next iteration.
"""

import argparse
import asyncio
import signal
import sys
from collections.abc import Callable, Sequence
from typing import Any

import pydantic

from acctops.config import AccountSettings, AppSettings, ConvergenceSettings
from acctops.convergence import (
    ConvergenceEngine,
    ConvergenceResult,
    ConvergenceTarget,
    FlexibleLoanTarget,
    MarginLoanTarget,
    TransferTarget,
)
from acctops.exchange.binance_gateway import BinanceGateway
from acctops.exchange.gateway import AccountGateway
from acctops.logging import get_logger, setup_logging
from acctops.runner import AccountAction, run_for_accounts
from acctops.trading.coordinator import OrderCoordinator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="acctops",
        description="Run one exchange operation on every configured account.",
    )
    parser.add_argument(
        "--account",
        action="append",
        dest="accounts",
        metavar="ACCOUNT_ID",
        help="Restrict to this account (repeatable). Default: all accounts.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    asset = commands.add_parser("asset", help="Show an asset's balance per wallet")
    asset.add_argument("asset")

    flexible = commands.add_parser("flexible-loan", help="Borrow up to a target debt")
    flexible.add_argument("loan_coin")
    flexible.add_argument("amount")
    flexible.add_argument("collateral_coin")

    margin = commands.add_parser("margin-loan", help="Cross-margin borrow up to a target")
    margin.add_argument("asset")
    margin.add_argument("amount")

    fill = commands.add_parser("fill-balance", help="Transfer in steps up to a target")
    fill.add_argument("asset")
    fill.add_argument("amount")
    fill.add_argument("--from", dest="from_account", default="FUNDING")
    fill.add_argument("--to", dest="to_account", default="SPOT")

    for name in ("flexible-loan", "margin-loan", "fill-balance"):
        sub = commands.choices[name]
        sub.add_argument("--max-iterations", type=int, default=None)
        sub.add_argument("--deadline", type=float, default=None, metavar="SECONDS")

    market = commands.add_parser("market", help="Submit a market order")
    market.add_argument("coin")
    market.add_argument("side", choices=["BUY", "SELL", "buy", "sell"])
    market.add_argument("--quantity", default=None)

    limit = commands.add_parser("limit", help="Submit a GTC limit order")
    limit.add_argument("coin")
    limit.add_argument("side", choices=["BUY", "SELL", "buy", "sell"])
    limit.add_argument("price")
    limit.add_argument("--quantity", default=None)
    limit.add_argument(
        "--cancel-first",
        action="store_true",
        help="Cancel open orders on the symbol before submitting",
    )

    cancel = commands.add_parser("cancel", help="Cancel all open orders on a coin")
    cancel.add_argument("coin")

    transfer = commands.add_parser("transfer", help="Move an asset between wallets")
    transfer.add_argument("asset")
    transfer.add_argument("amount")
    transfer.add_argument("from_account")
    transfer.add_argument("to_account")

    withdraw = commands.add_parser("withdraw", help="Withdraw an asset from SPOT")
    withdraw.add_argument("asset")
    withdraw.add_argument("amount")
    withdraw.add_argument(
        "--address",
        default=None,
        help="Destination address. Default: the account's configured withdraw_address.",
    )
    withdraw.add_argument("--network", default=None, help="Chain to withdraw on, e.g. TRX")

    return parser


def _convergence_action(
    args: argparse.Namespace,
    settings: ConvergenceSettings,
    build_target: Callable[[AccountGateway], ConvergenceTarget],
    cancel_event: asyncio.Event,
) -> AccountAction:
    overrides = {
        key: value
        for key, value in (
            ("max_iterations", args.max_iterations),
            ("deadline_seconds", args.deadline),
        )
        if value is not None
    }
    engine_settings = settings.model_copy(update=overrides)

    async def action(account: AccountSettings, gateway: AccountGateway) -> ConvergenceResult:
        engine = ConvergenceEngine(engine_settings)
        return await engine.run(build_target(gateway), args.amount, cancel_event)

    return action


def build_action(
    args: argparse.Namespace,
    app_settings: AppSettings,
    cancel_event: asyncio.Event,
    convergence_settings: Callable[[], ConvergenceSettings] = ConvergenceSettings,
) -> AccountAction:
    """Translate parsed arguments into a per-account coroutine function."""
    trading = app_settings.trading

    if args.command == "flexible-loan":
        return _convergence_action(
            args,
            convergence_settings(),
            lambda gw: FlexibleLoanTarget(gw, args.loan_coin, args.collateral_coin),
            cancel_event,
        )
    if args.command == "margin-loan":
        return _convergence_action(
            args,
            convergence_settings(),
            lambda gw: MarginLoanTarget(gw, args.asset),
            cancel_event,
        )
    if args.command == "fill-balance":
        return _convergence_action(
            args,
            convergence_settings(),
            lambda gw: TransferTarget(gw, args.asset, args.from_account, args.to_account),
            cancel_event,
        )

    async def action(account: AccountSettings, gateway: AccountGateway) -> Any:
        coordinator = OrderCoordinator(gateway, trading)
        if args.command == "asset":
            return await coordinator.query_asset(args.asset)
        if args.command == "market":
            return await coordinator.submit_market(args.coin, args.side, args.quantity)
        if args.command == "limit":
            if args.cancel_first:
                await coordinator.cancel_all(args.coin)
            return await coordinator.submit_limit(
                args.coin, args.side, args.price, args.quantity
            )
        if args.command == "cancel":
            return await coordinator.cancel_all(args.coin)
        if args.command == "transfer":
            return await coordinator.transfer_funds(
                args.asset, args.amount, args.from_account, args.to_account
            )
        if args.command == "withdraw":
            return await coordinator.withdraw(
                args.asset,
                args.amount,
                args.address or account.withdraw_address,
                args.network,
            )
        raise ValueError(f"Unknown command: {args.command}")

    return action


def _succeeded(result: Any) -> bool:
    if isinstance(result, Exception):
        return False
    if isinstance(result, ConvergenceResult):
        return result.converged
    return bool(getattr(result, "success", True))


def _setup_signal_handlers(cancel_event: asyncio.Event) -> None:
    """SIGINT/SIGTERM request a stop; loops exit at their next iteration.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("acctops.main")
    loop = asyncio.get_running_loop()

    def _stop_handler() -> None:
        logger.info("stop_signal_received")
        cancel_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _stop_handler)


async def run(argv: Sequence[str] | None = None) -> int:
    """Parse arguments, run the command on all selected accounts, return an exit code."""
    args = build_parser().parse_args(argv)

    settings = AppSettings()
    setup_logging(settings.log_level)
    logger = get_logger("acctops.main")

    accounts = settings.accounts
    if args.accounts:
        wanted = set(args.accounts)
        accounts = [account for account in accounts if account.account_id in wanted]

    cancel_event = asyncio.Event()
    _setup_signal_handlers(cancel_event)

    try:
        action = build_action(args, settings, cancel_event)
    except pydantic.ValidationError as exc:
        logger.error("convergence_settings_invalid", error=str(exc))
        return 2

    logger.info("command_started", command=args.command, accounts=len(accounts))
    outcomes = await run_for_accounts(
        accounts,
        action,
        lambda account: BinanceGateway(account, settings.exchange),
    )

    failed = [account_id for account_id, result in outcomes.items() if not _succeeded(result)]
    logger.info(
        "command_finished",
        command=args.command,
        succeeded=len(outcomes) - len(failed),
        failed=failed,
    )
    return 1 if failed else 0


def main() -> None:
    """Synchronous entry point."""
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
