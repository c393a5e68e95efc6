"""Concurrent per-account execution.

Runs one asyncio task per configured account using asyncio.gather. Each
task owns its own gateway (connect, action, close) and its own structlog
context, so accounts share no mutable state and need no locking.

Domain failures (AccountOpsError) are logged and absorbed so one account
never aborts its siblings. Any other exception is a structural error: it
is logged, the remaining tasks still run to completion, and the first one
is re-raised once all accounts have finished.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from acctops.config import AccountSettings
from acctops.exceptions import AccountOpsError
from acctops.exchange.gateway import AccountGateway
from acctops.logging import bound_account, get_logger

logger = get_logger(__name__)

T = TypeVar("T")

AccountAction = Callable[[AccountSettings, AccountGateway], Awaitable[T]]
GatewayFactory = Callable[[AccountSettings], AccountGateway]


async def _run_account(
    account: AccountSettings,
    action: AccountAction,
    gateway_factory: GatewayFactory,
) -> Any:
    with bound_account(account.account_id):
        gateway = gateway_factory(account)
        try:
            await gateway.connect()
            result = await action(account, gateway)
            logger.debug("account_action_completed")
            return result
        finally:
            await gateway.close()


async def run_for_accounts(
    accounts: Sequence[AccountSettings],
    action: AccountAction,
    gateway_factory: GatewayFactory,
) -> dict[str, Any]:
    """Run ``action`` for every account concurrently.

    Args:
        accounts: Accounts to operate on.
        action: Coroutine function receiving the account and its connected gateway.
        gateway_factory: Builds a fresh gateway for an account.

    Returns:
        Mapping of account_id to the action's result, or to the
        AccountOpsError that ended that account's task.

    Raises:
        Exception: The first structural (non-domain) error, after every
            account task has finished.
    """
    if not accounts:
        logger.warning("no_accounts_configured")
        return {}

    tasks = [_run_account(account, action, gateway_factory) for account in accounts]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    outcomes: dict[str, Any] = {}
    structural: BaseException | None = None

    for account, result in zip(accounts, results):
        outcomes[account.account_id] = result
        if isinstance(result, AccountOpsError):
            logger.error(
                "account_action_failed",
                account=account.account_id,
                error=str(result),
            )
        elif isinstance(result, BaseException):
            logger.critical(
                "account_action_crashed",
                account=account.account_id,
                error=repr(result),
                exc_info=result,
            )
            if structural is None:
                structural = result

    if structural is not None:
        raise structural

    logger.info("all_accounts_finished", accounts=len(accounts))
    return outcomes
