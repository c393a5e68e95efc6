"""Convergence targets: what the engine reads and what one step does.

A target binds an account gateway to one accumulated quantity:
- FlexibleLoanTarget: outstanding flexible-loan debt of a coin
- MarginLoanTarget: cross-margin borrowed principal of an asset
- TransferTarget: free balance of an asset in a destination wallet

read_current() is idempotent and may be called at any time; apply() is a
mutating, non-idempotent exchange call and is only invoked by the engine.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from acctops.exceptions import InsufficientBalanceError, ValidationError
from acctops.exchange.gateway import AccountGateway
from acctops.exchange.types import AccountType
from acctops.logging import get_logger
from acctops.numeric import ZERO, to_decimal

logger = get_logger(__name__)


class ConvergenceTarget(ABC):
    """Abstract base class for quantities the engine can converge."""

    @abstractmethod
    def describe(self) -> str:
        """Short label used in log events."""
        ...

    @abstractmethod
    async def read_current(self) -> Decimal:
        """Read the current accumulated amount from the exchange."""
        ...

    @abstractmethod
    async def apply(self, amount: Decimal) -> Decimal | None:
        """Perform one bounded suboperation of ``amount``.

        Returns:
            The amount actually applied, or None when it equals ``amount``.

        Raises:
            GatewayError: The step failed and may be retried.
            AccountOpsError: The step can never succeed.
        """
        ...


class FlexibleLoanTarget(ConvergenceTarget):
    """Borrow ``loan_coin`` against ``collateral_coin`` until the debt reaches the target.

    The exchange chooses the collateral amount for each borrow.
    """

    def __init__(
        self, gateway: AccountGateway, loan_coin: str, collateral_coin: str
    ) -> None:
        if not loan_coin or not collateral_coin:
            raise ValidationError("Loan coin and collateral coin are required")
        self._gateway = gateway
        self.loan_coin = loan_coin
        self.collateral_coin = collateral_coin

    def describe(self) -> str:
        return f"flexible_loan:{self.loan_coin}/{self.collateral_coin}"

    async def read_current(self) -> Decimal:
        loans = await self._gateway.query_loan_status()
        return sum(
            (loan.total_debt for loan in loans if loan.loan_coin == self.loan_coin),
            ZERO,
        )

    async def apply(self, amount: Decimal) -> Decimal | None:
        result = await self._gateway.borrow(self.loan_coin, amount, self.collateral_coin)
        loan_amount = result.get("loanAmount") if isinstance(result, dict) else None
        if loan_amount is None:
            return None
        reported = to_decimal(loan_amount)
        if reported != amount:
            logger.warning(
                "loan_amount_mismatch",
                loan_coin=self.loan_coin,
                requested=str(amount),
                reported=str(reported),
            )
        # never credit more than was requested
        return min(reported, amount)


class MarginLoanTarget(ConvergenceTarget):
    """Borrow ``asset`` on cross margin until the borrowed principal reaches the target."""

    def __init__(self, gateway: AccountGateway, asset: str) -> None:
        if not asset:
            raise ValidationError("Margin loan asset is required")
        self._gateway = gateway
        self.asset = asset

    def describe(self) -> str:
        return f"margin_loan:{self.asset}"

    async def read_current(self) -> Decimal:
        return await self._gateway.query_margin_borrowed(self.asset)

    async def apply(self, amount: Decimal) -> Decimal | None:
        await self._gateway.margin_borrow(self.asset, amount)
        return None


class TransferTarget(ConvergenceTarget):
    """Top up the free balance of ``asset`` in ``to_account`` from ``from_account``.

    Each step is pre-checked against the source balance; an empty source
    ends the run instead of being retried.
    """

    def __init__(
        self,
        gateway: AccountGateway,
        asset: str,
        from_account: "str | AccountType",
        to_account: "str | AccountType",
    ) -> None:
        if not asset:
            raise ValidationError("Transfer asset is required")
        self._gateway = gateway
        self.asset = asset
        self.from_account = AccountType.parse(from_account)
        self.to_account = AccountType.parse(to_account)
        if self.from_account is self.to_account:
            raise ValidationError("Source and destination account must differ")

    def describe(self) -> str:
        return f"transfer:{self.asset}:{self.from_account.value}->{self.to_account.value}"

    async def _free(self, account_type: AccountType) -> Decimal:
        entries = await self._gateway.query_balance(account_type, self.asset)
        return sum((e.free for e in entries if e.asset == self.asset), ZERO)

    async def read_current(self) -> Decimal:
        return await self._free(self.to_account)

    async def apply(self, amount: Decimal) -> Decimal | None:
        available = await self._free(self.from_account)
        if available <= ZERO:
            raise InsufficientBalanceError(
                f"No {self.asset} left in {self.from_account.value} to transfer"
            )
        step = min(amount, available)
        await self._gateway.transfer(self.asset, step, self.from_account, self.to_account)
        return step
