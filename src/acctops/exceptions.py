"""Custom exceptions for the account operations toolkit.

All gateway, sizing and convergence exceptions live here
to avoid circular imports between modules.
"""


class AccountOpsError(Exception):
    """Base exception for all account operation errors."""


class GatewayError(AccountOpsError):
    """Raised when the exchange rejects a request.

    Args:
        message: Human-readable failure reason.
        code: Exchange-specific error code, if the exchange reported one.
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class TransientGatewayError(GatewayError):
    """Raised on network errors, timeouts, rate limits and exchange hiccups."""


class ValidationError(AccountOpsError):
    """Raised for malformed inputs (bad amounts, unsupported account pairs)."""


class CalculationError(ValidationError):
    """Raised when sizing inputs are non-numeric or the step size is not positive."""


class InsufficientBalanceError(AccountOpsError):
    """Raised when a pre-flight balance check fails."""


class ConvergedAlready(Exception):
    """Early-exit signal: the accumulated quantity already reached its target."""
