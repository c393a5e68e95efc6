"""Shared test fixtures for account operations."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from acctops.config import AccountSettings, ConvergenceSettings, TradingSettings
from acctops.exchange.gateway import AccountGateway


def make_convergence_settings(**overrides) -> ConvergenceSettings:
    """ConvergenceSettings with small, test-friendly numbers and no jitter."""
    values = {
        "growth_factor": Decimal("2"),
        "decay_factor": Decimal("0.5"),
        "resync_interval": 5,
        "initial_step": Decimal("1"),
        "min_step": Decimal("0.1"),
        "convergence_floor": Decimal("0.01"),
        "near_threshold": Decimal("0.1"),
        "backoff_base": 1.0,
        "backoff_max": 4.0,
        "jitter_min": 0.0,
        "jitter_max": 0.0,
    }
    values.update(overrides)
    return ConvergenceSettings(**values)


@pytest.fixture
def convergence_settings() -> ConvergenceSettings:
    return make_convergence_settings()


@pytest.fixture
def trading_settings() -> TradingSettings:
    """Quote asset USDT, three confirmation reads without delay."""
    return TradingSettings(quote_asset="USDT", confirm_attempts=3, confirm_delay=0.0)


@pytest.fixture
def gateway() -> AsyncMock:
    """Gateway double: every contract method is an AsyncMock."""
    return AsyncMock(spec=AccountGateway)


@pytest.fixture
def sleep() -> AsyncMock:
    """Replacement for asyncio.sleep that records delays without waiting."""
    return AsyncMock()


@pytest.fixture
def account() -> AccountSettings:
    return AccountSettings(
        account_id="acct-1",
        api_key="test-api-key",  # type: ignore[arg-type]
        api_secret="test-api-secret",  # type: ignore[arg-type]
    )


@pytest.fixture
def settings_factory():
    """Build ConvergenceSettings with per-test overrides."""
    return make_convergence_settings
