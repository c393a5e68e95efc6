"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal

from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AccountSettings(BaseModel):
    """Credentials for one exchange account.

    Accounts are passed in explicitly (``ACCOUNTS`` as a JSON list, or
    constructed by the caller) instead of being discovered from numbered
    environment variables.
    """

    account_id: str
    api_key: SecretStr
    api_secret: SecretStr
    withdraw_address: str | None = None


class ExchangeSettings(BaseSettings):
    """Binance connection settings shared by every account gateway."""

    model_config = SettingsConfigDict(env_prefix="EXCHANGE_")

    testnet: bool = False
    request_timeout_ms: int = 10_000


class TradingSettings(BaseSettings):
    """Order lifecycle parameters."""

    model_config = SettingsConfigDict(env_prefix="TRADING_")

    quote_asset: str = "USDT"
    confirm_attempts: int = Field(default=5, ge=1)  # post-transfer balance reads
    confirm_delay: float = Field(default=0.5, ge=0)  # seconds between reads


class ConvergenceSettings(BaseSettings):
    """Target convergence loop parameters.

    growth_factor, decay_factor and resync_interval have no defaults: they
    were tuned per deployment and must be supplied explicitly
    (CONVERGENCE_GROWTH_FACTOR etc. in the environment or the same .env file
    AppSettings reads, or constructor arguments).

    max_iterations and deadline_seconds default to None, which means the
    loop keeps retrying until it converges or its cancel event is set.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONVERGENCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    growth_factor: Decimal  # step multiplier after a success, > 1
    decay_factor: Decimal  # step multiplier after a failure, in (0, 1)
    resync_interval: int = Field(ge=1)  # iterations between ground-truth reads

    initial_step: Decimal = Decimal("100")
    min_step: Decimal = Decimal("0.00001")
    convergence_floor: Decimal = Decimal("0.00001")  # remainders below this are dust
    near_threshold: Decimal = Decimal("0.1")  # fraction of target
    amount_decimals: int = Field(default=8, ge=0)  # steps are truncated to this precision
    backoff_base: float = 1.0  # seconds, multiplied by consecutive failures
    backoff_max: float = 30.0
    jitter_min: float = 0.5
    jitter_max: float = 1.5
    max_iterations: int | None = None
    deadline_seconds: float | None = None

    @model_validator(mode="after")
    def _check_bounds(self) -> "ConvergenceSettings":
        if self.growth_factor <= 1:
            raise ValueError("growth_factor must be greater than 1")
        if not Decimal("0") < self.decay_factor < Decimal("1"):
            raise ValueError("decay_factor must be between 0 and 1")
        if self.convergence_floor < Decimal(1).scaleb(-self.amount_decimals):
            # a smaller floor leaves remainders that truncate to a zero step
            raise ValueError("convergence_floor must be >= 10 ** -amount_decimals")
        if self.min_step <= 0 or self.min_step < self.convergence_floor:
            raise ValueError("min_step must be positive and >= convergence_floor")
        if self.initial_step < self.min_step:
            raise ValueError("initial_step must be >= min_step")
        if not Decimal("0") <= self.near_threshold <= Decimal("1"):
            raise ValueError("near_threshold must be a fraction between 0 and 1")
        if self.backoff_base < 0 or self.backoff_base > self.backoff_max:
            raise ValueError("backoff_base must be in [0, backoff_max]")
        if self.jitter_min < 0 or self.jitter_min > self.jitter_max:
            raise ValueError("jitter_min must be in [0, jitter_max]")
        return self


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings.

    ConvergenceSettings is not composed here because it has required
    fields; commands that run a convergence loop load it separately.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = "INFO"
    accounts: list[AccountSettings] = []
    exchange: ExchangeSettings = ExchangeSettings()
    trading: TradingSettings = TradingSettings()
