"""Runtime settings for the checkout package.

Values are read from ``CHECKOUT_*`` environment variables with development
defaults and validated with pydantic, so a bad value fails at startup
rather than in the middle of a payment.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .domain import RetryPolicy


class CheckoutSettings(BaseSettings):
    """Settings consumed by the orchestrator wiring and the adapters.

    Attributes:
        retry_max_attempts: Gateway calls allowed per charge.
        retry_delay_secs: Pause between charge attempts.
        use_http_adapters: Use the HTTP fraud/gateway clients instead of the
            in-process stubs.
        database_url: SQLAlchemy URL for the order store and audit log; the
            in-memory stores are used when unset.
        log_level: Level applied to the ``checkout`` logger by the wiring.
    """

    retry_max_attempts: int = Field(default=3, ge=1)
    retry_delay_secs: float = Field(default=0.2, ge=0)

    use_http_adapters: bool = False
    fraud_base_url: str = "http://fraud:9002"
    gateway_base_url: str = "http://gateway:9003"
    http_timeout_secs: float = Field(default=5.0, gt=0)
    http_retry_max: int = Field(default=2, ge=0)
    http_retry_backoff_base: float = Field(default=0.15, ge=0)
    http_retry_max_sleep: float = Field(default=0.5, ge=0)
    circuit_fail_threshold: int = Field(default=5, ge=1)
    circuit_reset_timeout: float = Field(default=30.0, ge=0)

    database_url: Optional[str] = None
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="CHECKOUT_",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.retry_max_attempts, delay=self.retry_delay_secs)


@lru_cache(maxsize=1)
def get_settings() -> CheckoutSettings:
    return CheckoutSettings()
