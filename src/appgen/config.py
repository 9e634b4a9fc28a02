"""Configuration management with pydantic-settings for appgen.

- Typed settings loaded from environment variables and an optional .env file
- SecretStr for the account password
- Frozen config (immutable after load)
- Validation with clear error messages

Credentials keep the variable names of the tenant tooling
(OS_HOSTNAME, OS_USERNAME, OS_PASSWORD, OS_DEV_ENVID); tunables use the
APPGEN_ prefix.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("appgen.config")

__all__ = [
    "AppGenConfig",
    "PollingProfile",
    "get_config",
    "reset_config",
]


@dataclass(frozen=True)
class PollingProfile:
    """Polling parameters for one orchestration stage (seconds)."""

    max_attempts: int
    initial_interval: float
    max_interval: float


class AppGenConfig(BaseSettings):
    """Configuration for the app generation client.

    Loads from (in order of precedence):
    1. Environment variables (highest priority)
    2. .env file in the working directory
    3. Default values (lowest priority)

    Attributes:
        hostname: Tenant management hostname (e.g., acme.outsystems.dev)
        username: Account identifier used for the federated login
        password: Account secret (SecretStr)
        dev_env_id: Optional environment/stage identifier
        token_expiry_buffer_seconds: Refresh tokens this long before they expire
        token_default_expires_in: Token lifetime assumed when the IdP omits expires_in
        read_timeout_seconds: Deadline for status reads
        write_timeout_seconds: Deadline for mutating calls
        retry_max_attempts: Attempts for mutating calls
        retry_initial_delay_seconds: First retry delay, doubled per retry
        ready_poll_*: Job readiness polling (short)
        long_poll_*: Generation and publication polling (long)
        management_host_suffix: Hostname suffix of the management API
        app_host_suffix: Replacement suffix for the live app hostname
        pushgateway_enabled: Push metrics to a Pushgateway when a command ends
        pushgateway_url: Pushgateway address (host:port)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format (json for production, text for development)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        validate_default=True,
        frozen=True,
        env_prefix="APPGEN_",
        extra="ignore",
        populate_by_name=True,
    )

    # Credentials
    hostname: str | None = Field(
        default=None,
        validation_alias="OS_HOSTNAME",
        description="Tenant management hostname, without scheme",
    )
    username: str | None = Field(
        default=None,
        validation_alias="OS_USERNAME",
        description="Account identifier",
    )
    password: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="OS_PASSWORD",
        description="Account secret",
    )
    dev_env_id: str | None = Field(
        default=None,
        validation_alias="OS_DEV_ENVID",
        description="Optional environment/stage identifier",
    )

    # Token cache
    token_expiry_buffer_seconds: int = Field(
        default=300,
        ge=0,
        le=3600,
    )
    token_default_expires_in: int = Field(
        default=3600,
        ge=60,
        le=86400,
        description="Fallback lifetime when the token endpoint omits expires_in",
    )

    # Request deadlines
    read_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        le=300,
    )
    write_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
    )
    auth_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
    )

    # Retry engine
    retry_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
    )
    retry_initial_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        le=60,
    )

    # Poll engine: job readiness checks are quick, generation and deployment are not
    ready_poll_max_attempts: int = Field(
        default=60,
        ge=1,
    )
    ready_poll_initial_interval: float = Field(
        default=2.0,
        ge=0,
    )
    ready_poll_max_interval: float = Field(
        default=10.0,
        ge=0,
    )
    long_poll_max_attempts: int = Field(
        default=120,
        ge=1,
    )
    long_poll_initial_interval: float = Field(
        default=3.0,
        ge=0,
    )
    long_poll_max_interval: float = Field(
        default=30.0,
        ge=0,
    )

    # Final URL
    management_host_suffix: str = Field(
        default=".outsystems.dev",
    )
    app_host_suffix: str = Field(
        default="-dev.outsystems.app",
    )

    # Metrics export (short-lived CLI process)
    pushgateway_enabled: bool = Field(
        default=False,
        description="Push metrics to a Prometheus Pushgateway when a command ends",
    )
    pushgateway_url: str = Field(
        default="localhost:9091",
    )
    pushgateway_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        le=30,
    )

    # Logging
    log_level: str = Field(
        default="INFO",
    )
    log_format: str = Field(
        default="json",
    )

    @field_validator("hostname")
    @classmethod
    def normalize_hostname(cls, v: str | None) -> str | None:
        """Strip scheme and trailing slash so hosts can be pasted as URLs."""
        if v is None:
            return v
        v = v.strip()
        for scheme in ("https://", "http://"):
            if v.lower().startswith(scheme):
                v = v[len(scheme):]
        return v.rstrip("/") or None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log_level is a standard logging level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            raise ValueError(f"log_level must be one of {sorted(valid)}")
        return upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Ensure log_format is json or text."""
        lower = v.lower()
        if lower not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return lower

    @model_validator(mode="after")
    def validate_polling_intervals(self) -> "AppGenConfig":
        """Validate that initial polling intervals do not exceed their caps."""
        if self.ready_poll_initial_interval > self.ready_poll_max_interval:
            raise ValueError(
                f"APPGEN_READY_POLL_INITIAL_INTERVAL ({self.ready_poll_initial_interval}) "
                f"must be <= APPGEN_READY_POLL_MAX_INTERVAL ({self.ready_poll_max_interval})"
            )
        if self.long_poll_initial_interval > self.long_poll_max_interval:
            raise ValueError(
                f"APPGEN_LONG_POLL_INITIAL_INTERVAL ({self.long_poll_initial_interval}) "
                f"must be <= APPGEN_LONG_POLL_MAX_INTERVAL ({self.long_poll_max_interval})"
            )
        return self

    @property
    def ready_polling(self) -> PollingProfile:
        """Polling profile for the job readiness stage."""
        return PollingProfile(
            self.ready_poll_max_attempts,
            self.ready_poll_initial_interval,
            self.ready_poll_max_interval,
        )

    @property
    def long_polling(self) -> PollingProfile:
        """Polling profile for the generation and publication stages."""
        return PollingProfile(
            self.long_poll_max_attempts,
            self.long_poll_initial_interval,
            self.long_poll_max_interval,
        )

    def has_credentials(self) -> bool:
        """Check if hostname, username and password are all set."""
        return bool(
            self.hostname and self.username and self.password.get_secret_value()
        )


@lru_cache(maxsize=1)
def get_config() -> AppGenConfig:
    """Get global configuration singleton.

    First call loads from environment + .env file, subsequent calls return the
    cached instance.

    Raises:
        ValidationError: If configuration values are invalid.
    """
    return AppGenConfig()


def reset_config() -> None:
    """Reset configuration singleton for testing.

    Warning:
        Only use in test code. Production code should not reset config.
    """
    get_config.cache_clear()
