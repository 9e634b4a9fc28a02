"""Credential providers for the orchestration core.

The orchestrator never reads the environment itself; it asks a provider for
``Credentials``. Hosts choose the provider: the settings-backed one for the CLI,
or a runtime store whose credentials can be set and cleared while the process
runs (and which falls back to another provider when empty).
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Protocol

from .config import AppGenConfig, get_config
from .errors import ConfigurationError

logger = logging.getLogger("appgen.credentials")

__all__ = [
    "ConfigCredentialProvider",
    "CredentialProvider",
    "Credentials",
    "RuntimeCredentialStore",
]


@dataclass(frozen=True)
class Credentials:
    """Tenant credentials for one orchestration run."""

    hostname: str
    username: str
    password: str = field(repr=False)
    dev_env_id: str | None = None


class CredentialProvider(Protocol):
    """Anything that can hand out the current credentials."""

    def get_credentials(self) -> Credentials:
        """Return credentials or raise ConfigurationError."""
        ...


class ConfigCredentialProvider:
    """Read credentials from AppGenConfig (environment + .env)."""

    def __init__(self, config: AppGenConfig | None = None) -> None:
        self._config = config

    def get_credentials(self) -> Credentials:
        """Build credentials from settings.

        Raises:
            ConfigurationError: If hostname, username or password is missing
        """
        config = self._config or get_config()
        missing = [
            name
            for name, value in (
                ("OS_HOSTNAME", config.hostname),
                ("OS_USERNAME", config.username),
                ("OS_PASSWORD", config.password.get_secret_value()),
            )
            if not value
        ]
        if missing:
            logger.error("credentials_missing", extra={"missing": missing})
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )
        return Credentials(
            hostname=config.hostname,
            username=config.username,
            password=config.password.get_secret_value(),
            dev_env_id=config.dev_env_id,
        )


class RuntimeCredentialStore:
    """Credentials set at runtime, taking priority over a fallback provider.

    Example:
        >>> store = RuntimeCredentialStore(fallback=ConfigCredentialProvider())
        >>> store.set(Credentials("acme.outsystems.dev", "me@acme.com", "pw"))
        >>> store.get_credentials().hostname
        'acme.outsystems.dev'
    """

    def __init__(self, fallback: CredentialProvider | None = None) -> None:
        self._fallback = fallback
        self._credentials: Credentials | None = None
        self._lock = threading.Lock()

    def set(self, credentials: Credentials) -> None:
        """Replace the runtime credentials."""
        with self._lock:
            self._credentials = credentials
        logger.info("runtime_credentials_set", extra={"hostname": credentials.hostname})

    def clear(self) -> None:
        """Forget the runtime credentials."""
        with self._lock:
            self._credentials = None
        logger.info("runtime_credentials_cleared")

    def has_credentials(self) -> bool:
        """Check if runtime credentials are set."""
        return self._credentials is not None

    def get_credentials(self) -> Credentials:
        """Return runtime credentials, else those of the fallback provider.

        Raises:
            ConfigurationError: If neither source has credentials
        """
        with self._lock:
            credentials = self._credentials
        if credentials is not None:
            return credentials
        if self._fallback is None:
            raise ConfigurationError("No credentials configured")
        return self._fallback.get_credentials()
