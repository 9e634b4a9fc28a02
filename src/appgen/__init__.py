"""AppGen - prompt-to-deployed-app orchestration.

Turns a natural-language prompt into a running application on a low-code
platform tenant through:
- Federated OIDC/PKCE + Cognito SRP authentication with a cached bearer token
- A resilient API client (per-call deadlines, retry with exponential backoff)
- Polling with growing intervals for long-running remote jobs
- A streaming orchestrator reporting progress and sanitized errors

Python Version: 3.10+ required
"""

# Logging Configuration - Configure before other imports
from .logging_config import StructuredFormatter, configure_logging

# Initialize structured logging on module import
configure_logging()

from .__version__ import __version__
from .api_client import AppGenApiClient
from .auth import FederatedAuthenticator
from .config import AppGenConfig, PollingProfile, get_config, reset_config
from .credentials import (
    ConfigCredentialProvider,
    CredentialProvider,
    Credentials,
    RuntimeCredentialStore,
)
from .errors import (
    ApiError,
    AppGenError,
    AuthenticationError,
    ConfigurationError,
    InputValidationError,
    PollTimeoutError,
    RemoteFailureError,
    RequestTimeoutError,
    TransportError,
    sanitize_error_message,
)
from .models import JobStatus, PublicationStatus
from .orchestrator import AppGenOrchestrator, HealthCheckResult
from .polling import poll_with_backoff
from .retry import with_retry
from .token_cache import TokenCache
from .validation import validate_prompt

# Submodule export for patch("appgen.metrics.<collector>") style mocking
from . import metrics

__all__ = [
    "__version__",
    # Configuration
    "AppGenConfig",
    "PollingProfile",
    "get_config",
    "reset_config",
    # Credentials
    "Credentials",
    "CredentialProvider",
    "ConfigCredentialProvider",
    "RuntimeCredentialStore",
    # Errors
    "AppGenError",
    "ApiError",
    "AuthenticationError",
    "ConfigurationError",
    "InputValidationError",
    "PollTimeoutError",
    "RemoteFailureError",
    "RequestTimeoutError",
    "TransportError",
    "sanitize_error_message",
    # Clients
    "AppGenApiClient",
    "FederatedAuthenticator",
    "TokenCache",
    # Engines
    "with_retry",
    "poll_with_backoff",
    # Orchestration
    "AppGenOrchestrator",
    "HealthCheckResult",
    "JobStatus",
    "PublicationStatus",
    "validate_prompt",
    # Logging
    "configure_logging",
    "StructuredFormatter",
]
