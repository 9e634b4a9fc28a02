"""Error taxonomy and user-safe error messages.

Every failure the orchestration can surface maps onto one of these types.
``sanitize_error_message`` is the only place where errors are turned into text
shown to end users: raw status codes, response bodies and internal URLs never
pass through it.
"""

__all__ = [
    "ApiError",
    "AppGenError",
    "AuthenticationError",
    "ConfigurationError",
    "InputValidationError",
    "InvalidResponseError",
    "PollTimeoutError",
    "RemoteFailureError",
    "RequestTimeoutError",
    "TransportError",
    "is_retryable",
    "sanitize_error_message",
]


class AppGenError(Exception):
    """Base class for all appgen errors."""

    pass


class RequestTimeoutError(AppGenError, TimeoutError):
    """Raised when a single request does not get a response within its deadline."""

    def __init__(self, endpoint: str, timeout: float):
        self.endpoint = endpoint
        self.timeout = timeout
        super().__init__(f"Request timeout after {timeout:g}s on {endpoint}")


class ApiError(AppGenError):
    """Raised when the API answers with a non-success status code.

    Attributes:
        status: HTTP status code
        endpoint: API path that failed
        body: Raw response body, for internal diagnostics only
    """

    def __init__(self, status: int, endpoint: str, body: str | None = None):
        self.status = status
        self.endpoint = endpoint
        self.body = body
        super().__init__(f"API request failed: {status} on {endpoint}")


class TransportError(AppGenError):
    """Raised when a request fails below HTTP (DNS, refused connection, reset)."""

    def __init__(self, endpoint: str, reason: str):
        self.endpoint = endpoint
        self.reason = reason
        super().__init__(f"Transport error on {endpoint}: {reason}")


class InvalidResponseError(AppGenError):
    """Raised when a success response carries a body that is not a JSON object.

    Not retried: a mutating call that answered 2xx may already have taken effect.
    """

    def __init__(self, endpoint: str, reason: str):
        self.endpoint = endpoint
        self.reason = reason
        super().__init__(f"Invalid response from {endpoint}: {reason}")


class PollTimeoutError(AppGenError):
    """Raised when polling exhausts its attempts without a terminal state."""

    def __init__(self, attempts: int, stage: str | None = None):
        self.attempts = attempts
        self.stage = stage
        super().__init__(f"Polling timeout after {attempts} attempts")


class RemoteFailureError(AppGenError):
    """Raised when a polled remote entity reaches a failure state.

    ``status`` is a value of a known status enum, so it is safe to show.
    ``snapshot`` holds the failing snapshot for diagnostics.
    """

    def __init__(self, status: str, stage: str | None = None, snapshot: object = None):
        self.status = status
        self.stage = stage
        self.snapshot = snapshot
        where = f" during {stage}" if stage else ""
        super().__init__(f"Remote operation failed{where} with status: {status}")


class AuthenticationError(AppGenError):
    """Raised when any step of the federated login fails.

    Always carries the same generic message; the failing step and its cause
    are logged, never attached to the message.
    """

    def __init__(self, message: str = "Authentication failed."):
        super().__init__(message)


class InputValidationError(AppGenError, ValueError):
    """Raised when caller-supplied input is out of bounds."""

    pass


class ConfigurationError(AppGenError):
    """Raised when required configuration is absent."""

    pass


def is_retryable(error: BaseException) -> bool:
    """Classify a failure for the retry engine.

    Client errors (4xx) are final except 429, as are malformed success
    responses. Timeouts, 5xx, 429 and transport failures are transient.
    """
    if isinstance(error, ApiError):
        return not (400 <= error.status < 500 and error.status != 429)
    if isinstance(
        error,
        (AuthenticationError, InputValidationError, ConfigurationError, InvalidResponseError),
    ):
        return False
    return isinstance(error, Exception)


def sanitize_error_message(error: BaseException) -> str:
    """Map any error to a short message that is safe to show to end users."""
    if isinstance(error, (RequestTimeoutError, TimeoutError)):
        return "The request timed out. Please try again."

    if isinstance(error, AuthenticationError):
        return "Authentication failed. Please check your credentials."

    if isinstance(error, ApiError):
        if error.status in (401, 403):
            return "Authentication failed. Please check your credentials."
        if error.status == 429:
            return "Rate limit exceeded. Please try again in a few moments."
        if error.status >= 500:
            return "The service is temporarily unavailable. Please try again later."
        return "An error occurred while processing your request. Please try again."

    if isinstance(error, InvalidResponseError):
        return "The service returned an unexpected response. Please try again."

    if isinstance(error, RemoteFailureError):
        return f"The remote job failed (status: {error.status}). Please try again."

    if isinstance(error, PollTimeoutError):
        return "The operation did not finish in time. Please try again later."

    if isinstance(error, InputValidationError):
        return str(error)

    if isinstance(error, ConfigurationError):
        return "The service is not configured. Please check your settings."

    return "An unexpected error occurred. Please try again."
