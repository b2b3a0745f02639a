"""
Custom exception hierarchy for the Klaviyo marketing manager.

All exceptions inherit from KMMError, which provides optional context
for structured error handling and logging.
"""

from __future__ import annotations

from typing import Any


class KMMError(Exception):
    """Base exception for all Klaviyo marketing manager errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(KMMError):
    """Raised when configuration is invalid or missing.

    Examples:
        - No API key in the environment or any config file
        - Config file present but not valid JSON
    """

    pass


class DataFetchError(KMMError):
    """Raised when a call to the Klaviyo API fails.

    Context should include:
        - endpoint: The API path that was requested
        - status_code: HTTP status code if applicable
        - response: Truncated response body if available
    """

    pass


class RequestTimeoutError(DataFetchError):
    """Raised when a Klaviyo request does not complete within its timeout.

    Context should include:
        - endpoint: The API path that was requested
        - timeout: The timeout in seconds that elapsed
    """

    pass


class ValidationError(KMMError):
    """Raised when user-supplied input cannot be interpreted.

    Context should include:
        - field: The option that failed validation
        - value: The invalid value
        - expected: Description of what was expected
    """

    pass
