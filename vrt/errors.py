"""Exception types raised by the visual regression runner."""

from __future__ import annotations


class VrtError(Exception):
    """Base class for all runner errors."""


class ConfigurationError(VrtError):
    """Configuration could not be loaded or failed validation."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


class BrowserNotInitialized(VrtError):
    """A capture was requested before the browser was launched."""

    def __init__(self, message: str = "Browser not initialized. Call initialize() first."):
        super().__init__(message)


class NavigationTimeout(VrtError):
    """Page navigation did not complete within the configured timeout."""

    def __init__(self, url: str, timeout_ms: int):
        super().__init__(f"Navigation to {url} timed out after {timeout_ms}ms")
        self.url = url
        self.timeout_ms = timeout_ms


class ApiError(VrtError):
    """The scenario API could not be reached or returned an unusable response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


# Transport-level API failures are reported with the same type.
NetworkError = ApiError
