"""
MostlyGoodMetrics error types.

Only the validation errors ever reach the caller of track(). Network, storage
and rate-limit errors are handled inside the SDK and surface as log records.
"""

from typing import Any, Optional


class MGMError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class NotConfiguredError(MGMError):
    def __init__(self, message: str = "MostlyGoodMetrics has not been configured. Call configure() first."):
        super().__init__("not_configured", message)


class InvalidEventNameError(MGMError):
    def __init__(self, message: str, name: Optional[str] = None):
        super().__init__("invalid_event_name", message, {"name": name} if name is not None else None)


class InvalidPropertiesError(MGMError):
    def __init__(self, message: str):
        super().__init__("invalid_properties", message)


class NetworkError(MGMError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("network_error", message, details)


class StorageError(MGMError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("storage_error", message, details)


class RateLimitedError(MGMError):
    def __init__(self, retry_after: float):
        super().__init__("rate_limited", f"Rate limited, retry after {retry_after:.0f}s", {"retry_after": retry_after})
        self.retry_after = retry_after
