"""Failure taxonomy for retrieval and assembly.

Task-level failures are captured as data by the scheduler; only setup
failures escape the service layer as exceptions.
"""

from __future__ import annotations


class RetrieverError(RuntimeError):
    code = "error"

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(RetrieverError):
    """Bad identifier or input format; never retried."""

    code = "validation"


class ConfigError(RetrieverError):
    code = "config"


class AuthError(RetrieverError):
    """Missing/invalid credentials or a failed token exchange."""

    code = "auth"


class NetworkError(RetrieverError):
    code = "network"


class FetchTimeoutError(NetworkError):
    code = "timeout"


class RateLimitedError(NetworkError):
    """HTTP 429 persisted past the configured retry cap."""

    code = "rate_limited"


class HttpStatusError(RetrieverError):
    code = "http_status"

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(RetrieverError):
    code = "not_found"


class ResponseFormatError(RetrieverError):
    code = "response_format"


class AssemblyError(RetrieverError):
    code = "assembly"


class SetupError(RetrieverError):
    """Request-level setup failed (e.g. scratch directory)."""

    code = "setup"


__all__ = [
    "AssemblyError",
    "AuthError",
    "ConfigError",
    "FetchTimeoutError",
    "HttpStatusError",
    "NetworkError",
    "NotFoundError",
    "RateLimitedError",
    "ResponseFormatError",
    "RetrieverError",
    "SetupError",
    "ValidationError",
]
