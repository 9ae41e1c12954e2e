"""cronhub · Unified Error Hierarchy.

All custom exceptions inherit from CronhubError, which carries an error_code
and optional details dict for programmatic handling. Execution-time errors
additionally carry an ``error_kind`` that is persisted as the ErrorLog type.

Usage::

    from cronhub.core.errors import InvalidScheduleError, HttpStatusError

    raise InvalidScheduleError("expected 5 fields", details={"expression": expr})
    raise HttpStatusError("HTTP 503", status_code=503)
"""

from __future__ import annotations


class CronhubError(Exception):
    """Base exception for all cronhub errors."""

    error_kind = "error"

    def __init__(
        self,
        message: str,
        error_code: str = "CRONHUB_ERROR",
        details: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.details = details or {}


class InvalidScheduleError(CronhubError, ValueError):
    """Malformed cron expression (wrong field count, non-numeric literal).

    Also a ValueError so pydantic validators report it as a validation error.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "INVALID_SCHEDULE",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)


class ConfigurationError(CronhubError):
    """Unusable request configuration of a job (headers, body, URL, method)."""

    error_kind = "configuration"

    def __init__(
        self,
        message: str,
        error_code: str = "CONFIGURATION_ERROR",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)


class JobTimeoutError(CronhubError):
    """The job's deadline elapsed before a response arrived.

    Named JobTimeoutError to avoid shadowing the builtin TimeoutError.
    """

    error_kind = "timeout"

    def __init__(
        self,
        message: str,
        timeout_seconds: float = 0,
        error_code: str = "JOB_TIMEOUT",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)
        self.timeout_seconds = timeout_seconds


class HttpStatusError(CronhubError):
    """The target answered with a status code outside the success range."""

    error_kind = "http-status"

    def __init__(
        self,
        message: str,
        status_code: int,
        error_code: str = "HTTP_STATUS",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)
        self.status_code = status_code


class TransportError(CronhubError):
    """Network-layer failure (DNS, connection refused, TLS, protocol)."""

    error_kind = "network"

    def __init__(
        self,
        message: str,
        error_code: str = "TRANSPORT_ERROR",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)


class JobNotFoundError(CronhubError, LookupError):
    """No job with the given id exists in the repository."""

    def __init__(
        self,
        message: str,
        error_code: str = "JOB_NOT_FOUND",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)

