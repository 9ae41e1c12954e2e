"""cronhub core module."""

from cronhub.core.errors import (  # noqa: F401
    ConfigurationError,
    CronhubError,
    HttpStatusError,
    InvalidScheduleError,
    JobNotFoundError,
    JobTimeoutError,
    TransportError,
)
