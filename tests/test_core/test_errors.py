"""Tests für cronhub.core.errors."""

from __future__ import annotations

import pytest

from cronhub.core.errors import (
    ConfigurationError,
    CronhubError,
    HttpStatusError,
    InvalidScheduleError,
    JobNotFoundError,
    JobTimeoutError,
    TransportError,
)
from cronhub.models import ErrorKind


class TestErrorCodes:
    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (CronhubError("x"), "CRONHUB_ERROR"),
            (InvalidScheduleError("x"), "INVALID_SCHEDULE"),
            (ConfigurationError("x"), "CONFIGURATION_ERROR"),
            (JobTimeoutError("x", timeout_seconds=5), "JOB_TIMEOUT"),
            (HttpStatusError("x", status_code=503), "HTTP_STATUS"),
            (TransportError("x"), "TRANSPORT_ERROR"),
            (JobNotFoundError("x"), "JOB_NOT_FOUND"),
        ],
    )
    def test_default_code(self, error: CronhubError, code: str) -> None:
        assert error.error_code == code
        assert error.details == {}
        assert isinstance(error, CronhubError)

    def test_custom_code_and_details(self) -> None:
        error = CronhubError("busy", error_code="JOB_IN_FLIGHT", details={"job_id": "j"})
        assert str(error) == "busy"
        assert error.error_code == "JOB_IN_FLIGHT"
        assert error.details == {"job_id": "j"}


class TestErrorKinds:
    def test_execution_errors_map_to_error_kinds(self) -> None:
        assert ConfigurationError.error_kind == ErrorKind.CONFIGURATION
        assert JobTimeoutError.error_kind == ErrorKind.TIMEOUT
        assert HttpStatusError.error_kind == ErrorKind.HTTP_STATUS
        assert TransportError.error_kind == ErrorKind.NETWORK

    def test_extra_attributes(self) -> None:
        assert JobTimeoutError("late", timeout_seconds=2.5).timeout_seconds == 2.5
        assert HttpStatusError("HTTP 404", status_code=404).status_code == 404


class TestBuiltinCompatibility:
    def test_invalid_schedule_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            raise InvalidScheduleError("expected 5 fields")

    def test_job_not_found_is_lookup_error(self) -> None:
        with pytest.raises(LookupError):
            raise JobNotFoundError("missing")

    def test_job_timeout_does_not_shadow_builtin(self) -> None:
        assert not issubclass(JobTimeoutError, TimeoutError)
