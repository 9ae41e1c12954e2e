"""Tests für cronhub.models."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from cronhub.models import (
    DashboardStats,
    ErrorLog,
    Execution,
    ExecutionStatus,
    HttpMethod,
    Job,
    JobStatus,
)

NOW = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)


def _job(**kwargs) -> Job:
    return Job(name="ping", url="https://service.test/ping", schedule="* * * * *", **kwargs)


class TestJobDefaults:
    def test_defaults(self) -> None:
        job = _job()
        assert len(job.id) == 32
        assert job.method == HttpMethod.GET
        assert job.status == JobStatus.PAUSED
        assert job.timeout_seconds == 300
        assert job.headers == {}
        assert job.headers_raw is None
        assert job.pause_requested is False
        assert job.created_at.tzinfo is not None

    def test_ids_unique(self) -> None:
        assert _job().id != _job().id

    def test_empty_name_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Job(name="", url="https://x.test", schedule="* * * * *")

    def test_zero_timeout_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _job(timeout_seconds=0)

    def test_unknown_method_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _job(method="TRACE")


class TestHeaderCoercion:
    def test_mapping(self) -> None:
        assert _job(headers={"X-A": "1"}).headers == {"X-A": "1"}

    def test_json_text(self) -> None:
        job = _job(headers='{"X-A": "1", "X-N": 2}')
        assert job.headers == {"X-A": "1", "X-N": "2"}
        assert job.headers_raw is None

    def test_none_and_blank(self) -> None:
        assert _job(headers=None).headers == {}
        assert _job(headers="  ").headers == {}
        assert _job(headers="  ").headers_raw is None

    def test_malformed_text_kept_raw(self) -> None:
        job = _job(headers="{oops")
        assert job.headers == {}
        assert job.headers_raw == "{oops"

    def test_json_array_kept_raw(self) -> None:
        job = _job(headers='["a"]')
        assert job.headers == {}
        assert job.headers_raw == '["a"]'


class TestJobProperties:
    def test_success_rate_without_executions(self) -> None:
        job = _job()
        assert job.execution_count == 0
        assert job.success_rate == 0.0

    def test_success_rate(self) -> None:
        job = _job(success_count=3, failure_count=1)
        assert job.execution_count == 4
        assert job.success_rate == 0.75

    def test_is_due(self) -> None:
        job = _job(status=JobStatus.SUCCESS, next_run=NOW)
        assert job.is_due(NOW)
        assert job.is_due(NOW + timedelta(seconds=1))
        assert not job.is_due(NOW - timedelta(seconds=1))

    def test_paused_never_due(self) -> None:
        job = _job(status=JobStatus.PAUSED, next_run=NOW - timedelta(days=1))
        assert job.is_paused
        assert not job.is_due(NOW)

    def test_no_next_run_never_due(self) -> None:
        assert not _job(status=JobStatus.FAILED, next_run=None).is_due(NOW)


class TestRecords:
    def test_execution_frozen(self) -> None:
        execution = Execution(job_id="j", start_time=NOW, status=ExecutionStatus.SUCCESS)
        with pytest.raises(ValidationError):
            execution.status = ExecutionStatus.FAILED  # type: ignore[misc]

    def test_error_log_frozen(self) -> None:
        error = ErrorLog(job_id="j", job_name="ping", error_type="timeout", error_message="late")
        assert error.timestamp.tzinfo is not None
        with pytest.raises(ValidationError):
            error.error_message = "changed"  # type: ignore[misc]


class TestDashboardStats:
    def test_empty(self) -> None:
        assert DashboardStats().success_rate == 0.0

    def test_rounded_percent(self) -> None:
        assert DashboardStats(successful_today=1, failed_today=2).success_rate == 33.3
        assert DashboardStats(successful_today=4, failed_today=0).success_rate == 100.0
