"""Tests für SQLJobRepository auf SQLite.

Abgedeckt: Job-CRUD, Kaskaden-Löschen, Zähler, Aufbewahrungsgrenzen,
Lease-Abfragen, Statistik-Abfragen und bedingte Status-Updates.
"""
from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from cronhub.core.errors import JobNotFoundError
from cronhub.db.repository import JobRepository
from cronhub.models import ErrorLog, Execution, ExecutionStatus, JobStatus

if TYPE_CHECKING:
    from cronhub.db.sql_repository import SQLJobRepository

T0 = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)


def _execution(job_id: str, start: datetime, status: ExecutionStatus = ExecutionStatus.SUCCESS) -> Execution:
    return Execution(
        job_id=job_id,
        job_name="health-check",
        start_time=start,
        end_time=start + timedelta(seconds=1),
        status=status,
        duration_ms=1000,
        logs="Status: 200",
        response_status=200 if status == ExecutionStatus.SUCCESS else 500,
    )


def _error(job_id: str, at: datetime, kind: str = "http-status") -> ErrorLog:
    return ErrorLog(job_id=job_id, job_name="health-check", timestamp=at, error_type=kind, error_message="boom")


class TestProtocol:
    def test_implements_job_repository(self, repository: SQLJobRepository) -> None:
        assert isinstance(repository, JobRepository)


# ============================================================================
# Jobs
# ============================================================================


class TestJobs:
    @pytest.mark.asyncio
    async def test_create_and_get_round_trip(self, repository: SQLJobRepository, job_factory) -> None:
        job = job_factory(headers={"X-Token": "t"}, body='{"a": 1}', lease_expires_at=T0)
        assert await repository.create_job(job) == job.id

        stored = await repository.get_job(job.id)
        assert stored == job

    @pytest.mark.asyncio
    async def test_get_missing(self, repository: SQLJobRepository) -> None:
        assert await repository.get_job("missing") is None

    @pytest.mark.asyncio
    async def test_raw_headers_survive_storage(self, repository: SQLJobRepository, job_factory) -> None:
        job = job_factory(headers="{not json")
        await repository.create_job(job)
        stored = await repository.get_job(job.id)
        assert stored.headers == {}
        assert stored.headers_raw == "{not json"

    @pytest.mark.asyncio
    async def test_list_newest_first_and_without_paused(
        self, repository: SQLJobRepository, job_factory,
    ) -> None:
        old = job_factory(name="old", created_at=T0 - timedelta(days=2))
        new = job_factory(name="new", created_at=T0 - timedelta(days=1))
        paused = job_factory(name="paused", status=JobStatus.PAUSED, next_run=None, created_at=T0)
        for job in (old, new, paused):
            await repository.create_job(job)

        assert [j.name for j in await repository.list_jobs()] == ["paused", "new", "old"]
        assert [j.name for j in await repository.list_jobs(include_paused=False)] == ["new", "old"]

    @pytest.mark.asyncio
    async def test_update_fields(self, repository: SQLJobRepository, job_factory) -> None:
        job = job_factory()
        await repository.create_job(job)
        await repository.update_job(
            job.id, status=JobStatus.RUNNING, next_run=None, pause_requested=True, headers={"A": "b"},
        )
        stored = await repository.get_job(job.id)
        assert stored.status == JobStatus.RUNNING
        assert stored.next_run is None
        assert stored.pause_requested is True
        assert stored.headers == {"A": "b"}

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, repository: SQLJobRepository) -> None:
        with pytest.raises(JobNotFoundError):
            await repository.update_job("missing", status=JobStatus.PAUSED)

    @pytest.mark.asyncio
    async def test_update_counter_field_rejected(self, repository: SQLJobRepository, job_factory) -> None:
        job = job_factory()
        await repository.create_job(job)
        with pytest.raises(ValueError):
            await repository.update_job(job.id, success_count=5)

    @pytest.mark.asyncio
    async def test_delete_cascades(self, repository: SQLJobRepository, job_factory) -> None:
        job = job_factory()
        other = job_factory(name="other")
        await repository.create_job(job)
        await repository.create_job(other)
        await repository.append_execution(_execution(job.id, T0))
        await repository.append_error_log(_error(job.id, T0))
        await repository.append_execution(_execution(other.id, T0))

        await repository.delete_job(job.id)

        assert await repository.get_job(job.id) is None
        assert [j.id for j in await repository.list_jobs()] == [other.id]
        assert await repository.list_executions(job.id) == []
        assert await repository.list_error_logs(job.id) == []
        assert len(await repository.list_executions(other.id)) == 1


# ============================================================================
# Ausführungen und Fehlerlogs
# ============================================================================


class TestExecutions:
    @pytest.mark.asyncio
    async def test_append_bumps_counters_and_last_run(
        self, repository: SQLJobRepository, job_factory,
    ) -> None:
        job = job_factory()
        await repository.create_job(job)
        await repository.append_execution(_execution(job.id, T0))
        await repository.append_execution(_execution(job.id, T0 + timedelta(minutes=1), ExecutionStatus.FAILED))

        stored = await repository.get_job(job.id)
        assert stored.success_count == 1
        assert stored.failure_count == 1
        assert stored.last_run == T0 + timedelta(minutes=1, seconds=1)

    @pytest.mark.asyncio
    async def test_append_for_missing_job_raises(self, repository: SQLJobRepository) -> None:
        with pytest.raises(JobNotFoundError):
            await repository.append_execution(_execution("missing", T0))

    @pytest.mark.asyncio
    async def test_list_newest_first_with_limit(self, repository: SQLJobRepository, job_factory) -> None:
        job = job_factory()
        await repository.create_job(job)
        for i in range(4):
            await repository.append_execution(_execution(job.id, T0 + timedelta(minutes=i)))

        executions = await repository.list_executions(job.id, limit=2)
        assert [e.start_time for e in executions] == [T0 + timedelta(minutes=3), T0 + timedelta(minutes=2)]

    @pytest.mark.asyncio
    async def test_retention_keeps_most_recent(self, repository: SQLJobRepository, job_factory) -> None:
        # Die Fixture behält 5 Ausführungen pro Job
        job = job_factory()
        await repository.create_job(job)
        for i in range(8):
            await repository.append_execution(_execution(job.id, T0 + timedelta(minutes=i)))

        executions = await repository.list_executions(job.id)
        assert len(executions) == 5
        assert executions[-1].start_time == T0 + timedelta(minutes=3)
        # Zähler zählen jede Ausführung, nicht nur die aufbewahrten
        assert (await repository.get_job(job.id)).success_count == 8

    @pytest.mark.asyncio
    async def test_list_all_executions(self, repository: SQLJobRepository, job_factory) -> None:
        a = job_factory(name="a")
        b = job_factory(name="b")
        await repository.create_job(a)
        await repository.create_job(b)
        await repository.append_execution(_execution(a.id, T0))
        await repository.append_execution(_execution(b.id, T0 + timedelta(minutes=1)))

        executions = await repository.list_all_executions()
        assert [e.job_id for e in executions] == [b.id, a.id]


class TestErrorLogs:
    @pytest.mark.asyncio
    async def test_append_list_delete(self, repository: SQLJobRepository, job_factory) -> None:
        job = job_factory()
        await repository.create_job(job)
        first = await repository.append_error_log(_error(job.id, T0))
        await repository.append_error_log(_error(job.id, T0 + timedelta(minutes=1), kind="timeout"))

        logs = await repository.list_error_logs(job.id)
        assert [e.error_type for e in logs] == ["timeout", "http-status"]

        await repository.delete_error_log(first)
        assert [e.error_type for e in await repository.list_error_logs()] == ["timeout"]

    @pytest.mark.asyncio
    async def test_global_limit(self, repository: SQLJobRepository, job_factory) -> None:
        # Die Fixture behält insgesamt 10 Fehlerlogs
        job = job_factory()
        await repository.create_job(job)
        for i in range(12):
            await repository.append_error_log(_error(job.id, T0 + timedelta(minutes=i)))
        logs = await repository.list_error_logs()
        assert len(logs) == 10
        assert logs[-1].timestamp == T0 + timedelta(minutes=2)


# ============================================================================
# Leases
# ============================================================================


class TestLeases:
    @pytest.mark.asyncio
    async def test_expired_leases(self, repository: SQLJobRepository, job_factory) -> None:
        expired = job_factory(name="expired", status=JobStatus.RUNNING, lease_expires_at=T0 - timedelta(seconds=1))
        fresh = job_factory(name="fresh", status=JobStatus.RUNNING, lease_expires_at=T0 + timedelta(minutes=5))
        idle = job_factory(name="idle", lease_expires_at=T0 - timedelta(minutes=5))
        for job in (expired, fresh, idle):
            await repository.create_job(job)

        assert [j.name for j in await repository.list_expired_leases(T0)] == ["expired"]


# ============================================================================
# Statistiken
# ============================================================================


class TestStatistics:
    @pytest.mark.asyncio
    async def test_dashboard_stats(self, repository: SQLJobRepository, job_factory) -> None:
        active = job_factory(name="active")
        paused = job_factory(name="paused", status=JobStatus.PAUSED, next_run=None)
        await repository.create_job(active)
        await repository.create_job(paused)
        yesterday = T0 - timedelta(days=1)
        await repository.append_execution(_execution(active.id, yesterday))
        await repository.append_execution(_execution(active.id, T0 - timedelta(hours=2)))
        await repository.append_execution(_execution(active.id, T0 - timedelta(hours=1)))
        await repository.append_execution(
            _execution(active.id, T0 - timedelta(minutes=30), ExecutionStatus.FAILED),
        )

        stats = await repository.dashboard_stats(T0)
        assert stats.total_jobs == 2
        assert stats.active_jobs == 1
        assert stats.successful_today == 2
        assert stats.failed_today == 1
        assert stats.success_rate == 66.7

    @pytest.mark.asyncio
    async def test_dashboard_stats_empty(self, repository: SQLJobRepository) -> None:
        stats = await repository.dashboard_stats(T0)
        assert stats.total_jobs == 0
        assert stats.success_rate == 0.0

    @pytest.mark.asyncio
    async def test_execution_trends(self, repository: SQLJobRepository, job_factory) -> None:
        job = job_factory()
        await repository.create_job(job)
        await repository.append_execution(_execution(job.id, T0 - timedelta(days=2)))
        await repository.append_execution(_execution(job.id, T0 - timedelta(days=2, hours=1), ExecutionStatus.FAILED))
        await repository.append_execution(_execution(job.id, T0))
        await repository.append_execution(_execution(job.id, T0 - timedelta(days=10)))

        trends = await repository.execution_trends(7, T0)
        assert len(trends) == 7
        assert trends[0].day == (T0 - timedelta(days=6)).date()
        assert trends[-1].day == T0.date()
        by_day = {p.day: (p.successful, p.failed) for p in trends}
        assert by_day[(T0 - timedelta(days=2)).date()] == (1, 1)
        assert by_day[T0.date()] == (1, 0)
        assert sum(p.successful + p.failed for p in trends) == 3

    @pytest.mark.asyncio
    async def test_execution_distribution(self, repository: SQLJobRepository, job_factory) -> None:
        job = job_factory()
        await repository.create_job(job)
        await repository.append_execution(_execution(job.id, T0))
        await repository.append_execution(_execution(job.id, T0 + timedelta(minutes=1), ExecutionStatus.FAILED))
        await repository.append_execution(_execution(job.id, T0 + timedelta(minutes=2), ExecutionStatus.FAILED))

        assert await repository.execution_distribution() == {"running": 0, "success": 1, "failed": 2}


# ============================================================================
# Bedingte Status-Updates
# ============================================================================


class TestFinishExecution:
    @pytest.mark.asyncio
    async def test_writes_final_state(self, repository: SQLJobRepository, job_factory) -> None:
        job = job_factory(status=JobStatus.RUNNING, lease_expires_at=T0)
        await repository.create_job(job)

        final = await repository.finish_execution(
            job.id, status=JobStatus.FAILED, next_run=T0 + timedelta(minutes=15),
        )
        assert final.status == JobStatus.FAILED
        assert final.next_run == T0 + timedelta(minutes=15)
        assert final.lease_expires_at is None
        assert final == await repository.get_job(job.id)

    @pytest.mark.asyncio
    async def test_pending_pause_wins(self, repository: SQLJobRepository, job_factory) -> None:
        job = job_factory(status=JobStatus.RUNNING, lease_expires_at=T0, pause_requested=True)
        await repository.create_job(job)

        final = await repository.finish_execution(
            job.id, status=JobStatus.SUCCESS, next_run=T0 + timedelta(minutes=15),
        )
        assert final.status == JobStatus.PAUSED
        assert final.next_run is None
        assert final.pause_requested is False
        assert final.lease_expires_at is None

    @pytest.mark.asyncio
    async def test_missing_job(self, repository: SQLJobRepository) -> None:
        with pytest.raises(JobNotFoundError):
            await repository.finish_execution("missing", status=JobStatus.SUCCESS, next_run=None)


class TestPauseResumeWrites:
    @pytest.mark.asyncio
    async def test_pause_idle_job(self, repository: SQLJobRepository, job_factory) -> None:
        job = job_factory(status=JobStatus.FAILED)
        await repository.create_job(job)

        paused = await repository.request_pause(job.id)
        assert paused.status == JobStatus.PAUSED
        assert paused.next_run is None
        assert paused.pause_requested is False

    @pytest.mark.asyncio
    async def test_pause_running_job_only_flags_it(self, repository: SQLJobRepository, job_factory) -> None:
        job = job_factory(status=JobStatus.RUNNING)
        await repository.create_job(job)

        paused = await repository.request_pause(job.id)
        assert paused.status == JobStatus.RUNNING
        assert paused.pause_requested is True
        assert paused.next_run is None

    @pytest.mark.asyncio
    async def test_resume_paused_job(self, repository: SQLJobRepository, job_factory) -> None:
        job = job_factory(status=JobStatus.PAUSED, next_run=None)
        await repository.create_job(job)

        resumed = await repository.request_resume(job.id, T0 + timedelta(hours=1))
        assert resumed.status == JobStatus.SUCCESS
        assert resumed.next_run == T0 + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_resume_running_job_withdraws_pause(
        self, repository: SQLJobRepository, job_factory,
    ) -> None:
        job = job_factory(status=JobStatus.RUNNING, next_run=None, pause_requested=True)
        await repository.create_job(job)

        resumed = await repository.request_resume(job.id, T0 + timedelta(hours=1))
        assert resumed.status == JobStatus.RUNNING
        assert resumed.pause_requested is False
        assert resumed.next_run is None

    @pytest.mark.asyncio
    async def test_missing_job(self, repository: SQLJobRepository) -> None:
        with pytest.raises(JobNotFoundError):
            await repository.request_pause("missing")
        with pytest.raises(JobNotFoundError):
            await repository.request_resume("missing", None)
