"""Cron-Engine: die Scheduler-Schleife.

Ein Hintergrund-Task führt Durchläufe aus. Jeder Durchlauf:
  1. bereinigt Jobs, deren Running-Lease abgelaufen ist (Prozessabsturz, verlorener Task)
  2. listet nicht pausierte Jobs und übergibt jeden fälligen an den Executor

Zwischen den Durchläufen schläft die Schleife bis zum frühesten ``next_run``,
aber nie länger als ``poll_interval_seconds``. ``wake()`` beendet den Schlaf
vorzeitig, z.B. nachdem ein Job angelegt oder bearbeitet wurde.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from cronhub.core.errors import InvalidScheduleError, JobNotFoundError
from cronhub.cron.expression import next_run as compute_next_run
from cronhub.models import (
    Clock,
    ErrorKind,
    ErrorLog,
    Execution,
    ExecutionOutcome,
    ExecutionStatus,
    Job,
    JobStatus,
    _utc_now,
)
from cronhub.utils.logging import get_logger

if TYPE_CHECKING:
    from cronhub.config import SchedulerConfig
    from cronhub.cron.executor import JobExecutor
    from cronhub.db.repository import JobRepository

log = get_logger(__name__)

# Mindestabstand zwischen Durchläufen, solange ein fälliger Job nicht startbar war
_MIN_SLEEP_SECONDS = 1.0


class CronEngine:
    """Fragt das Repository nach fälligen Jobs ab und startet sie nebenläufig.

    Attributes:
        running: Ob der Schleifen-Task aktiv ist.
    """

    def __init__(
        self,
        repository: JobRepository,
        executor: JobExecutor,
        *,
        config: SchedulerConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        if config is None:
            from cronhub.config import SchedulerConfig

            config = SchedulerConfig()
        self._repo = repository
        self._executor = executor
        self._config = config
        self._clock: Clock = clock or _utc_now

        self._loop_task: asyncio.Task[None] | None = None
        self._wake_event = asyncio.Event()
        self._pass_active = False
        self._in_flight: dict[str, asyncio.Task[ExecutionOutcome | None]] = {}
        # Job-ID → frühester nächster Versuch nach einem Absturz der Ausführung
        self._retry_after: dict[str, datetime] = {}
        self.running = False

    # ── Eigenschaften ───────────────────────────────────────────

    @property
    def in_flight(self) -> frozenset[str]:
        """IDs der Jobs, die in diesem Prozess gerade ausgeführt werden."""
        return frozenset(self._in_flight)

    @property
    def free_slots(self) -> int | None:
        """Freie Ausführungsplätze, ``None`` wenn unbegrenzt."""
        limit = self._config.max_concurrent_executions
        if limit == 0:
            return None
        return max(0, limit - len(self._in_flight))

    # ── Lebenszyklus ────────────────────────────────────────────

    async def start(self) -> None:
        """Startet die Schleife. Ein zweiter Aufruf während des Laufs bewirkt nichts."""
        if self.running:
            log.warning("cron_engine_already_running")
            return

        self.running = True
        if self._config.startup_pass:
            await self.run_pass()
        self._loop_task = asyncio.create_task(self._run_loop(), name="cronhub-scheduler")
        log.info(
            "cron_engine_started",
            poll_interval=self._config.poll_interval_seconds,
            max_concurrent=self._config.max_concurrent_executions,
        )

    async def stop(self) -> None:
        """Stoppt die Schleife. Laufende Ausführungen laufen weiter."""
        if not self.running:
            return

        self.running = False
        if self._loop_task is not None and not self._loop_task.done():
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
        self._loop_task = None
        log.info("cron_engine_stopped", in_flight=len(self._in_flight))

    async def drain(self, timeout: float | None = None) -> None:
        """Wartet, bis laufende Ausführungen beendet sind."""
        tasks = list(self._in_flight.values())
        if not tasks:
            return
        log.info("cron_engine_draining", in_flight=len(tasks))
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            log.warning("cron_engine_drain_incomplete", pending=len(pending))

    async def aclose(self, timeout: float | None = None) -> None:
        """Stoppt die Schleife und wartet auf laufende Ausführungen."""
        await self.stop()
        await self.drain(timeout)

    def wake(self) -> None:
        """Startet den nächsten Durchlauf sofort statt nach dem aktuellen Schlaf."""
        self._wake_event.set()

    # ── Schleife ────────────────────────────────────────────────

    async def _run_loop(self) -> None:
        while self.running:
            try:
                delay = await self._seconds_until_next_pass()
            except Exception:
                log.exception("cron_engine_delay_failed")
                delay = self._config.poll_interval_seconds

            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._wake_event.wait(), timeout=delay)
            self._wake_event.clear()

            if not self.running:
                break
            await self.run_pass()

    async def _seconds_until_next_pass(self) -> float:
        """Zeit bis zum frühesten fälligen Job, begrenzt durch das Poll-Intervall."""
        interval = self._config.poll_interval_seconds
        if self.free_slots == 0:
            # Eine endende Ausführung weckt die Schleife
            return interval
        jobs = await self._repo.list_jobs(include_paused=False)
        upcoming = [
            max(j.next_run, self._retry_after.get(j.id, j.next_run))
            for j in jobs
            if j.next_run is not None and j.id not in self._in_flight
        ]
        if not upcoming:
            return interval
        until = (min(upcoming) - self._clock()).total_seconds()
        return max(min(_MIN_SLEEP_SECONDS, interval), min(interval, until))

    async def run_pass(self) -> int:
        """Führt einen Scheduling-Durchlauf aus.

        Wird übersprungen, solange ein anderer Durchlauf aktiv ist.

        Returns:
            Anzahl der gestarteten Jobs.
        """
        if self._pass_active:
            log.debug("cron_pass_skipped_overlap")
            return 0

        self._pass_active = True
        try:
            now = self._clock()
            try:
                await self._reconcile_leases(now)
            except Exception:
                log.exception("cron_lease_reconcile_failed")

            try:
                jobs = await self._repo.list_jobs(include_paused=False)
            except Exception:
                log.exception("cron_list_jobs_failed")
                return 0

            dispatched = 0
            for job in jobs:
                if not job.is_due(now):
                    continue
                if job.id in self._in_flight:
                    log.debug("job_still_in_flight", job_id=job.id, job_name=job.name)
                    continue
                retry_after = self._retry_after.get(job.id)
                if retry_after is not None and now < retry_after:
                    log.debug("job_backing_off", job_id=job.id, retry_after=retry_after.isoformat())
                    continue
                slots = self.free_slots
                if slots is not None and slots == 0:
                    log.info("job_deferred", job_id=job.id, job_name=job.name)
                    continue
                try:
                    self.dispatch(job)
                    dispatched += 1
                except Exception:
                    log.exception("job_dispatch_failed", job_id=job.id, job_name=job.name)
            return dispatched
        finally:
            self._pass_active = False

    # ── Start ───────────────────────────────────────────────────

    def dispatch(self, job: Job) -> asyncio.Task[ExecutionOutcome | None]:
        """Startet eine Ausführung von ``job`` im Hintergrund."""
        task = asyncio.create_task(self._execute(job), name=f"cronhub-job-{job.id}")
        self._in_flight[job.id] = task
        task.add_done_callback(lambda _t, job_id=job.id: self._on_done(job_id))
        log.info("job_dispatched", job_id=job.id, job_name=job.name)
        return task

    def _on_done(self, job_id: str) -> None:
        self._in_flight.pop(job_id, None)
        if self._config.max_concurrent_executions:
            self.wake()

    async def _execute(self, job: Job) -> ExecutionOutcome | None:
        try:
            outcome = await self._executor.execute(job)
        except Exception:
            backoff = timedelta(seconds=self._config.crash_backoff_seconds)
            self._retry_after[job.id] = self._clock() + backoff
            log.exception(
                "job_execution_crashed",
                job_id=job.id,
                job_name=job.name,
                backoff_seconds=self._config.crash_backoff_seconds,
            )
            return None
        self._retry_after.pop(job.id, None)
        return outcome

    # ── Lease-Bereinigung ───────────────────────────────────────

    async def _reconcile_leases(self, now: datetime) -> int:
        """Markiert in ``running`` hängengebliebene Jobs als fehlgeschlagen."""
        stale = [j for j in await self._repo.list_expired_leases(now) if j.id not in self._in_flight]
        for job in stale:
            await self._expire_lease(job, now)
        return len(stale)

    async def _expire_lease(self, job: Job, now: datetime) -> None:
        expired_at = job.lease_expires_at or now
        started = expired_at - timedelta(seconds=job.timeout_seconds + self._config.lease_grace_seconds)
        message = f"Execution lease expired at {expired_at.isoformat()} without a recorded result"
        execution = Execution(
            job_id=job.id,
            job_name=job.name,
            start_time=started,
            end_time=now,
            status=ExecutionStatus.FAILED,
            logs=message,
        )
        error_log = ErrorLog(
            job_id=job.id,
            job_name=job.name,
            timestamp=now,
            error_type=ErrorKind.LEASE_EXPIRED.value,
            error_message=message,
        )
        try:
            next_run = compute_next_run(job.schedule, now)
        except InvalidScheduleError:
            next_run = None

        try:
            await self._repo.append_execution(execution)
            await self._repo.append_error_log(error_log)
            await self._repo.finish_execution(job.id, status=JobStatus.FAILED, next_run=next_run)
        except JobNotFoundError:
            return
        log.warning("job_lease_expired", job_id=job.id, job_name=job.name)
