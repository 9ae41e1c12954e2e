"""SQL-Implementierung des JobRepository ueber ein DatabaseBackend.

Das Schema nutzt nur portable Typen (TEXT/INTEGER), damit dieselben Statements
auf SQLite und PostgreSQL laufen. Zeitstempel werden als UTC-ISO-8601-Text
gespeichert, der sich als String korrekt sortiert.
"""
from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from cronhub.core.errors import JobNotFoundError
from cronhub.models import (
    DashboardStats,
    ErrorLog,
    Execution,
    ExecutionStatus,
    Job,
    JobStatus,
    TrendPoint,
)
from cronhub.utils.logging import get_logger

if TYPE_CHECKING:
    from cronhub.db.backend import DatabaseBackend

log = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    url TEXT NOT NULL,
    method TEXT NOT NULL,
    schedule TEXT NOT NULL,
    headers TEXT,
    body TEXT,
    timeout_seconds INTEGER NOT NULL,
    status TEXT NOT NULL,
    last_run TEXT,
    next_run TEXT,
    success_count INTEGER NOT NULL DEFAULT 0,
    failure_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    lease_expires_at TEXT,
    pause_requested INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS executions (
    id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
    job_name TEXT NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT,
    status TEXT NOT NULL,
    duration_ms INTEGER NOT NULL DEFAULT 0,
    logs TEXT,
    response_status INTEGER,
    response_body TEXT
);

CREATE INDEX IF NOT EXISTS idx_executions_job_start ON executions (job_id, start_time);

CREATE TABLE IF NOT EXISTS error_logs (
    id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
    job_name TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    error_type TEXT NOT NULL,
    error_message TEXT NOT NULL,
    stack_trace TEXT,
    response_status INTEGER
);

CREATE INDEX IF NOT EXISTS idx_error_logs_job ON error_logs (job_id, timestamp);
"""

# Job-Felder, die ueber update_job geaendert werden duerfen
_UPDATABLE = frozenset({
    "name", "url", "method", "schedule", "headers", "body", "timeout_seconds",
    "status", "last_run", "next_run", "lease_expires_at", "pause_requested",
})

_JOB_COLUMNS = (
    "id", "name", "url", "method", "schedule", "headers", "body", "timeout_seconds",
    "status", "last_run", "next_run", "success_count", "failure_count", "created_at",
    "lease_expires_at", "pause_requested",
)


def _ts(value: datetime | None) -> str | None:
    """Datetime → UTC-ISO-Text. Naive Werte gelten als UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def _dt(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _headers_to_text(job: Job) -> str | None:
    if job.headers_raw is not None:
        return job.headers_raw
    if not job.headers:
        return None
    return json.dumps(job.headers)


def _column_value(field: str, value: Any) -> Any:
    if isinstance(value, datetime):
        return _ts(value)
    if field == "headers" and isinstance(value, dict):
        return json.dumps(value) if value else None
    if field == "pause_requested":
        return 1 if value else 0
    if hasattr(value, "value"):  # Enums
        return value.value
    return value


def _job_from_row(row: dict[str, Any]) -> Job:
    return Job(
        id=row["id"],
        name=row["name"],
        url=row["url"],
        method=row["method"],
        schedule=row["schedule"],
        headers=row["headers"],
        body=row["body"],
        timeout_seconds=row["timeout_seconds"],
        status=row["status"],
        last_run=_dt(row["last_run"]),
        next_run=_dt(row["next_run"]),
        success_count=row["success_count"],
        failure_count=row["failure_count"],
        created_at=_dt(row["created_at"]),
        lease_expires_at=_dt(row["lease_expires_at"]),
        pause_requested=bool(row["pause_requested"]),
    )


def _execution_from_row(row: dict[str, Any]) -> Execution:
    return Execution(
        id=row["id"],
        job_id=row["job_id"],
        job_name=row["job_name"],
        start_time=_dt(row["start_time"]),
        end_time=_dt(row["end_time"]),
        status=row["status"],
        duration_ms=row["duration_ms"] or 0,
        logs=row["logs"] or "",
        response_status=row["response_status"],
        response_body=row["response_body"],
    )


def _error_log_from_row(row: dict[str, Any]) -> ErrorLog:
    return ErrorLog(
        id=row["id"],
        job_id=row["job_id"],
        job_name=row["job_name"],
        timestamp=_dt(row["timestamp"]),
        error_type=row["error_type"],
        error_message=row["error_message"],
        stack_trace=row["stack_trace"],
        response_status=row["response_status"],
    )


class SQLJobRepository:
    """JobRepository auf Basis von SQLite oder PostgreSQL.

    Attributes:
        executions_per_job: Pro Job aufbewahrte Historie (aeltere Zeilen werden entfernt).
        error_logs_limit: Insgesamt aufbewahrte Fehlerlogs.
    """

    def __init__(
        self,
        backend: DatabaseBackend,
        *,
        executions_per_job: int = 100,
        error_logs_limit: int = 1000,
    ) -> None:
        self._db = backend
        self.executions_per_job = executions_per_job
        self.error_logs_limit = error_logs_limit

    def _sql(self, query: str) -> str:
        """Uebersetzt '?'-Platzhalter in den Stil des Backends."""
        if self._db.placeholder == "?":
            return query
        return query.replace("?", self._db.placeholder)

    async def initialize(self) -> None:
        """Legt fehlende Tabellen und Indizes an."""
        await self._db.executescript(SCHEMA)
        log.debug("repository_schema_ready", backend=self._db.backend_type)

    async def close(self) -> None:
        await self._db.close()

    # ── Jobs ────────────────────────────────────────────────────

    async def list_jobs(self, *, include_paused: bool = True) -> list[Job]:
        columns = ", ".join(_JOB_COLUMNS)
        if include_paused:
            rows = await self._db.fetchall(
                f"SELECT {columns} FROM jobs ORDER BY created_at DESC",
            )
        else:
            rows = await self._db.fetchall(
                self._sql(f"SELECT {columns} FROM jobs WHERE status != ? ORDER BY created_at DESC"),
                (JobStatus.PAUSED.value,),
            )
        return [_job_from_row(r) for r in rows]

    async def get_job(self, job_id: str) -> Job | None:
        row = await self._db.fetchone(
            self._sql(f"SELECT {', '.join(_JOB_COLUMNS)} FROM jobs WHERE id = ?"),
            (job_id,),
        )
        return _job_from_row(row) if row else None

    async def create_job(self, job: Job) -> str:
        placeholders = ", ".join("?" for _ in _JOB_COLUMNS)
        await self._db.execute(
            self._sql(f"INSERT INTO jobs ({', '.join(_JOB_COLUMNS)}) VALUES ({placeholders})"),
            (
                job.id,
                job.name,
                job.url,
                job.method.value,
                job.schedule,
                _headers_to_text(job),
                job.body,
                job.timeout_seconds,
                job.status.value,
                _ts(job.last_run),
                _ts(job.next_run),
                job.success_count,
                job.failure_count,
                _ts(job.created_at),
                _ts(job.lease_expires_at),
                1 if job.pause_requested else 0,
            ),
        )
        log.debug("job_created", job_id=job.id, job_name=job.name)
        return job.id

    async def update_job(self, job_id: str, **fields: Any) -> None:
        if not fields:
            return
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")

        assignments = ", ".join(f"{name} = ?" for name in fields)
        params = [_column_value(name, value) for name, value in fields.items()]
        count = await self._db.execute(
            self._sql(f"UPDATE jobs SET {assignments} WHERE id = ?"),
            (*params, job_id),
        )
        if count == 0:
            raise JobNotFoundError(f"No job with id '{job_id}'", details={"job_id": job_id})

    async def delete_job(self, job_id: str) -> None:
        # Explizite Child-Deletes; ON DELETE CASCADE braucht aktive Foreign Keys
        await self._db.transaction([
            (self._sql("DELETE FROM executions WHERE job_id = ?"), (job_id,)),
            (self._sql("DELETE FROM error_logs WHERE job_id = ?"), (job_id,)),
            (self._sql("DELETE FROM jobs WHERE id = ?"), (job_id,)),
        ])
        log.debug("job_deleted", job_id=job_id)

    async def finish_execution(
        self, job_id: str, *, status: JobStatus, next_run: datetime | None,
    ) -> Job:
        # Ein gesetztes pause_requested wird in derselben Anweisung ausgewertet
        paused = JobStatus.PAUSED.value
        count = await self._db.execute(
            self._sql(
                "UPDATE jobs SET "
                "status = CASE WHEN pause_requested = 1 THEN ? ELSE ? END, "
                "next_run = CASE WHEN pause_requested = 1 THEN NULL ELSE ? END, "
                "lease_expires_at = NULL, pause_requested = 0 "
                "WHERE id = ?"
            ),
            (paused, status.value, _ts(next_run), job_id),
        )
        job = await self.get_job(job_id) if count else None
        if job is None:
            raise JobNotFoundError(f"No job with id '{job_id}'", details={"job_id": job_id})
        return job

    async def request_pause(self, job_id: str) -> Job:
        running = JobStatus.RUNNING.value
        count = await self._db.execute(
            self._sql(
                "UPDATE jobs SET "
                "pause_requested = CASE WHEN status = ? THEN 1 ELSE 0 END, "
                "status = CASE WHEN status = ? THEN status ELSE ? END, "
                "next_run = NULL "
                "WHERE id = ?"
            ),
            (running, running, JobStatus.PAUSED.value, job_id),
        )
        job = await self.get_job(job_id) if count else None
        if job is None:
            raise JobNotFoundError(f"No job with id '{job_id}'", details={"job_id": job_id})
        return job

    async def request_resume(self, job_id: str, next_run: datetime | None) -> Job:
        paused = JobStatus.PAUSED.value
        count = await self._db.execute(
            self._sql(
                "UPDATE jobs SET "
                "next_run = CASE WHEN status = ? THEN ? ELSE next_run END, "
                "status = CASE WHEN status = ? THEN ? ELSE status END, "
                "pause_requested = 0 "
                "WHERE id = ?"
            ),
            (paused, _ts(next_run), paused, JobStatus.SUCCESS.value, job_id),
        )
        job = await self.get_job(job_id) if count else None
        if job is None:
            raise JobNotFoundError(f"No job with id '{job_id}'", details={"job_id": job_id})
        return job

    async def list_expired_leases(self, now: datetime) -> list[Job]:
        rows = await self._db.fetchall(
            self._sql(
                f"SELECT {', '.join(_JOB_COLUMNS)} FROM jobs "
                "WHERE status = ? AND lease_expires_at IS NOT NULL AND lease_expires_at <= ?"
            ),
            (JobStatus.RUNNING.value, _ts(now)),
        )
        return [_job_from_row(r) for r in rows]

    # ── Ausfuehrungen ───────────────────────────────────────────

    async def append_execution(self, execution: Execution) -> str:
        if await self.get_job(execution.job_id) is None:
            raise JobNotFoundError(
                f"No job with id '{execution.job_id}'", details={"job_id": execution.job_id},
            )

        statements: list[tuple[str, tuple[Any, ...]]] = [
            (
                self._sql(
                    "INSERT INTO executions (id, job_id, job_name, start_time, end_time, status, "
                    "duration_ms, logs, response_status, response_body) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
                ),
                (
                    execution.id,
                    execution.job_id,
                    execution.job_name,
                    _ts(execution.start_time),
                    _ts(execution.end_time),
                    execution.status.value,
                    execution.duration_ms,
                    execution.logs,
                    execution.response_status,
                    execution.response_body,
                ),
            ),
        ]

        counter = {
            ExecutionStatus.SUCCESS: "success_count",
            ExecutionStatus.FAILED: "failure_count",
        }.get(execution.status)
        if counter is not None:
            last_run = execution.end_time or execution.start_time
            statements.append((
                self._sql(f"UPDATE jobs SET {counter} = {counter} + 1, last_run = ? WHERE id = ?"),
                (_ts(last_run), execution.job_id),
            ))

        statements.append((
            self._sql(
                "DELETE FROM executions WHERE job_id = ? AND id NOT IN ("
                "SELECT id FROM executions WHERE job_id = ? ORDER BY start_time DESC LIMIT ?)"
            ),
            (execution.job_id, execution.job_id, self.executions_per_job),
        ))

        await self._db.transaction(statements)
        return execution.id

    async def list_executions(self, job_id: str, limit: int = 100) -> list[Execution]:
        rows = await self._db.fetchall(
            self._sql("SELECT * FROM executions WHERE job_id = ? ORDER BY start_time DESC LIMIT ?"),
            (job_id, limit),
        )
        return [_execution_from_row(r) for r in rows]

    async def list_all_executions(self, limit: int = 1000) -> list[Execution]:
        rows = await self._db.fetchall(
            self._sql("SELECT * FROM executions ORDER BY start_time DESC LIMIT ?"),
            (limit,),
        )
        return [_execution_from_row(r) for r in rows]

    # ── Fehlerlogs ──────────────────────────────────────────────

    async def append_error_log(self, error_log: ErrorLog) -> str:
        await self._db.transaction([
            (
                self._sql(
                    "INSERT INTO error_logs (id, job_id, job_name, timestamp, error_type, "
                    "error_message, stack_trace, response_status) VALUES (?, ?, ?, ?, ?, ?, ?, ?)"
                ),
                (
                    error_log.id,
                    error_log.job_id,
                    error_log.job_name,
                    _ts(error_log.timestamp),
                    error_log.error_type,
                    error_log.error_message,
                    error_log.stack_trace,
                    error_log.response_status,
                ),
            ),
            (
                self._sql(
                    "DELETE FROM error_logs WHERE id NOT IN ("
                    "SELECT id FROM error_logs ORDER BY timestamp DESC LIMIT ?)"
                ),
                (self.error_logs_limit,),
            ),
        ])
        return error_log.id

    async def list_error_logs(self, job_id: str | None = None, limit: int = 1000) -> list[ErrorLog]:
        if job_id is None:
            rows = await self._db.fetchall(
                self._sql("SELECT * FROM error_logs ORDER BY timestamp DESC LIMIT ?"),
                (limit,),
            )
        else:
            rows = await self._db.fetchall(
                self._sql("SELECT * FROM error_logs WHERE job_id = ? ORDER BY timestamp DESC LIMIT ?"),
                (job_id, limit),
            )
        return [_error_log_from_row(r) for r in rows]

    async def delete_error_log(self, error_id: str) -> None:
        await self._db.execute(self._sql("DELETE FROM error_logs WHERE id = ?"), (error_id,))

    # ── Statistiken ─────────────────────────────────────────────

    async def dashboard_stats(self, now: datetime) -> DashboardStats:
        totals = await self._db.fetchone(
            self._sql(
                "SELECT COUNT(*) AS total, "
                "SUM(CASE WHEN status != ? THEN 1 ELSE 0 END) AS active FROM jobs"
            ),
            (JobStatus.PAUSED.value,),
        ) or {}

        midnight = now.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
        rows = await self._db.fetchall(
            self._sql(
                "SELECT status, COUNT(*) AS count FROM executions "
                "WHERE start_time >= ? GROUP BY status"
            ),
            (_ts(midnight),),
        )
        by_status = {r["status"]: r["count"] for r in rows}

        return DashboardStats(
            total_jobs=totals.get("total") or 0,
            active_jobs=totals.get("active") or 0,
            successful_today=by_status.get(ExecutionStatus.SUCCESS.value, 0),
            failed_today=by_status.get(ExecutionStatus.FAILED.value, 0),
        )

    async def execution_trends(self, days: int, now: datetime) -> list[TrendPoint]:
        """Erfolge/Fehler pro Tag fuer die letzten ``days`` UTC-Tage, aelteste zuerst."""
        today = now.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
        first_day = today - timedelta(days=days - 1)
        rows = await self._db.fetchall(
            self._sql("SELECT status, start_time FROM executions WHERE start_time >= ?"),
            (_ts(first_day),),
        )

        counts: dict[Any, dict[str, int]] = {
            (first_day + timedelta(days=i)).date(): {"successful": 0, "failed": 0}
            for i in range(days)
        }
        for row in rows:
            started = _dt(row["start_time"])
            bucket = counts.get(started.date()) if started else None
            if bucket is None:
                continue
            if row["status"] == ExecutionStatus.SUCCESS.value:
                bucket["successful"] += 1
            elif row["status"] == ExecutionStatus.FAILED.value:
                bucket["failed"] += 1

        return [TrendPoint(day=day, **values) for day, values in counts.items()]

    async def execution_distribution(self) -> dict[str, int]:
        rows = await self._db.fetchall(
            "SELECT status, COUNT(*) AS count FROM executions GROUP BY status",
        )
        distribution = {status.value: 0 for status in ExecutionStatus}
        for row in rows:
            distribution[row["status"]] = row["count"]
        return distribution
