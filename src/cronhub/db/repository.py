"""Job Repository Protocol.

Der Scheduling-Kern spricht nur ueber dieses Interface mit dem Speicher;
eine bestimmte Datenbank dahinter wird nie vorausgesetzt.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from cronhub.models import DashboardStats, ErrorLog, Execution, Job, JobStatus, TrendPoint


@runtime_checkable
class JobRepository(Protocol):
    """CRUD fuer Jobs plus fortlaufende Ausfuehrungs- und Fehlerhistorie."""

    async def list_jobs(self, *, include_paused: bool = True) -> list[Job]:
        """Alle Jobs, neueste zuerst."""
        ...

    async def get_job(self, job_id: str) -> Job | None:
        ...

    async def create_job(self, job: Job) -> str:
        """Speichert einen neuen Job und gibt seine ID zurueck."""
        ...

    async def update_job(self, job_id: str, **fields: Any) -> None:
        """Aktualisiert die angegebenen Felder eines Jobs.

        Raises:
            JobNotFoundError: Wenn der Job nicht existiert.
        """
        ...

    async def finish_execution(
        self, job_id: str, *, status: JobStatus, next_run: datetime | None,
    ) -> Job:
        """Schreibt den Endzustand einer Ausfuehrung in einem bedingten Update.

        Eine waehrend der Ausfuehrung angeforderte Pause gewinnt: der Job endet
        ``paused`` ohne ``next_run``. Lease und Pause-Flag werden in jedem
        Fall zurueckgesetzt.

        Raises:
            JobNotFoundError: Wenn der Job nicht existiert.
        """
        ...

    async def request_pause(self, job_id: str) -> Job:
        """Pausiert einen Job in einem bedingten Update.

        Ein laufender Job erhaelt nur ``pause_requested`` (seine Ausfuehrung endet
        zuerst); jeder andere Job wird ``paused``. ``next_run`` wird geleert.
        """
        ...

    async def request_resume(self, job_id: str, next_run: datetime | None) -> Job:
        """Setzt einen Job in einem bedingten Update fort.

        Ein pausierter Job wird ``success`` mit ``next_run``; eine offene
        Pause-Anforderung eines laufenden Jobs wird zurueckgenommen.
        """
        ...

    async def delete_job(self, job_id: str) -> None:
        """Loescht einen Job samt Ausfuehrungen und Fehlerlogs."""
        ...

    async def append_execution(self, execution: Execution) -> str:
        """Speichert eine abgeschlossene Ausfuehrung.

        Erhoeht atomar den Erfolgs- oder Fehlerzaehler des Jobs und setzt
        ``last_run``; aeltere Historie jenseits des Aufbewahrungsfensters wird
        entfernt.
        """
        ...

    async def list_executions(self, job_id: str, limit: int = 100) -> list[Execution]:
        """Ausfuehrungen eines Jobs, neueste zuerst."""
        ...

    async def list_all_executions(self, limit: int = 1000) -> list[Execution]:
        ...

    async def append_error_log(self, error_log: ErrorLog) -> str:
        ...

    async def list_error_logs(self, job_id: str | None = None, limit: int = 1000) -> list[ErrorLog]:
        """Fehlerlogs, neueste zuerst, optional fuer einen Job."""
        ...

    async def delete_error_log(self, error_id: str) -> None:
        ...

    async def list_expired_leases(self, now: datetime) -> list[Job]:
        """Noch als running markierte Jobs, deren Lease spaetestens ``now`` abgelaufen ist."""
        ...

    async def dashboard_stats(self, now: datetime) -> DashboardStats:
        ...

    async def execution_trends(self, days: int, now: datetime) -> list[TrendPoint]:
        ...

    async def execution_distribution(self) -> dict[str, int]:
        ...
