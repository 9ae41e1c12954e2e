"""Job-Verwaltung: Jobs anlegen, bearbeiten, pausieren, fortsetzen, löschen und auslösen.

Lädt außerdem Job-Definitionen aus einer YAML-Datei (``jobs.yaml``), damit ein
Host Jobs deklarativ bereitstellen kann.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, Field, field_validator

from cronhub.core.errors import ConfigurationError, CronhubError, JobNotFoundError
from cronhub.cron.executor import validate_url
from cronhub.cron.expression import next_run as compute_next_run
from cronhub.cron.expression import validate_schedule
from cronhub.models import Clock, ExecutionOutcome, HttpMethod, Job, JobStatus, _utc_now

if TYPE_CHECKING:
    from cronhub.cron.engine import CronEngine
    from cronhub.cron.executor import JobExecutor
    from cronhub.db.repository import JobRepository

logger = logging.getLogger(__name__)

# Vom Benutzer editierbare Felder; alles andere gehört dem Executor
EDITABLE_FIELDS = frozenset(
    {"name", "url", "method", "schedule", "headers", "body", "timeout_seconds"}
)


# ============================================================================
# YAML Job-Definitionen
# ============================================================================


class JobDefinition(BaseModel):
    """Ein Job, wie er in ``jobs.yaml`` steht."""

    name: str = Field(min_length=1)
    url: str
    schedule: str = "0 * * * *"
    method: HttpMethod = HttpMethod.GET
    headers: dict[str, str] = Field(default_factory=dict)
    body: str | None = None
    timeout_seconds: int = Field(default=300, ge=1)
    enabled: bool = True

    @field_validator("schedule")
    @classmethod
    def _check_schedule(cls, value: str) -> str:
        return validate_schedule(value)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        try:
            return validate_url(value)
        except ConfigurationError as exc:
            raise ValueError(str(exc)) from exc


class JobDefinitionFile:
    """Liest und schreibt Job-Definitionen in einer YAML-Datei.

    Zwei Formate werden akzeptiert::

        jobs:
          health_check: {url: ..., schedule: ...}

        jobs:
          - {name: health_check, url: ..., schedule: ...}

    Attributes:
        path: Pfad der YAML-Datei.
        definitions: Geladene Definitionen, nach Name.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.definitions: dict[str, JobDefinition] = {}

    def load(self) -> dict[str, JobDefinition]:
        """Lädt die Definitionen. Eine fehlende oder unlesbare Datei ergibt keine.

        Ungültige Einträge werden mit einer Warnung übersprungen.
        """
        self.definitions = {}
        if not self.path.exists():
            logger.info("Keine Job-Definitionsdatei unter %s", self.path)
            return self.definitions

        try:
            raw = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
        except (yaml.YAMLError, OSError) as exc:
            logger.error("Fehler beim Laden von %s: %s", self.path, exc)
            return self.definitions

        job_list = raw.get("jobs", {}) if isinstance(raw, dict) else {}

        if isinstance(job_list, dict):
            for name, definition in job_list.items():
                if not isinstance(definition, dict):
                    continue
                self._add({**definition, "name": str(name)})
        elif isinstance(job_list, list):
            for definition in job_list:
                if not isinstance(definition, dict) or "name" not in definition:
                    continue
                self._add(definition)

        logger.info("Job-Definitionen geladen: %d", len(self.definitions))
        return self.definitions

    def _add(self, data: dict[str, Any]) -> None:
        try:
            definition = JobDefinition(**data)
        except ValueError as exc:
            logger.warning("Ungültige Job-Definition '%s': %s", data.get("name"), exc)
            return
        self.definitions[definition.name] = definition

    def save(self, definitions: list[JobDefinition]) -> None:
        """Schreibt ``definitions`` im Dict-Format und ersetzt die Datei."""
        data: dict[str, dict[str, Any]] = {}
        for definition in definitions:
            entry = definition.model_dump(mode="json", exclude={"name"}, exclude_none=True)
            if not entry.get("headers"):
                entry.pop("headers", None)
            data[definition.name] = entry

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            yaml.dump({"jobs": data}, default_flow_style=False, allow_unicode=True, sort_keys=False),
            encoding="utf-8",
        )


# ============================================================================
# Job-Service
# ============================================================================


class JobService:
    """Job-Operationen für Benutzer auf Basis des Repositorys.

    Jede Änderung weckt die Engine (falls vorhanden), damit Zeitplan-
    Änderungen ohne Warten auf den nächsten Poll wirken.

    Args:
        repository: Job-Repository.
        executor: Executor für ``trigger_now``, wenn keine Engine angebunden ist.
        engine: Optionale laufende Engine; manuelle Auslöser laufen über sie
            und zählen als laufend.
        clock: Zeitquelle, Standard ist UTC-jetzt.
        default_timeout_seconds: Timeout für Jobs, die ohne eines angelegt werden.
    """

    def __init__(
        self,
        repository: JobRepository,
        executor: JobExecutor,
        *,
        engine: CronEngine | None = None,
        clock: Clock | None = None,
        default_timeout_seconds: int = 300,
    ) -> None:
        self._repo = repository
        self._executor = executor
        self._engine = engine
        self._clock: Clock = clock or _utc_now
        self._default_timeout = default_timeout_seconds

    def _notify(self) -> None:
        if self._engine is not None:
            self._engine.wake()

    # ── Abfragen ────────────────────────────────────────────────

    async def get_job(self, job_id: str) -> Job:
        """Gibt den Job zurück oder wirft ``JobNotFoundError``."""
        job = await self._repo.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}", details={"job_id": job_id})
        return job

    async def list_jobs(self) -> list[Job]:
        return await self._repo.list_jobs()

    # ── Änderungen ──────────────────────────────────────────────

    async def create_job(
        self,
        name: str,
        url: str,
        schedule: str = "0 * * * *",
        *,
        method: HttpMethod | str = HttpMethod.GET,
        headers: dict[str, str] | str | None = None,
        body: str | None = None,
        timeout_seconds: int | None = None,
        enabled: bool = True,
    ) -> Job:
        """Validiert und speichert einen neuen Job.

        Ein aktiver Job startet mit ``next_run`` auf jetzt, der nächste
        Durchlauf führt ihn aus. Ein deaktivierter Job startet pausiert.

        Raises:
            InvalidScheduleError: Fehlerhafter oder nie feuernder Cron-Ausdruck.
            ConfigurationError: URL ist keine absolute http(s)-URL.
        """
        schedule = validate_schedule(schedule)
        validate_url(url)
        now = self._clock()
        job = Job(
            name=name,
            url=url,
            method=HttpMethod(str(method).upper()),
            schedule=schedule,
            headers=headers,
            body=body,
            timeout_seconds=timeout_seconds or self._default_timeout,
            status=JobStatus.SUCCESS if enabled else JobStatus.PAUSED,
            next_run=now if enabled else None,
            created_at=now,
        )
        await self._repo.create_job(job)
        logger.info("Job angelegt: %s (%s, %s)", job.name, job.id, job.schedule)
        self._notify()
        return job

    async def update_job(self, job_id: str, **fields: Any) -> Job:
        """Bearbeitet die Benutzerfelder eines Jobs.

        Ein geänderter Zeitplan eines aktiven Jobs berechnet ``next_run`` ab jetzt neu.

        Raises:
            JobNotFoundError: Unbekannter Job.
            InvalidScheduleError: Fehlerhafter oder nie feuernder Cron-Ausdruck.
            ConfigurationError: Ungültige URL, Methode oder Feldwert (z.B. ein
                Timeout unter 1), oder ein nicht editierbares Feld.
        """
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ConfigurationError(f"Fields not editable: {', '.join(sorted(unknown))}")

        job = await self.get_job(job_id)
        if "schedule" in fields:
            fields["schedule"] = validate_schedule(fields["schedule"])
        if "url" in fields:
            validate_url(fields["url"])

        # Den zusammengeführten Datensatz prüfen, bevor etwas geschrieben wird
        try:
            if "method" in fields:
                fields["method"] = HttpMethod(str(fields["method"]).upper())
            updated = Job.model_validate({**job.model_dump(exclude={"headers_raw"}), **fields})
        except ValueError as exc:
            raise ConfigurationError(
                f"Invalid job fields: {exc}", details={"job_id": job_id, "fields": sorted(fields)},
            ) from exc
        changes: dict[str, Any] = {k: getattr(updated, k) for k in fields}
        if "headers" in fields and updated.headers_raw is not None:
            # Nicht parsebarer Header-Text wird unverändert gespeichert
            changes["headers"] = updated.headers_raw

        schedule_changed = "schedule" in fields and fields["schedule"] != job.schedule
        if schedule_changed and job.status in (JobStatus.SUCCESS, JobStatus.FAILED):
            changes["next_run"] = compute_next_run(updated.schedule, self._clock())

        await self._repo.update_job(job_id, **changes)
        logger.info("Job aktualisiert: %s (%s)", job_id, ", ".join(sorted(fields)))
        self._notify()
        return await self.get_job(job_id)

    async def pause_job(self, job_id: str) -> Job:
        """Pausiert einen Job. Ein laufender Job beendet seine Ausführung und bleibt dann pausiert."""
        job = await self.get_job(job_id)
        if job.status != JobStatus.PAUSED:
            job = await self._repo.request_pause(job_id)
            if job.pause_requested:
                logger.info("Pause für laufenden Job angefordert: %s", job_id)
            else:
                logger.info("Job pausiert: %s", job_id)
        self._notify()
        return job

    async def resume_job(self, job_id: str) -> Job:
        """Setzt einen pausierten Job fort; der nächste Lauf wird ab jetzt berechnet."""
        job = await self.get_job(job_id)
        if job.status == JobStatus.PAUSED or job.pause_requested:
            job = await self._repo.request_resume(
                job_id, compute_next_run(job.schedule, self._clock()),
            )
            logger.info("Job fortgesetzt: %s", job_id)
        self._notify()
        return job

    async def delete_job(self, job_id: str) -> None:
        """Löscht einen Job samt Ausführungen und Fehlerlogs."""
        await self.get_job(job_id)
        await self._repo.delete_job(job_id)
        logger.info("Job gelöscht: %s", job_id)
        self._notify()

    async def trigger_now(self, job_id: str) -> ExecutionOutcome:
        """Führt den Job sofort einmal aus und wartet auf das Ergebnis.

        Funktioniert auch für pausierte Jobs; sie bleiben danach pausiert.

        Raises:
            JobNotFoundError: Unbekannter Job.
            CronhubError: Der Job wird bereits ausgeführt.
        """
        job = await self.get_job(job_id)
        if job.status == JobStatus.RUNNING or (
            self._engine is not None and job_id in self._engine.in_flight
        ):
            raise CronhubError(
                f"Job '{job.name}' is already running",
                error_code="JOB_IN_FLIGHT",
                details={"job_id": job_id},
            )

        if job.is_paused:
            # Der abschließende Schreibvorgang des Executors beachtet das Flag
            await self._repo.update_job(job_id, pause_requested=True)

        logger.info("Manueller Auslöser: %s (%s)", job.name, job_id)
        if self._engine is not None:
            outcome = await self._engine.dispatch(job)
            if outcome is None:
                raise CronhubError(f"Execution of job '{job.name}' crashed", details={"job_id": job_id})
            return outcome
        return await self._executor.execute(job)

    async def import_definitions(self, definitions: JobDefinitionFile) -> list[Job]:
        """Legt Jobs für Definitionen an, deren Namen noch nicht existieren."""
        existing = {job.name for job in await self._repo.list_jobs()}
        created: list[Job] = []
        for name, definition in definitions.load().items():
            if name in existing:
                continue
            job = await self.create_job(
                definition.name,
                definition.url,
                definition.schedule,
                method=definition.method,
                headers=definition.headers,
                body=definition.body,
                timeout_seconds=definition.timeout_seconds,
                enabled=definition.enabled,
            )
            created.append(job)
        if created:
            logger.info("%d Job-Definitionen importiert aus %s", len(created), definitions.path)
        return created

    async def export_definitions(self, definitions: JobDefinitionFile) -> int:
        """Schreibt alle Jobs nach ``definitions``. Gibt die Anzahl zurück."""
        jobs = await self._repo.list_jobs()
        definitions.save([
            JobDefinition(
                name=job.name,
                url=job.url,
                schedule=job.schedule,
                method=job.method,
                headers=job.headers,
                body=job.body,
                timeout_seconds=job.timeout_seconds,
                enabled=not job.is_paused,
            )
            for job in jobs
        ])
        return len(jobs)
