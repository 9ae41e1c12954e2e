"""Job-Executor: Führt den HTTP-Aufruf eines Jobs innerhalb seiner Frist aus.

Ablauf pro Ausführung:
  1. Job mit Lease als ``running`` markieren (für andere Leser sichtbar)
  2. Request bauen (JSON als Standard-Content-Type, Job-Header gewinnen)
  3. Mit harter Frist von ``timeout_seconds`` senden
  4. Klassifizieren: Erfolg / HTTP-Status / Timeout / Netzwerk / Konfiguration
  5. Execution (+ ErrorLog bei Fehler) speichern, ``next_run`` neu berechnen
     und den finalen Job-Status schreiben

Jeder Fehler während der Ausführung wird hier in gespeicherte Datensätze
umgewandelt; nur Repository-Fehler verlassen ``execute`` als Exception.
"""

from __future__ import annotations

import asyncio
import json
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import httpx

from cronhub.core.errors import (
    ConfigurationError,
    CronhubError,
    HttpStatusError,
    InvalidScheduleError,
    JobNotFoundError,
    JobTimeoutError,
    TransportError,
)
from cronhub.cron.expression import next_run as compute_next_run
from cronhub.models import (
    Clock,
    ErrorKind,
    ErrorLog,
    Execution,
    ExecutionOutcome,
    ExecutionStatus,
    HttpMethod,
    Job,
    JobStatus,
    _utc_now,
)
from cronhub.utils.logging import bind_context, clear_context, get_logger

if TYPE_CHECKING:
    from cronhub.config import ExecutorConfig
    from cronhub.db.repository import JobRepository

log = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/json"


@dataclass
class PreparedRequest:
    """Aus einem Job gebauter Request plus Konfigurationshinweise."""

    method: str
    url: str
    headers: dict[str, str]
    content: bytes | None = None
    notes: list[str] = field(default_factory=list)


def _is_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def validate_url(url: str) -> str:
    """Prüft, dass ``url`` eine absolute http(s)-URL ist.

    Raises:
        ConfigurationError: Bei relativen, nicht-http oder unlesbaren URLs.
    """
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as exc:
        raise ConfigurationError(f"Invalid URL '{url}': {exc}") from exc
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ConfigurationError(f"URL must be absolute http(s): '{url}'")
    return url


def build_request(job: Job, *, user_agent: str = "", strict: bool = False) -> PreparedRequest:
    """Baut den ausgehenden Request für ``job``.

    Fehlerhaftes Header- oder Body-JSON wird vermerkt, der Request trotzdem
    gebaut (außer bei ``strict``). Ein gar nicht baubarer Request wirft.

    Raises:
        ConfigurationError: Unbrauchbare URL oder Methode, oder fehlerhaftes
            JSON im Strict-Modus.
    """
    try:
        method = HttpMethod(str(job.method).upper()).value
    except ValueError:
        raise ConfigurationError(
            f"Unsupported HTTP method '{job.method}'", details={"job_id": job.id},
        ) from None

    try:
        url = validate_url(job.url)
    except ConfigurationError as exc:
        raise ConfigurationError(str(exc), details={"job_id": job.id, "url": job.url}) from exc

    notes: list[str] = []
    headers: dict[str, str] = {"Content-Type": DEFAULT_CONTENT_TYPE}
    if user_agent:
        headers["User-Agent"] = user_agent

    if job.headers_raw is not None:
        msg = "Headers are not a JSON object; sent without job headers"
        if strict:
            raise ConfigurationError(msg, details={"job_id": job.id, "headers": job.headers_raw})
        notes.append(f"Configuration error: {msg}")

    # Job-Header gewinnen, Vergleich ohne Groß-/Kleinschreibung
    for key, value in job.headers.items():
        for existing in [k for k in headers if k.lower() == key.lower()]:
            del headers[existing]
        headers[key] = value

    content: bytes | None = None
    if method != HttpMethod.GET and job.body:
        content_type = next((v for k, v in headers.items() if k.lower() == "content-type"), "")
        if "json" in content_type.lower() and not _is_json(job.body):
            msg = "Body is not valid JSON; sent as literal text"
            if strict:
                raise ConfigurationError(msg, details={"job_id": job.id})
            notes.append(f"Configuration error: {msg}")
        content = job.body.encode("utf-8")

    return PreparedRequest(method=method, url=url, headers=headers, content=content, notes=notes)


class JobExecutor:
    """Führt Jobs gegen ihre HTTP-Endpunkte aus und speichert das Ergebnis.

    Args:
        repository: Job-Repository für Status- und Historien-Schreibzugriffe.
        config: Executor-Einstellungen (Body-Limit, User-Agent, Strict-Modus).
        lease_grace_seconds: Wird zum Job-Timeout addiert und ergibt die Lease.
        clock: Zeitquelle, Standard ist UTC-jetzt.
        transport: Optionaler httpx-Transport (Tests nutzen httpx.MockTransport).
    """

    def __init__(
        self,
        repository: JobRepository,
        *,
        config: ExecutorConfig | None = None,
        lease_grace_seconds: int = 60,
        clock: Clock | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if config is None:
            from cronhub.config import ExecutorConfig

            config = ExecutorConfig()
        self._repo = repository
        self._config = config
        self._lease_grace = timedelta(seconds=lease_grace_seconds)
        self._clock: Clock = clock or _utc_now
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                transport=self._transport,
                follow_redirects=self._config.follow_redirects,
            )
        return self._client

    async def aclose(self) -> None:
        """Schließt den geteilten HTTP-Client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ── Öffentliche API ─────────────────────────────────────────

    async def execute(self, job: Job) -> ExecutionOutcome:
        """Führt ``job`` einmal aus und speichert das Ergebnis."""
        bind_context(job_id=job.id, job_name=job.name)
        try:
            return await self._execute(job)
        finally:
            clear_context()

    # ── Ablauf ──────────────────────────────────────────────────

    async def _execute(self, job: Job) -> ExecutionOutcome:
        started = self._clock()
        await self._repo.update_job(
            job.id,
            status=JobStatus.RUNNING,
            lease_expires_at=started + timedelta(seconds=job.timeout_seconds) + self._lease_grace,
        )
        log.info("job_execution_started", url=job.url, method=str(job.method))

        notes: list[str] = []
        response: httpx.Response | None = None
        error: CronhubError | None = None
        stack_trace: str | None = None

        try:
            prepared = build_request(
                job,
                user_agent=self._config.user_agent,
                strict=self._config.strict_request_config,
            )
            notes.extend(prepared.notes)
            for note in prepared.notes:
                log.warning("job_request_config_error", note=note)
            response = await self._send(prepared, job.timeout_seconds)
            if not response.is_success:
                error = HttpStatusError(
                    f"HTTP {response.status_code} {response.reason_phrase}".strip(),
                    status_code=response.status_code,
                )
        except ConfigurationError as exc:
            error = exc
        except JobTimeoutError as exc:
            error = exc
        except TransportError as exc:
            error = exc
            stack_trace = traceback.format_exc()
        except Exception as exc:
            log.exception("job_execution_unexpected_error")
            error = CronhubError(f"{type(exc).__name__}: {exc}", error_code="UNEXPECTED_ERROR")
            error.error_kind = ErrorKind.GENERIC.value
            stack_trace = traceback.format_exc()

        finished = self._clock()
        execution = self._build_execution(job, started, finished, response, error, notes)
        error_log = None
        if error is not None:
            error_log = ErrorLog(
                job_id=job.id,
                job_name=job.name,
                timestamp=finished,
                error_type=error.error_kind,
                error_message=str(error),
                stack_trace=stack_trace,
                response_status=response.status_code if response is not None else None,
            )

        next_run = self._next_run(job, finished)
        try:
            next_run = await self._persist(job, execution, error_log, next_run, finished)
        except JobNotFoundError:
            log.warning("job_deleted_during_execution")

        if error is None:
            log.info("job_execution_succeeded", status_code=execution.response_status,
                     duration_ms=execution.duration_ms)
        else:
            log.warning("job_execution_failed", error_type=error.error_kind, error=str(error),
                        duration_ms=execution.duration_ms)

        return ExecutionOutcome(job_id=job.id, execution=execution, error_log=error_log, next_run=next_run)

    async def _send(self, prepared: PreparedRequest, timeout_seconds: int) -> httpx.Response:
        """Sendet den Request; die Frist umfasst Verbindung, Senden und Body-Lesen."""
        client = self._get_client()
        try:
            return await asyncio.wait_for(
                client.request(
                    prepared.method,
                    prepared.url,
                    headers=prepared.headers,
                    content=prepared.content,
                    timeout=timeout_seconds,
                ),
                timeout=timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise JobTimeoutError(
                f"Request timed out after {timeout_seconds}s", timeout_seconds=timeout_seconds,
            ) from None
        except httpx.RequestError as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc

    def _build_execution(
        self,
        job: Job,
        started: datetime,
        finished: datetime,
        response: httpx.Response | None,
        error: CronhubError | None,
        notes: list[str],
    ) -> Execution:
        duration_ms = max(0, int((finished - started).total_seconds() * 1000))

        lines: list[str] = []
        if response is not None:
            lines.append(f"Status: {response.status_code}")
        if isinstance(error, JobTimeoutError):
            lines.append(f"Timed out after configured timeout of {job.timeout_seconds}s")
        elif error is not None and not isinstance(error, HttpStatusError):
            lines.append(f"Error: {error}")
        lines.append(f"Duration: {duration_ms}ms")
        lines.extend(notes)

        body: str | None = None
        if response is not None:
            body = response.text[: self._config.response_body_limit]

        return Execution(
            job_id=job.id,
            job_name=job.name,
            start_time=started,
            end_time=finished,
            status=ExecutionStatus.SUCCESS if error is None else ExecutionStatus.FAILED,
            duration_ms=duration_ms,
            logs="\n".join(lines),
            response_status=response.status_code if response is not None else None,
            response_body=body,
        )

    def _next_run(self, job: Job, finished: datetime) -> datetime | None:
        try:
            return compute_next_run(job.schedule, finished)
        except InvalidScheduleError as exc:
            log.error("job_schedule_invalid", schedule=job.schedule, error=str(exc))
            return None

    async def _persist(
        self,
        job: Job,
        execution: Execution,
        error_log: ErrorLog | None,
        next_run: datetime | None,
        finished: datetime,
    ) -> datetime | None:
        await self._repo.append_execution(execution)
        if error_log is not None:
            await self._repo.append_error_log(error_log)

        current = await self._repo.get_job(job.id)
        if current is not None and current.schedule != job.schedule:
            # Zeitplan wurde während des Aufrufs geändert
            next_run = self._next_run(current, finished)
        final = await self._repo.finish_execution(
            job.id,
            status=JobStatus.SUCCESS if error_log is None else JobStatus.FAILED,
            next_run=next_run,
        )
        return final.next_run
