"""
cronhub · Central data models.

All Pydantic models used across modules.

Design principles:
  - Immutable (frozen) for append-only records (Execution, ErrorLog)
  - Mutable where the scheduler updates state (Job)
  - Timestamps are timezone-aware UTC datetimes
  - JSON-serializable (for logging and persistence)
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any, Callable

from pydantic import BaseModel, Field, model_validator

# ============================================================================
# Hilfsfunktionen
# ============================================================================


def _utc_now() -> datetime:
    """Aktuelle Zeit in UTC. Einheitlich im gesamten System."""
    return datetime.now(UTC)


def _new_id() -> str:
    """Neue UUID als Hex-String. Für alle IDs verwendet."""
    return uuid.uuid4().hex


# Injizierbare Zeitquelle; Tests übergeben eine Fake-Uhr
Clock = Callable[[], datetime]


# ============================================================================
# Enums
# ============================================================================


class JobStatus(StrEnum):
    """Lebenszyklus-Status eines Jobs.

    PAUSED:  wird nie auf Fälligkeit geprüft
    RUNNING: eine Ausführung läuft
    SUCCESS: letzte Ausführung erfolgreich (auch Ruhezustand eines neuen aktiven Jobs)
    FAILED:  letzte Ausführung fehlgeschlagen
    """

    PAUSED = "paused"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class ExecutionStatus(StrEnum):
    """Status eines einzelnen Ausführungsversuchs."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class HttpMethod(StrEnum):
    """HTTP-Methoden, die ein Job nutzen darf."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"


class ErrorKind(StrEnum):
    """Klassifizierung, gespeichert als ErrorLog.error_type."""

    TIMEOUT = "timeout"
    HTTP_STATUS = "http-status"
    NETWORK = "network"
    CONFIGURATION = "configuration"
    LEASE_EXPIRED = "lease-expired"
    GENERIC = "generic"


# ============================================================================
# Job
# ============================================================================


class Job(BaseModel):
    """Ein geplanter HTTP-Aufruf mit Zeitplan, Einstellungen und Zählern.

    ``headers`` kann als Mapping oder als JSON-Text angegeben werden. Text, der
    kein JSON-Objekt ist, bleibt unverändert in ``headers_raw``, damit der Executor
    seine Konfigurationsfehler-Regel anwendet, statt dass der Job nicht lädt.
    """

    id: str = Field(default_factory=_new_id)
    name: str = Field(min_length=1)
    url: str
    method: HttpMethod = HttpMethod.GET
    schedule: str
    headers: dict[str, str] = Field(default_factory=dict)
    headers_raw: str | None = None
    body: str | None = None
    timeout_seconds: int = Field(default=300, ge=1)
    status: JobStatus = JobStatus.PAUSED
    last_run: datetime | None = None
    next_run: datetime | None = None
    success_count: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=_utc_now)
    lease_expires_at: datetime | None = None
    pause_requested: bool = False

    @model_validator(mode="before")
    @classmethod
    def _coerce_headers(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        headers = data.get("headers")
        if headers is None:
            data = {**data, "headers": {}}
        elif isinstance(headers, str):
            text = headers.strip()
            parsed: Any = None
            if text:
                try:
                    parsed = json.loads(text)
                except json.JSONDecodeError:
                    parsed = None
            if isinstance(parsed, dict):
                data = {**data, "headers": {str(k): str(v) for k, v in parsed.items()}}
            elif not text:
                data = {**data, "headers": {}}
            else:
                data = {**data, "headers": {}, "headers_raw": headers}
        return data

    @property
    def execution_count(self) -> int:
        return self.success_count + self.failure_count

    @property
    def success_rate(self) -> float:
        """Anteil erfolgreicher Ausführungen, 0.0 ohne Ausführung."""
        total = self.execution_count
        if total == 0:
            return 0.0
        return self.success_count / total

    @property
    def is_paused(self) -> bool:
        return self.status == JobStatus.PAUSED

    def is_due(self, now: datetime) -> bool:
        """True, wenn der Job nicht pausiert ist und ``next_run`` spätestens ``now`` ist."""
        if self.is_paused or self.next_run is None:
            return False
        return now >= self.next_run


# ============================================================================
# Ausführungshistorie
# ============================================================================


class Execution(BaseModel, frozen=True):
    """Ein gespeicherter Versuch eines Jobs. Nur anhängend."""

    id: str = Field(default_factory=_new_id)
    job_id: str
    job_name: str = ""
    start_time: datetime
    end_time: datetime | None = None
    status: ExecutionStatus
    duration_ms: int = Field(default=0, ge=0)
    logs: str = ""
    response_status: int | None = None
    response_body: str | None = None


class ErrorLog(BaseModel, frozen=True):
    """Detaildatensatz zu einer fehlgeschlagenen Ausführung."""

    id: str = Field(default_factory=_new_id)
    job_id: str
    job_name: str
    timestamp: datetime = Field(default_factory=_utc_now)
    error_type: str
    error_message: str
    stack_trace: str | None = None
    response_status: int | None = None


class ExecutionOutcome(BaseModel, frozen=True):
    """Ergebnis eines Laufs des Job-Executors."""

    job_id: str
    execution: Execution
    error_log: ErrorLog | None = None
    next_run: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.execution.status == ExecutionStatus.SUCCESS


# ============================================================================
# Statistiken
# ============================================================================


class DashboardStats(BaseModel, frozen=True):
    """Summen für die Übersicht: Jobs und heutige Ausführungsergebnisse."""

    total_jobs: int = 0
    active_jobs: int = 0
    successful_today: int = 0
    failed_today: int = 0

    @property
    def success_rate(self) -> float:
        """Heutige Erfolgsquote in Prozent, eine Nachkommastelle."""
        total = self.successful_today + self.failed_today
        if total == 0:
            return 0.0
        return round(self.successful_today / total * 100, 1)


class TrendPoint(BaseModel, frozen=True):
    """Ausführungsergebnisse eines UTC-Tages."""

    day: date
    successful: int = 0
    failed: int = 0
