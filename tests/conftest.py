"""
cronhub · Gemeinsame Test-Fixtures.

Alle Tests nutzen ein temporäres Verzeichnis statt ~/.cronhub/ und eine Fake-Uhr
statt der echten Uhr, damit sie isoliert und reproduzierbar sind.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import pytest

from cronhub.config import CronhubConfig, ensure_directory_structure
from cronhub.db.sql_repository import SCHEMA, SQLJobRepository
from cronhub.db.sqlite_backend import SQLiteBackend
from cronhub.models import Job, JobStatus

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


class FakeClock:
    """Aufrufbare Uhr, die sich nur auf Anweisung bewegt."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def tmp_cronhub_home(tmp_path: Path) -> Path:
    """Temporäres cronhub-Home-Verzeichnis."""
    return tmp_path / ".cronhub"


@pytest.fixture
def config(tmp_cronhub_home: Path) -> CronhubConfig:
    """CronhubConfig mit temporärem Home-Verzeichnis."""
    return CronhubConfig(home=tmp_cronhub_home)


@pytest.fixture
def initialized_config(config: CronhubConfig) -> CronhubConfig:
    """CronhubConfig mit angelegter Verzeichnisstruktur."""
    ensure_directory_structure(config)
    return config


@pytest.fixture
def clock() -> FakeClock:
    """Montag 2024-01-15 10:00:30 UTC."""
    return FakeClock(datetime(2024, 1, 15, 10, 0, 30, tzinfo=UTC))


@pytest.fixture
def backend(tmp_path: Path) -> Iterator[SQLiteBackend]:
    db = SQLiteBackend(tmp_path / "cronhub.db")
    yield db
    db.conn.close()


@pytest.fixture
def repository(backend: SQLiteBackend) -> SQLJobRepository:
    """Repository auf einer frischen SQLite-Datei mit angelegtem Schema."""
    backend.conn.executescript(SCHEMA)
    return SQLJobRepository(backend, executions_per_job=5, error_logs_limit=10)


def make_job(**overrides: Any) -> Job:
    """Ein aktiver Job, der zum Start der Fake-Uhr fällig ist."""
    data: dict[str, Any] = {
        "name": "health-check",
        "url": "https://service.test/health",
        "schedule": "*/15 * * * *",
        "timeout_seconds": 5,
        "status": JobStatus.SUCCESS,
        "next_run": datetime(2024, 1, 15, 10, 0, tzinfo=UTC),
        "created_at": datetime(2024, 1, 1, tzinfo=UTC),
    }
    data.update(overrides)
    return Job(**data)


@pytest.fixture
def job_factory():
    """Factory für Jobs; Keyword-Argumente überschreiben die Defaults."""
    return make_job
