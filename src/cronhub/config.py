"""
cronhub · Configuration system.

Loads configuration from:
  1. Defaults (defined here)
  2. ~/.cronhub/config.yaml (overrides defaults)
  3. Environment variables CRONHUB_* (overrides everything)

Creates the ~/.cronhub/ directory structure on first start.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

log = logging.getLogger(__name__)

# ============================================================================
# Konfigurationsmodelle
# ============================================================================


class SchedulerConfig(BaseModel):
    """Einstellungen der Scheduler-Schleife."""

    poll_interval_seconds: float = Field(default=30.0, gt=0, le=3600)
    """Obergrenze zwischen zwei Durchläufen. Durchläufe starten auch früher, wenn
    ein Job eher fällig wird oder sich die Jobs ändern."""

    max_concurrent_executions: int = Field(default=10, ge=0, le=1000)
    """Gleichzeitig erlaubte Ausführungen. 0 = unbegrenzt. Fällige Jobs über
    dem Limit werden auf den nächsten Durchlauf verschoben."""

    lease_grace_seconds: int = Field(default=60, ge=0, le=86400)
    """Wird zum Timeout eines Jobs addiert und ergibt seine Lease. Ein Job,
    der nach Ablauf noch als running gilt, wird als fehlgeschlagen bereinigt."""

    crash_backoff_seconds: float = Field(default=30.0, ge=0, le=3600)
    """Wartezeit, bevor ein Job erneut gestartet wird, nachdem seine Ausführung
    ohne gespeichertes Ergebnis abgestürzt ist (z.B. Repository nicht erreichbar)."""

    startup_pass: bool = True
    """Beim Start sofort einen Durchlauf ausführen."""


class ExecutorConfig(BaseModel):
    """Einstellungen der HTTP-Ausführung."""

    default_timeout_seconds: int = Field(default=300, ge=1, le=86400)
    response_body_limit: int = Field(default=1000, ge=0, le=1_000_000)
    user_agent: str = "cronhub/0.4"
    follow_redirects: bool = True
    strict_request_config: bool = False
    """True = fehlerhaftes Header-/Body-JSON lässt den Versuch vor dem
    Netzwerkaufruf scheitern. False = der Versuch läuft weiter, das Problem
    wird im Ausführungslog vermerkt."""


class RetentionConfig(BaseModel):
    """Wie viel Historie aufbewahrt wird."""

    executions_per_job: int = Field(default=100, ge=1, le=100_000)
    error_logs_limit: int = Field(default=1000, ge=1, le=100_000)


class DatabaseConfig(BaseModel):
    """Datenbank-Einstellungen."""

    backend: Literal["sqlite", "postgresql"] = "sqlite"
    sqlite_path: str = ""
    """Leer = <home>/cronhub.db"""
    pg_host: str = "localhost"
    pg_port: int = Field(default=5432, ge=1, le=65535)
    pg_dbname: str = "cronhub"
    pg_user: str = "cronhub"
    pg_password: str = ""
    pg_pool_min: int = Field(default=2, ge=1, le=50)
    pg_pool_max: int = Field(default=10, ge=1, le=100)


class LoggingConfig(BaseModel):
    """Logging-Einstellungen."""

    level: str = "INFO"
    json_logs: bool = False
    console: bool = True


# ============================================================================
# Root-Konfiguration
# ============================================================================


class CronhubConfig(BaseModel):
    """Vollständige cronhub-Konfiguration.

    Wird einmal beim Start geladen und an die Engine und ihre Partner übergeben.
    """

    version: str = "0.4.0"

    home: Path = Field(default_factory=lambda: Path.home() / ".cronhub")

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def config_file(self) -> Path:
        return self.home / "config.yaml"

    @property
    def db_path(self) -> Path:
        """Pfad der SQLite-Datenbank."""
        if self.database.sqlite_path:
            return Path(self.database.sqlite_path).expanduser()
        return self.home / "cronhub.db"

    @property
    def logs_dir(self) -> Path:
        return self.home / "logs"

    @property
    def jobs_file(self) -> Path:
        """YAML-Datei mit Job-Definitionen, die beim Start importiert werden."""
        return self.home / "jobs.yaml"


# ============================================================================
# Laden
# ============================================================================


def _apply_env_overrides(data: dict[str, Any], environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Wendet CRONHUB_* Umgebungsvariablen an.

    Konvention: CRONHUB_SECTION_KEY → data["section"]["key"]
    Beispiel: CRONHUB_SCHEDULER_POLL_INTERVAL_SECONDS → data["scheduler"]["poll_interval_seconds"]
    """
    environ = os.environ if environ is None else environ
    prefix = "CRONHUB_"
    sections = set(CronhubConfig.model_fields)
    for key, value in environ.items():
        if not key.startswith(prefix):
            continue
        parts = key[len(prefix):].lower().split("_")
        if len(parts) >= 2 and parts[0] in sections and parts[0] != "home":
            node = data.setdefault(parts[0], {})
            if isinstance(node, dict):
                node["_".join(parts[1:])] = value
        else:
            data["_".join(parts)] = value
    return data


def load_config(config_path: Path | None = None) -> CronhubConfig:
    """Lädt die Konfiguration.

    Reihenfolge (spätere überschreiben frühere):
      1. Defaults (in den Pydantic-Modellen)
      2. config.yaml (wenn vorhanden)
      3. CRONHUB_* Umgebungsvariablen

    Args:
        config_path: Expliziter Pfad zur config.yaml. Wenn None: ~/.cronhub/config.yaml

    Returns:
        Vollständig validierte CronhubConfig.
    """
    data: dict[str, Any] = {}

    if config_path is None:
        config_path = Path.home() / ".cronhub" / "config.yaml"

    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            if isinstance(file_data, dict):
                data = file_data
        except yaml.YAMLError as exc:
            log.warning("Fehlerhafte config.yaml wird ignoriert: %s", exc)

    data = _apply_env_overrides(data)

    return CronhubConfig(**data)


def ensure_directory_structure(config: CronhubConfig) -> list[str]:
    """Erstellt die ~/.cronhub/ Verzeichnisstruktur.

    Idempotent; erstellt nur was fehlt.

    Returns:
        Liste der neu erstellten Pfade (für Logging).
    """
    created: list[str] = []
    for d in (config.home, config.logs_dir, config.db_path.parent):
        if not d.exists():
            d.mkdir(parents=True, exist_ok=True)
            created.append(str(d))
    return created
