"""
cronhub · Entry Point.

Usage: cronhub
       cronhub --config /path/to/config.yaml
       cronhub --init-only
       python -m cronhub
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import signal
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from cronhub import __version__

if TYPE_CHECKING:
    from cronhub.config import CronhubConfig


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Kommandozeilen-Argumente parsen."""
    parser = argparse.ArgumentParser(
        prog="cronhub",
        description="cronhub · HTTP job scheduler",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"cronhub v{__version__}",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Pfad zur config.yaml (Default: ~/.cronhub/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log-Level überschreiben",
    )
    parser.add_argument(
        "--init-only",
        action="store_true",
        help="Nur Verzeichnisstruktur und Datenbank erstellen, nicht starten",
    )
    parser.add_argument(
        "--jobs-file",
        type=Path,
        default=None,
        help="YAML-Job-Definitionen für den Import beim Start (Default: ~/.cronhub/jobs.yaml)",
    )
    return parser.parse_args(argv)


async def run(config: CronhubConfig, *, jobs_file: Path | None = None, init_only: bool = False) -> None:
    """Verdrahtet Repository, Executor und Engine und läuft bis zum Signal."""
    from cronhub.cron.engine import CronEngine
    from cronhub.cron.executor import JobExecutor
    from cronhub.cron.jobs import JobDefinitionFile, JobService
    from cronhub.db.factory import create_backend
    from cronhub.db.sql_repository import SQLJobRepository
    from cronhub.utils.logging import get_logger

    log = get_logger("cronhub")

    repository = SQLJobRepository(
        create_backend(config),
        executions_per_job=config.retention.executions_per_job,
        error_logs_limit=config.retention.error_logs_limit,
    )
    await repository.initialize()
    if init_only:
        await repository.close()
        log.info("init_complete", db=str(config.db_path))
        return

    executor = JobExecutor(
        repository,
        config=config.executor,
        lease_grace_seconds=config.scheduler.lease_grace_seconds,
    )
    engine = CronEngine(repository, executor, config=config.scheduler)
    service = JobService(
        repository,
        executor,
        engine=engine,
        default_timeout_seconds=config.executor.default_timeout_seconds,
    )

    imported = await service.import_definitions(JobDefinitionFile(jobs_file or config.jobs_file))
    if imported:
        log.info("jobs_imported", count=len(imported))

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Windows: keine Signal-Handler im Event-Loop
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    try:
        await engine.start()
        await stop_event.wait()
    finally:
        log.info("cronhub_shutting_down", in_flight=len(engine.in_flight))
        await engine.aclose(timeout=config.executor.default_timeout_seconds)
        await executor.aclose()
        await repository.close()


def main(argv: list[str] | None = None) -> None:
    """Haupteinstiegspunkt für cronhub."""
    args = parse_args(argv)

    # 0. .env-Dateien (erst Projekt, dann Benutzer; Benutzer gewinnt)
    load_dotenv(Path(".env"), override=False)
    load_dotenv(Path.home() / ".cronhub" / ".env", override=True)

    # 1. Konfiguration
    from cronhub.config import ensure_directory_structure, load_config

    config = load_config(args.config)

    # 2. Verzeichnisstruktur
    created = ensure_directory_structure(config)

    # 3. Logging
    from cronhub.utils.logging import get_logger, setup_logging

    log_level = args.log_level or config.logging.level
    setup_logging(
        level=log_level,
        log_dir=config.logs_dir,
        json_logs=config.logging.json_logs,
        console=config.logging.console,
    )
    log = get_logger("cronhub")

    log.info(
        "cronhub_starting",
        version=__version__,
        home=str(config.home),
        backend=config.database.backend,
        log_level=log_level,
    )
    for path in created:
        log.info("created_path", path=path)

    try:
        asyncio.run(run(config, jobs_file=args.jobs_file, init_only=args.init_only))
    except KeyboardInterrupt:
        log.info("cronhub_interrupted")


if __name__ == "__main__":
    main()
