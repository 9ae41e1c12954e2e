"""Database Backend Factory."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cronhub.config import CronhubConfig
    from cronhub.db.backend import DatabaseBackend

logger = logging.getLogger("cronhub.db.factory")


def create_backend(config: CronhubConfig) -> DatabaseBackend:
    """Erstellt das passende Database-Backend basierend auf ``config.database.backend``.

    Returns:
        SQLiteBackend- oder PostgreSQLBackend-Instanz.
    """
    db_config = config.database

    if db_config.backend == "sqlite":
        from cronhub.db.sqlite_backend import SQLiteBackend
        backend = SQLiteBackend(config.db_path)
        logger.info("Datenbank-Backend: SQLite (%s)", config.db_path)
        return backend

    if db_config.backend == "postgresql":
        from cronhub.db.postgresql_backend import PostgreSQLBackend
        backend = PostgreSQLBackend(
            host=db_config.pg_host,
            port=db_config.pg_port,
            dbname=db_config.pg_dbname,
            user=db_config.pg_user,
            password=db_config.pg_password,
            pool_min=db_config.pg_pool_min,
            pool_max=db_config.pg_pool_max,
        )
        logger.info(
            "Datenbank-Backend: PostgreSQL (%s:%d/%s)",
            db_config.pg_host, db_config.pg_port, db_config.pg_dbname,
        )
        return backend

    raise ValueError(f"Unknown database backend: {db_config.backend}")
