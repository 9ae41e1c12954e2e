"""cronhub · Database Abstraction Layer.

Supports SQLite (default, embedded file) and PostgreSQL (optional, remote).
"""
from cronhub.db.backend import DatabaseBackend
from cronhub.db.factory import create_backend
from cronhub.db.repository import JobRepository
from cronhub.db.sql_repository import SQLJobRepository

__all__ = ["DatabaseBackend", "JobRepository", "SQLJobRepository", "create_backend"]
