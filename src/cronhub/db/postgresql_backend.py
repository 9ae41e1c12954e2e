"""PostgreSQL Database Backend mit Connection Pooling.

Nutzt psycopg v3 mit einem asyncio Connection Pool. Installation ueber das
Extra ``postgresql``: ``pip install 'cronhub[postgresql]'``.

Unterschiede zu SQLite:
  - %s Platzhalter statt ?
  - Skripte werden an ';' getrennt und einzeln ausgefuehrt
"""
from __future__ import annotations

import logging
from typing import Any, Sequence

logger = logging.getLogger("cronhub.db.postgresql")

_INSTALL_HINT = (
    "psycopg[binary] and psycopg-pool are not installed. "
    "Install with: pip install 'cronhub[postgresql]'"
)


class PostgreSQLBackend:
    """PostgreSQL-Backend mit psycopg v3 Connection Pool."""

    def __init__(
        self,
        *,
        host: str = "localhost",
        port: int = 5432,
        dbname: str = "cronhub",
        user: str = "cronhub",
        password: str = "",
        pool_min: int = 2,
        pool_max: int = 10,
    ) -> None:
        try:
            from psycopg.conninfo import make_conninfo
        except ImportError:
            raise ImportError(_INSTALL_HINT) from None
        # make_conninfo maskiert Sonderzeichen in den Werten
        self._conninfo = make_conninfo(host=host, port=port, dbname=dbname, user=user, password=password)
        self._pool_min = pool_min
        self._pool_max = pool_max
        self._pool: Any | None = None

    async def _ensure_pool(self) -> Any:
        if self._pool is None:
            try:
                from psycopg_pool import AsyncConnectionPool
            except ImportError:
                raise ImportError(_INSTALL_HINT) from None
            self._pool = AsyncConnectionPool(
                conninfo=self._conninfo,
                min_size=self._pool_min,
                max_size=self._pool_max,
                open=False,
            )
            await self._pool.open()
            logger.info("PostgreSQL Connection Pool gestartet (%d-%d)", self._pool_min, self._pool_max)
        return self._pool

    async def execute(self, query: str, params: Sequence[Any] = ()) -> int:
        pool = await self._ensure_pool()
        async with pool.connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.rowcount

    async def executescript(self, script: str) -> None:
        pool = await self._ensure_pool()
        async with pool.connection() as conn:
            for statement in script.split(";"):
                stmt = statement.strip()
                if stmt:
                    await conn.execute(stmt)
            await conn.commit()

    async def transaction(self, statements: Sequence[tuple[str, Sequence[Any]]]) -> list[int]:
        pool = await self._ensure_pool()
        counts: list[int] = []
        async with pool.connection() as conn:
            async with conn.transaction():
                for query, params in statements:
                    cursor = await conn.execute(query, params)
                    counts.append(cursor.rowcount)
        return counts

    async def fetchone(self, query: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        pool = await self._ensure_pool()
        async with pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                row = await cur.fetchone()
                if row is None:
                    return None
                columns = [desc[0] for desc in cur.description or []]
                return dict(zip(columns, row))

    async def fetchall(self, query: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        pool = await self._ensure_pool()
        async with pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                rows = await cur.fetchall()
                columns = [desc[0] for desc in cur.description or []]
                return [dict(zip(columns, row)) for row in rows]

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("PostgreSQL Connection Pool geschlossen")

    @property
    def placeholder(self) -> str:
        return "%s"

    @property
    def backend_type(self) -> str:
        return "postgresql"
