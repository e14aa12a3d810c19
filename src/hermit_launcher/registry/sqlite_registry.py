"""SQLite-backed instance registry.

Alternative to the newline file for hosts where several sessions start and
stop at once: every mutation runs inside a ``BEGIN IMMEDIATE`` transaction,
so SQLite's own write lock serialises concurrent sessions.
"""

import logging
import os
import time

import aiosqlite

logger = logging.getLogger(__name__)

DB_FILENAME = "instances.db"


class SqliteInstanceRegistry:
    """Instance registry stored in ``<cache_dir>/instances.db``.

    Connections are short-lived (one per operation): sessions are separate
    processes and hold the database only for the duration of a mutation.
    DELETE journal mode keeps the directory free of WAL side files.
    """

    def __init__(self, cache_dir: str, busy_timeout_ms: int = 20_000) -> None:
        self.cache_dir = cache_dir
        self.db_path = os.path.join(cache_dir, DB_FILENAME)
        self._busy_timeout_ms = busy_timeout_ms

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        os.makedirs(self.cache_dir, exist_ok=True)
        # isolation_level=None: transactions are opened explicitly below.
        conn = await aiosqlite.connect(
            self.db_path,
            timeout=self._busy_timeout_ms / 1000.0,
            isolation_level=None,
        )
        for pragma in (
            "PRAGMA journal_mode=DELETE",
            f"PRAGMA busy_timeout={self._busy_timeout_ms}",
        ):
            try:
                await conn.execute(pragma)
            except Exception as exc:  # noqa: BLE001
                logger.warning("SQLite pragma failed (%s): %s", pragma, exc)
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS instances (
                instance_id   TEXT PRIMARY KEY,
                registered_at REAL NOT NULL
            )
            """
        )
        return conn

    # ------------------------------------------------------------------
    # InstanceRegistry protocol
    # ------------------------------------------------------------------

    async def register(self, instance_id: str) -> None:
        conn = await self._connect()
        try:
            await conn.execute("BEGIN IMMEDIATE")
            await conn.execute(
                "INSERT OR IGNORE INTO instances (instance_id, registered_at) VALUES (?, ?)",
                (instance_id, time.time()),
            )
            await conn.execute("COMMIT")
        finally:
            await conn.close()

    async def unregister(self, instance_id: str) -> bool:
        if not os.path.exists(self.db_path):
            return True
        conn = await self._connect()
        try:
            await conn.execute("BEGIN IMMEDIATE")
            await conn.execute("DELETE FROM instances WHERE instance_id = ?", (instance_id,))
            async with conn.execute("SELECT COUNT(*) FROM instances") as cur:
                row = await cur.fetchone()
            await conn.execute("COMMIT")
        finally:
            await conn.close()
        remaining = row[0] if row else 0
        return remaining == 0

    async def list_instances(self) -> list[str]:
        if not os.path.exists(self.db_path):
            return []
        conn = await self._connect()
        try:
            async with conn.execute("SELECT instance_id FROM instances ORDER BY registered_at ASC, rowid ASC") as cur:
                rows = await cur.fetchall()
        finally:
            await conn.close()
        return [r[0] for r in rows]

    async def clear(self) -> None:
        if os.path.exists(self.db_path):
            os.unlink(self.db_path)
