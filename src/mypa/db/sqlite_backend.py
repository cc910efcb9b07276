"""SQLite-Backend für den Job-Store.

Eine Verbindung pro Backend, geteilt zwischen Event Loop und den
Worker-Threads von ``asyncio.to_thread``. Alle Zugriffe laufen
nacheinander unter einem Lock. Jede Schreiboperation wird sofort committet.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, Sequence, TypeVar

from mypa.db.backend import Row

logger = logging.getLogger("mypa.db.sqlite")

T = TypeVar("T")

IN_MEMORY = ":memory:"
BUSY_TIMEOUT_MS = 5000


class SQLiteBackend:
    """Async-Fassade über ``sqlite3``.

    Die Verbindung wird beim ersten Zugriff geöffnet und nach
    :meth:`close` bei Bedarf neu aufgebaut.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def backend_type(self) -> str:
        return "sqlite"

    @property
    def conn(self) -> sqlite3.Connection:
        with self._lock:
            return self._connect()

    def open(self) -> None:
        """Öffnet die Verbindung sofort statt beim ersten Statement."""
        with self._lock:
            self._connect()

    def _connect(self) -> sqlite3.Connection:
        """Öffnet die Verbindung. Nur unter ``self._lock`` aufrufen."""
        if self._conn is not None:
            return self._conn

        if self._db_path != IN_MEMORY:
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        # WAL: Job-Verwaltung kann lesen, während der Tick schreibt
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
        self._conn = conn
        logger.info("SQLite geöffnet: %s", self._db_path)
        return conn

    def _locked(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        with self._lock:
            return fn(self._connect())

    async def _run(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        return await asyncio.to_thread(self._locked, fn)

    # ── Statements ───────────────────────────────────────────────

    async def execute(self, query: str, params: Sequence[Any] = ()) -> int:
        """Führt ein Statement aus, committet und liefert ``rowcount``."""

        def _do(conn: sqlite3.Connection) -> int:
            with conn:
                return conn.execute(query, params).rowcount

        return await self._run(_do)

    async def executescript(self, script: str) -> None:
        await self._run(lambda conn: conn.executescript(script))

    async def fetchone(self, query: str, params: Sequence[Any] = ()) -> Row | None:
        def _do(conn: sqlite3.Connection) -> Row | None:
            row = conn.execute(query, params).fetchone()
            return dict(row) if row is not None else None

        return await self._run(_do)

    async def fetchall(self, query: str, params: Sequence[Any] = ()) -> list[Row]:
        def _do(conn: sqlite3.Connection) -> list[Row]:
            return [dict(r) for r in conn.execute(query, params).fetchall()]

        return await self._run(_do)

    # ── Lebenszyklus ─────────────────────────────────────────────

    def _close_sync(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
        logger.info("SQLite geschlossen: %s", self._db_path)

    async def close(self) -> None:
        await asyncio.to_thread(self._close_sync)
