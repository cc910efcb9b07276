"""Port für die Persistenz der scheduled_jobs-Tabelle."""
from __future__ import annotations

from typing import Any, Protocol, Sequence, runtime_checkable

Row = dict[str, Any]


@runtime_checkable
class DatabaseBackend(Protocol):
    """Was ScheduledJobStore von einer Datenbank braucht.

    ``execute`` liefert die Zahl betroffener Zeilen; der Store erkennt
    daran zwischenzeitlich gelöschte Jobs.
    """

    async def execute(self, query: str, params: Sequence[Any] = ()) -> int: ...

    async def executescript(self, script: str) -> None: ...

    async def fetchone(self, query: str, params: Sequence[Any] = ()) -> Row | None: ...

    async def fetchall(self, query: str, params: Sequence[Any] = ()) -> list[Row]: ...

    async def close(self) -> None: ...

    @property
    def backend_type(self) -> str: ...
