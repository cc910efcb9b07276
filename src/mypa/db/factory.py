"""Backend-Erzeugung aus der Konfiguration."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mypa.db.sqlite_backend import SQLiteBackend

if TYPE_CHECKING:
    from mypa.config import MyPAConfig

logger = logging.getLogger("mypa.db.factory")


def create_backend(config: MyPAConfig) -> SQLiteBackend:
    """SQLite-Datei unter ``config.db_path`` (Verzeichnis wird angelegt)."""
    logger.info("Job-Store: SQLite (%s)", config.db_path)
    backend = SQLiteBackend(config.db_path)
    backend.open()
    return backend
