"""MyPA · Persistenz für scheduled_jobs (SQLite, async Interface)."""
from mypa.db.backend import DatabaseBackend, Row
from mypa.db.factory import create_backend
from mypa.db.sqlite_backend import SQLiteBackend

__all__ = ["DatabaseBackend", "Row", "SQLiteBackend", "create_backend"]
