"""Scheduled-Job-Verwaltung: Laden, Speichern, Fälligkeit.

Persistiert ScheduledJobs in der Tabelle ``scheduled_jobs`` und liefert
dem Executor die fälligen Jobs. Zeitstempel werden als UTC-ISO-Strings
mit Mikrosekunden gespeichert, damit der SQL-Vergleich
``next_run_at <= ?`` lexikografisch korrekt ist.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import ValidationError

from mypa.core.errors import JobStoreError
from mypa.models import JobRunUpdate, ScheduledJob
from mypa.scheduler.cron import compute_next_run, validate_cron_expression
from mypa.utils.logging import get_logger

if TYPE_CHECKING:
    from mypa.db.backend import DatabaseBackend

log = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS scheduled_jobs (
    id              TEXT PRIMARY KEY,
    user_id         TEXT,
    name            TEXT NOT NULL,
    schedule        TEXT NOT NULL,
    action          TEXT NOT NULL,
    scope           TEXT NOT NULL DEFAULT 'personal',
    payload         TEXT NOT NULL DEFAULT '{}',
    enabled         INTEGER NOT NULL DEFAULT 1,
    last_run_at     TEXT,
    last_run_result TEXT,
    last_run_error  TEXT,
    next_run_at     TEXT,
    run_count       INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS scheduled_jobs_user_idx ON scheduled_jobs(user_id);
CREATE INDEX IF NOT EXISTS scheduled_jobs_enabled_idx ON scheduled_jobs(enabled);
CREATE INDEX IF NOT EXISTS scheduled_jobs_next_run_idx ON scheduled_jobs(next_run_at);
"""

_COLUMNS = (
    "id", "user_id", "name", "schedule", "action", "scope", "payload", "enabled",
    "last_run_at", "last_run_result", "last_run_error", "next_run_at",
    "run_count", "created_at", "updated_at",
)


def to_db_timestamp(value: datetime | None) -> str | None:
    """Naive Zeitpunkte gelten als UTC."""
    if value is None:
        return None
    return _as_utc(value).isoformat(timespec="microseconds")


def from_db_timestamp(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


@runtime_checkable
class JobStore(Protocol):
    """Port: was die Engine vom Job-Store braucht."""

    async def query_due(self, now: datetime) -> list[ScheduledJob]: ...

    async def update_run(self, job_id: str, update: JobRunUpdate) -> None: ...


class ScheduledJobStore:
    """SQLite-Persistenz für ScheduledJobs.

    Die Engine nutzt nur :meth:`query_due` und :meth:`update_run`. Die
    übrigen Methoden gehören der Job-Verwaltung (API, CLI, Tests).

    Attributes:
        backend: Async Datenbank-Backend.
    """

    def __init__(self, backend: DatabaseBackend) -> None:
        self.backend = backend

    async def ensure_schema(self) -> None:
        """Legt Tabelle und Indizes an (idempotent)."""
        await self.backend.executescript(_SCHEMA)

    # ── Engine-Schnittstelle ─────────────────────────────────────

    async def query_due(self, now: datetime) -> list[ScheduledJob]:
        """Alle aktivierten Jobs mit ``next_run_at <= now``.

        Jobs ohne ``next_run_at`` sind nie fällig. Nicht ladbare
        Datensätze werden geloggt und übersprungen.
        """
        try:
            rows = await self.backend.fetchall(
                "SELECT * FROM scheduled_jobs"
                " WHERE enabled = 1 AND next_run_at IS NOT NULL AND next_run_at <= ?"
                " ORDER BY next_run_at",
                (to_db_timestamp(now),),
            )
        except sqlite3.Error as exc:
            msg = f"Fällige Jobs konnten nicht gelesen werden: {exc}"
            raise JobStoreError(msg, error_code="STORE_QUERY_FAILED") from exc

        jobs: list[ScheduledJob] = []
        for row in rows:
            try:
                jobs.append(self._row_to_job(row))
            except (ValidationError, ValueError) as exc:
                log.warning("invalid_job_row_skipped", job_id=row.get("id"), error=str(exc))
        return jobs

    async def update_run(self, job_id: str, update: JobRunUpdate) -> None:
        """Schreibt die Ergebnisfelder eines Ausführungsversuchs zurück."""
        try:
            affected = await self.backend.execute(
                "UPDATE scheduled_jobs SET last_run_at = ?, last_run_result = ?,"
                " last_run_error = ?, next_run_at = ?, run_count = ?, updated_at = ?"
                " WHERE id = ?",
                (
                    to_db_timestamp(update.last_run_at),
                    str(update.last_run_result),
                    update.last_run_error,
                    to_db_timestamp(update.next_run_at),
                    update.run_count,
                    to_db_timestamp(update.updated_at),
                    job_id,
                ),
            )
        except sqlite3.Error as exc:
            msg = f"Job '{job_id}' konnte nicht aktualisiert werden: {exc}"
            raise JobStoreError(msg, error_code="STORE_UPDATE_FAILED", details={"job_id": job_id}) from exc

        if affected == 0:
            # Zwischenzeitlich extern gelöscht
            log.warning("job_vanished_before_update", job_id=job_id)

    # ── Job-Verwaltung ───────────────────────────────────────────

    async def add_job(self, job: ScheduledJob, *, now: datetime | None = None) -> ScheduledJob:
        """Speichert einen neuen Job.

        Ohne ``next_run_at`` wird der erste Lauf aus dem Schedule berechnet.

        Raises:
            CronParseError: Bei ungültigem Schedule.
        """
        validate_cron_expression(job.schedule)
        if job.next_run_at is None:
            job = job.model_copy(update={"next_run_at": compute_next_run(job.schedule, now)})

        values = self._job_to_row(job)
        placeholders = ", ".join("?" for _ in _COLUMNS)
        await self.backend.execute(
            f"INSERT INTO scheduled_jobs ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
            tuple(values[c] for c in _COLUMNS),
        )
        log.info("scheduled_job_created", job_id=job.id, action=job.action, schedule=job.schedule)
        return job

    async def get_job(self, job_id: str) -> ScheduledJob | None:
        row = await self.backend.fetchone("SELECT * FROM scheduled_jobs WHERE id = ?", (job_id,))
        return self._row_to_job(row) if row is not None else None

    async def list_jobs(self, user_id: str | None = None) -> list[ScheduledJob]:
        if user_id is None:
            rows = await self.backend.fetchall("SELECT * FROM scheduled_jobs ORDER BY created_at")
        else:
            rows = await self.backend.fetchall(
                "SELECT * FROM scheduled_jobs WHERE user_id = ? ORDER BY created_at", (user_id,),
            )
        return [self._row_to_job(r) for r in rows]

    async def update_schedule(
        self,
        job_id: str,
        schedule: str,
        *,
        now: datetime | None = None,
    ) -> bool:
        """Ändert den Schedule und berechnet ``next_run_at`` neu."""
        validate_cron_expression(schedule)
        now = now or datetime.now(UTC)
        affected = await self.backend.execute(
            "UPDATE scheduled_jobs SET schedule = ?, next_run_at = ?, updated_at = ? WHERE id = ?",
            (schedule, to_db_timestamp(compute_next_run(schedule, now)), to_db_timestamp(now), job_id),
        )
        return affected > 0

    async def set_enabled(self, job_id: str, enabled: bool) -> bool:
        """Aktiviert/deaktiviert einen Job. Der Schedule bleibt erhalten."""
        affected = await self.backend.execute(
            "UPDATE scheduled_jobs SET enabled = ?, updated_at = ? WHERE id = ?",
            (int(enabled), to_db_timestamp(datetime.now(UTC)), job_id),
        )
        return affected > 0

    async def delete_job(self, job_id: str) -> bool:
        affected = await self.backend.execute("DELETE FROM scheduled_jobs WHERE id = ?", (job_id,))
        if affected:
            log.info("scheduled_job_deleted", job_id=job_id)
        return affected > 0

    # ── Mapping ──────────────────────────────────────────────────

    @staticmethod
    def _row_to_job(row: dict[str, Any]) -> ScheduledJob:
        data = dict(row)
        data["payload"] = json.loads(data.get("payload") or "{}")
        data["enabled"] = bool(data.get("enabled"))
        for key in ("next_run_at", "last_run_at", "created_at", "updated_at"):
            data[key] = from_db_timestamp(data.get(key))
        return ScheduledJob(**data)

    @staticmethod
    def _job_to_row(job: ScheduledJob) -> dict[str, Any]:
        return {
            "id": job.id,
            "user_id": job.user_id,
            "name": job.name,
            "schedule": job.schedule,
            "action": job.action,
            "scope": job.scope,
            "payload": json.dumps(job.payload, ensure_ascii=False),
            "enabled": int(job.enabled),
            "last_run_at": to_db_timestamp(job.last_run_at),
            "last_run_result": str(job.last_run_result) if job.last_run_result else None,
            "last_run_error": job.last_run_error,
            "next_run_at": to_db_timestamp(job.next_run_at),
            "run_count": job.run_count,
            "created_at": to_db_timestamp(job.created_at),
            "updated_at": to_db_timestamp(job.updated_at),
        }


class DueJobSelector:
    """Liefert die zum Zeitpunkt ``now`` fälligen Jobs.

    Keine Sortiergarantie; der Executor arbeitet sie in Rückgabe-Reihenfolge ab.
    """

    def __init__(self, store: JobStore) -> None:
        self._store = store

    async def select(self, now: datetime) -> list[ScheduledJob]:
        due: list[ScheduledJob] = []
        seen: set[str] = set()
        cutoff = _as_utc(now)
        for job in await self._store.query_due(now):
            # Ein Job höchstens einmal pro Tick
            if job.id in seen:
                continue
            if not job.enabled or job.next_run_at is None or _as_utc(job.next_run_at) > cutoff:
                continue
            seen.add(job.id)
            due.append(job)
        return due


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
