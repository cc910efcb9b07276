"""Tests für ScheduledJobStore und DueJobSelector.

Der Store läuft gegen eine echte SQLite-Datei (tmp_path), der Selector
gegen einen gemockten JobStore.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest

from mypa.core.errors import CronParseError, JobStoreError
from mypa.db.sqlite_backend import SQLiteBackend
from mypa.models import JobRunUpdate, RunResult, ScheduledJob
from mypa.scheduler.jobs import (
    DueJobSelector,
    JobStore,
    ScheduledJobStore,
    from_db_timestamp,
    to_db_timestamp,
)

if TYPE_CHECKING:
    from pathlib import Path

NOW = datetime(2026, 3, 11, 10, 0, tzinfo=UTC)


def _job(**kwargs: object) -> ScheduledJob:
    defaults: dict[str, object] = {
        "name": "Standup",
        "action": "reminder",
        "schedule": "0 9 * * *",
        "user_id": "u-1",
    }
    defaults.update(kwargs)
    return ScheduledJob(**defaults)  # type: ignore[arg-type]


# ============================================================================
# Zeitstempel
# ============================================================================


class TestTimestamps:
    def test_none(self) -> None:
        assert to_db_timestamp(None) is None
        assert from_db_timestamp(None) is None

    def test_converted_to_utc(self) -> None:
        berlin = datetime(2026, 3, 11, 11, 0, tzinfo=ZoneInfo("Europe/Berlin"))
        assert to_db_timestamp(berlin) == "2026-03-11T10:00:00.000000+00:00"

    def test_naive_treated_as_utc(self) -> None:
        assert to_db_timestamp(datetime(2026, 3, 11, 10, 0)) == "2026-03-11T10:00:00.000000+00:00"

    def test_parse(self) -> None:
        assert from_db_timestamp("2026-03-11T10:00:00.000000+00:00") == NOW


# ============================================================================
# ScheduledJobStore
# ============================================================================


class TestScheduledJobStore:
    def test_satisfies_protocol(self, job_store: ScheduledJobStore) -> None:
        assert isinstance(job_store, JobStore)

    @pytest.mark.asyncio
    async def test_add_computes_first_run(self, job_store: ScheduledJobStore) -> None:
        job = await job_store.add_job(_job(), now=NOW)
        assert job.next_run_at == datetime(2026, 3, 12, 9, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_add_keeps_explicit_next_run(self, job_store: ScheduledJobStore) -> None:
        explicit = NOW - timedelta(minutes=5)
        job = await job_store.add_job(_job(next_run_at=explicit), now=NOW)
        assert job.next_run_at == explicit

    @pytest.mark.asyncio
    async def test_add_rejects_invalid_schedule(self, job_store: ScheduledJobStore) -> None:
        with pytest.raises(CronParseError):
            await job_store.add_job(_job(schedule="0 9"))
        assert await job_store.list_jobs() == []

    @pytest.mark.asyncio
    async def test_get_round_trip(self, job_store: ScheduledJobStore) -> None:
        created = await job_store.add_job(
            _job(payload={"message": "Kaffee ☕", "n": 3}, scope="team-7", enabled=False),
            now=NOW,
        )
        loaded = await job_store.get_job(created.id)
        assert loaded is not None
        assert loaded.payload == {"message": "Kaffee ☕", "n": 3}
        assert loaded.scope == "team-7"
        assert loaded.enabled is False
        assert loaded.next_run_at == created.next_run_at
        assert loaded.last_run_result is None

    @pytest.mark.asyncio
    async def test_get_missing(self, job_store: ScheduledJobStore) -> None:
        assert await job_store.get_job("nope") is None

    @pytest.mark.asyncio
    async def test_list_by_user(self, job_store: ScheduledJobStore) -> None:
        await job_store.add_job(_job(user_id="alice"), now=NOW)
        await job_store.add_job(_job(user_id="bob"), now=NOW)
        assert len(await job_store.list_jobs()) == 2
        assert [j.user_id for j in await job_store.list_jobs("alice")] == ["alice"]

    @pytest.mark.asyncio
    async def test_query_due_filters(self, job_store: ScheduledJobStore) -> None:
        past = await job_store.add_job(_job(next_run_at=NOW - timedelta(minutes=1)))
        exact = await job_store.add_job(_job(next_run_at=NOW))
        await job_store.add_job(_job(next_run_at=NOW + timedelta(minutes=1)))
        await job_store.add_job(_job(next_run_at=NOW - timedelta(hours=1), enabled=False))

        due = await job_store.query_due(NOW)
        assert [j.id for j in due] == [past.id, exact.id]

    @pytest.mark.asyncio
    async def test_query_due_ignores_null_next_run(self, job_store: ScheduledJobStore) -> None:
        job = await job_store.add_job(_job(next_run_at=NOW - timedelta(minutes=1)))
        await job_store.backend.execute("UPDATE scheduled_jobs SET next_run_at = NULL WHERE id = ?", (job.id,))
        assert await job_store.query_due(NOW) == []

    @pytest.mark.asyncio
    async def test_query_due_compares_in_utc(self, job_store: ScheduledJobStore) -> None:
        berlin = ZoneInfo("Europe/Berlin")
        await job_store.add_job(_job(next_run_at=datetime(2026, 3, 11, 10, 30, tzinfo=berlin)))
        # 10:30 Berlin = 09:30 UTC
        assert len(await job_store.query_due(datetime(2026, 3, 11, 9, 45, tzinfo=UTC))) == 1

    @pytest.mark.asyncio
    async def test_query_due_skips_invalid_rows(self, job_store: ScheduledJobStore) -> None:
        good = await job_store.add_job(_job(next_run_at=NOW - timedelta(minutes=1)))
        await job_store.backend.execute(
            "INSERT INTO scheduled_jobs (id, name, schedule, action, run_count, next_run_at, created_at, updated_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            ("bad", "Kaputt", "* * * * *", "reminder", -1, to_db_timestamp(NOW), to_db_timestamp(NOW),
             to_db_timestamp(NOW)),
        )
        assert [j.id for j in await job_store.query_due(NOW)] == [good.id]

    @pytest.mark.asyncio
    async def test_query_due_without_schema_raises(self, tmp_path: Path) -> None:
        backend = SQLiteBackend(tmp_path / "empty.db")
        store = ScheduledJobStore(backend)
        with pytest.raises(JobStoreError) as exc_info:
            await store.query_due(NOW)
        assert exc_info.value.error_code == "STORE_QUERY_FAILED"
        await backend.close()

    @pytest.mark.asyncio
    async def test_update_run(self, job_store: ScheduledJobStore) -> None:
        job = await job_store.add_job(_job(next_run_at=NOW))
        update = JobRunUpdate(
            last_run_at=NOW,
            last_run_result=RunResult.ERROR,
            last_run_error="boom",
            next_run_at=NOW + timedelta(days=1),
            run_count=1,
            updated_at=NOW,
        )
        await job_store.update_run(job.id, update)

        loaded = await job_store.get_job(job.id)
        assert loaded is not None
        assert loaded.last_run_at == NOW
        assert loaded.last_run_result == RunResult.ERROR
        assert loaded.last_run_error == "boom"
        assert loaded.next_run_at == NOW + timedelta(days=1)
        assert loaded.run_count == 1
        # Nicht-Ergebnisfelder bleiben unverändert
        assert loaded.schedule == job.schedule
        assert loaded.enabled is True

    @pytest.mark.asyncio
    async def test_update_run_vanished_job(self, job_store: ScheduledJobStore) -> None:
        update = JobRunUpdate(
            last_run_at=NOW,
            last_run_result=RunResult.SUCCESS,
            next_run_at=NOW + timedelta(hours=1),
            run_count=1,
            updated_at=NOW,
        )
        await job_store.update_run("gone", update)

    @pytest.mark.asyncio
    async def test_update_schedule(self, job_store: ScheduledJobStore) -> None:
        job = await job_store.add_job(_job(), now=NOW)
        assert await job_store.update_schedule(job.id, "30 10 * * *", now=NOW)
        loaded = await job_store.get_job(job.id)
        assert loaded is not None
        assert loaded.schedule == "30 10 * * *"
        assert loaded.next_run_at == datetime(2026, 3, 11, 10, 30, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_update_schedule_rejects_invalid(self, job_store: ScheduledJobStore) -> None:
        job = await job_store.add_job(_job(), now=NOW)
        with pytest.raises(CronParseError):
            await job_store.update_schedule(job.id, "bogus")

    @pytest.mark.asyncio
    async def test_set_enabled_and_delete(self, job_store: ScheduledJobStore) -> None:
        job = await job_store.add_job(_job(next_run_at=NOW))
        assert await job_store.set_enabled(job.id, False)
        assert await job_store.query_due(NOW) == []
        assert await job_store.delete_job(job.id)
        assert not await job_store.delete_job(job.id)
        assert not await job_store.set_enabled(job.id, True)


# ============================================================================
# DueJobSelector
# ============================================================================


class TestDueJobSelector:
    @pytest.mark.asyncio
    async def test_filters_what_store_returns(self) -> None:
        due = _job(next_run_at=NOW)
        store = AsyncMock()
        store.query_due.return_value = [
            due,
            due,
            _job(next_run_at=NOW - timedelta(hours=1), enabled=False),
            _job(next_run_at=NOW + timedelta(seconds=1)),
            _job(next_run_at=None),
        ]
        assert await DueJobSelector(store).select(NOW) == [due]
        store.query_due.assert_awaited_once_with(NOW)

    @pytest.mark.asyncio
    async def test_mixed_naive_and_aware(self) -> None:
        naive = _job(next_run_at=datetime(2026, 3, 11, 9, 59))
        store = AsyncMock()
        store.query_due.return_value = [naive]
        assert await DueJobSelector(store).select(NOW) == [naive]

    @pytest.mark.asyncio
    async def test_empty(self) -> None:
        store = AsyncMock()
        store.query_due.return_value = []
        assert await DueJobSelector(store).select(NOW) == []
