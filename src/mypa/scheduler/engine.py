"""Scheduler-Engine: Tick-Treiber für persistierte ScheduledJobs.

Nutzt APScheduler 3.x (AsyncIOScheduler) als Timer. Alle
``tick_interval_seconds`` (Default 60) läuft ein Scan, der die fälligen
Jobs aus dem Store liest und sie über den JobExecutor ausführt. Ein
erster Scan läuft sofort beim Start (Catch-up nach Downtime).

Überlappende Ticks werden übersprungen: Läuft der vorige Scan noch,
protokolliert der neue ``tick_skipped`` und kehrt zurück, ohne
``run_count`` oder ``last_run_at`` eines Jobs zu berühren.

Der Timer-Callback startet den Scan als eigenen, von der Engine gehaltenen
Task und kehrt sofort zurück. APScheduler sieht damit nie einen laufenden
Tick: jeder überlappende Timer-Tick erreicht den Guard in
:meth:`SchedulerEngine.tick`, und ``stop()`` (Executor-Shutdown) kann
keinen laufenden Scan abbrechen.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from mypa.config import SchedulerConfig
from mypa.core.errors import MyPAError
from mypa.scheduler.cron import compute_next_run as _compute_next_run
from mypa.scheduler.executor import JobExecutor
from mypa.utils.logging import get_logger, tick_context

if TYPE_CHECKING:
    from mypa.config import MyPAConfig
    from mypa.models import JobRunUpdate, ScheduledJob
    from mypa.scheduler.actions import ActionRegistry
    from mypa.scheduler.jobs import JobStore

log = get_logger(__name__)

# Mode Gate: entscheidet, ob diese Instanz überhaupt einen Scheduler betreibt
ModeGate = Callable[[], bool]

TICK_JOB_ID = "mypa-scheduler-tick"


class SchedulerEngine:
    """Besitzt den Timer und den Start/Stop-Lebenszyklus.

    Usage:
        engine = SchedulerEngine.from_config(config, store)
        await engine.start()      # No-Op auf Team-Instanzen
        ...
        await engine.stop()

    Attributes:
        executor: JobExecutor für Scans und manuelle Läufe.
    """

    def __init__(
        self,
        store: JobStore,
        registry: ActionRegistry | None = None,
        *,
        mode_gate: ModeGate | None = None,
        config: SchedulerConfig | None = None,
        timezone: str = "UTC",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config or SchedulerConfig()
        self.executor = JobExecutor(
            store,
            registry,
            max_search_minutes=self._config.max_search_minutes,
        )
        self._mode_gate = mode_gate or (lambda: True)
        self._timezone = timezone
        self._tz = ZoneInfo(timezone)
        self._clock = clock or (lambda: datetime.now(self._tz))
        self._scheduler: AsyncIOScheduler | None = None
        self._tick_running = False
        self._inflight: set[asyncio.Task[None]] = set()

        self._total_ticks = 0
        self._skipped_ticks = 0
        self._failed_ticks = 0

    @classmethod
    def from_config(
        cls,
        config: MyPAConfig,
        store: JobStore,
        registry: ActionRegistry | None = None,
    ) -> SchedulerEngine:
        return cls(
            store,
            registry,
            mode_gate=config.is_personal_mode,
            config=config.scheduler,
            timezone=config.timezone,
        )

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    # ── Lebenszyklus ─────────────────────────────────────────────

    async def start(self) -> bool:
        """Startet den Tick-Timer.

        Idempotent: ein zweiter Aufruf erzeugt keinen zweiten Timer.

        Returns:
            True wenn der Timer läuft.
        """
        if self._scheduler is not None:
            log.warning("scheduler_already_running")
            return True

        if not self._mode_gate():
            log.info("scheduler_not_started", reason="scheduling disabled for this instance")
            return False

        scheduler = AsyncIOScheduler(timezone=self._timezone)
        scheduler.add_job(
            self._run_tick,
            trigger=IntervalTrigger(
                seconds=self._config.tick_interval_seconds,
                timezone=self._timezone,
            ),
            id=TICK_JOB_ID,
            name="scheduler-tick",
            # Erster Scan sofort, nicht erst nach einem Intervall
            next_run_time=datetime.now(self._tz),
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self._config.misfire_grace_seconds,
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler

        log.info(
            "scheduler_started",
            tick_interval_seconds=self._config.tick_interval_seconds,
            timezone=self._timezone,
        )
        return True

    async def stop(self, *, wait: bool = False) -> None:
        """Stoppt den Timer. Ein laufender Scan wird nie abgebrochen.

        Args:
            wait: True = zusätzlich warten, bis laufende Scans fertig sind
                (z.B. bevor das Datenbank-Backend geschlossen wird).
        """
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            log.info("scheduler_stopped", inflight_scans=len(self._inflight))

        if wait and self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    # ── Tick ─────────────────────────────────────────────────────

    async def tick(self, now: datetime | None = None) -> list[JobRunUpdate]:
        """Ein Scan-Zyklus. Fehler im Store-Pfad werden weitergereicht.

        Args:
            now: Tick-Zeitpunkt. ``None`` = Uhr der Engine.

        Returns:
            Die geschriebenen Updates (leer wenn übersprungen).
        """
        if self._tick_running:
            self._skipped_ticks += 1
            log.warning("tick_skipped", reason="previous tick still running")
            return []

        self._tick_running = True
        self._total_ticks += 1
        try:
            with tick_context():
                return await self.executor.run_due(now or self._clock())
        finally:
            self._tick_running = False

    async def _run_tick(self) -> None:
        """Timer-Callback: startet den Scan und wartet nicht darauf."""
        scan = asyncio.create_task(self._guarded_tick(), name="mypa-scan")
        self._inflight.add(scan)
        scan.add_done_callback(self._inflight.discard)

    async def _guarded_tick(self) -> None:
        """Nichts hiervon darf den Prozess beenden."""
        try:
            await self.tick()
        except MyPAError as exc:
            self._failed_ticks += 1
            log.exception("tick_error", **exc.to_log_context())
        except Exception:
            self._failed_ticks += 1
            log.exception("tick_error")

    # ── Öffentliche API ──────────────────────────────────────────

    async def execute_job(self, job: ScheduledJob) -> JobRunUpdate:
        """Führt einen Job sofort aus (unabhängig vom Schedule).

        Für manuelle "Jetzt ausführen"-Aktionen der Job-Verwaltung.
        """
        return await self.executor.execute_job(job, self._clock())

    def compute_next_run(self, expression: str, now: datetime | None = None) -> datetime:
        """Vorschau des nächsten Laufs, z.B. beim Anlegen eines Jobs."""
        return _compute_next_run(
            expression,
            now or self._clock(),
            max_iterations=self._config.max_search_minutes,
        )

    def get_next_tick_time(self) -> datetime | None:
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(TICK_JOB_ID)
        return job.next_run_time if job is not None else None

    def stats(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "total_ticks": self._total_ticks,
            "skipped_ticks": self._skipped_ticks,
            "failed_ticks": self._failed_ticks,
            "tick_interval_seconds": self._config.tick_interval_seconds,
            **self.executor.registry.stats(),
        }
