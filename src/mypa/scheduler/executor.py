"""Job-Executor: Fällige Jobs ausführen und ihren Schedule fortschreiben.

Pro Job, streng sequentiell innerhalb eines Ticks:
  1. Handler über die ActionRegistry auflösen und ausführen
  2. Handler-Fehler abfangen (nie an den Tick weiterreichen)
  3. ``next_run_at`` immer neu berechnen, auch nach Fehlern
  4. Genau ein Update mit den Ergebnisfeldern schreiben

Fehler beim Lesen oder Schreiben des Stores werden nicht pro Job
abgefangen; sie beenden den Tick (siehe SchedulerEngine).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from mypa.models import JobRunUpdate, RunResult
from mypa.scheduler.actions import ActionRegistry, create_default_registry
from mypa.scheduler.cron import MAX_SEARCH_MINUTES, compute_next_run
from mypa.scheduler.jobs import DueJobSelector
from mypa.utils.logging import get_logger

if TYPE_CHECKING:
    from mypa.models import ScheduledJob
    from mypa.scheduler.jobs import JobStore

log = get_logger(__name__)


class JobExecutor:
    """Führt ScheduledJobs aus und persistiert das Ergebnis.

    Attributes:
        registry: Aktionsname → Handler.
    """

    def __init__(
        self,
        store: JobStore,
        registry: ActionRegistry | None = None,
        *,
        max_search_minutes: int = MAX_SEARCH_MINUTES,
    ) -> None:
        self._store = store
        self._selector = DueJobSelector(store)
        self.registry = registry if registry is not None else create_default_registry()
        self._max_search_minutes = max_search_minutes

    async def dispatch(self, job: ScheduledJob) -> None:
        """Ruft den Handler der Job-Aktion auf. Darf werfen.

        Unbekannte Aktionen werden geloggt und als No-Op behandelt.
        """
        handler = self.registry.get(job.action)
        if handler is None:
            log.warning("unknown_action", job_id=job.id, action=job.action)
            return
        await handler.run(job)

    async def execute_job(self, job: ScheduledJob, now: datetime | None = None) -> JobRunUpdate:
        """Führt einen Job aus und schreibt das Ergebnis zurück.

        Auch der Einstieg für manuelle "Jetzt ausführen"-Aktionen.

        Args:
            job: Der auszuführende Job.
            now: Tick-Zeitpunkt. ``None`` = aktuelle UTC-Zeit.

        Returns:
            Das geschriebene Update.

        Raises:
            JobStoreError: Wenn das Update nicht geschrieben werden konnte.
        """
        now = now or datetime.now(UTC)
        failure: Exception | None = None

        try:
            await self.dispatch(job)
        except Exception as exc:
            failure = exc

        error_message: str | None = None
        if failure is not None:
            error_message = str(failure) or type(failure).__name__

        update = JobRunUpdate(
            last_run_at=now,
            last_run_result=RunResult.SUCCESS if failure is None else RunResult.ERROR,
            last_run_error=error_message,
            next_run_at=compute_next_run(job.schedule, now, max_iterations=self._max_search_minutes),
            run_count=job.run_count + 1,
            updated_at=now,
        )
        await self._store.update_run(job.id, update)

        if failure is None:
            log.info("job_completed", job_id=job.id, action=job.action, next_run_at=update.next_run_at.isoformat())
        else:
            log.error(
                "job_failed",
                job_id=job.id,
                action=job.action,
                error=error_message,
                next_run_at=update.next_run_at.isoformat(),
                exc_info=failure,
            )
        return update

    async def run_due(self, now: datetime) -> list[JobRunUpdate]:
        """Ein Scan: alle fälligen Jobs nacheinander ausführen.

        Returns:
            Ein Update pro ausgeführtem Job, in Ausführungsreihenfolge.
        """
        due = await self._selector.select(now)
        if due:
            log.debug("due_jobs_selected", count=len(due))

        updates: list[JobRunUpdate] = []
        for job in due:
            updates.append(await self.execute_job(job, now))
        return updates
