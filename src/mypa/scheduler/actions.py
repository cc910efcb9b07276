"""Action-Handler: Was ein fälliger Job tatsächlich tut.

Jede Aktion (``reminder``, ``cross-team-summary``, ...) ist ein Objekt mit
einer async ``run(job)``-Methode. Die Zuordnung Aktion → Handler liegt in
einer expliziten :class:`ActionRegistry`, die beim Start befüllt wird.
Ein Handler darf werfen; der Executor fängt den Fehler pro Job ab.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from mypa.core.errors import ActionHandlerError
from mypa.models import JobAction
from mypa.utils.logging import get_logger

if TYPE_CHECKING:
    from mypa.models import ScheduledJob

log = get_logger(__name__)


@runtime_checkable
class ActionHandler(Protocol):
    """Port: führt die Aktion eines Jobs aus."""

    async def run(self, job: ScheduledJob) -> None: ...


# ============================================================================
# Eingebaute Handler
# ============================================================================


class ReminderHandler:
    """Erinnerung auslösen.

    Text aus ``payload["message"]``, sonst der Job-Name.
    """

    @staticmethod
    def resolve_message(job: ScheduledJob) -> str:
        message = job.payload.get("message")
        return message if isinstance(message, str) else job.name

    async def run(self, job: ScheduledJob) -> None:
        log.info("reminder_triggered", job_id=job.id, reminder_message=self.resolve_message(job))


class CrossTeamSummaryHandler:
    """Team-übergreifende Zusammenfassung anstoßen."""

    async def run(self, job: ScheduledJob) -> None:
        log.info("cross_team_summary_triggered", job_id=job.id, scope=job.scope)


class CheckInboxHandler:
    """Alle Team-Hubs auf neue Nachrichten prüfen."""

    async def run(self, job: ScheduledJob) -> None:
        log.info("inbox_check_triggered", job_id=job.id)


class CustomHandler:
    async def run(self, job: ScheduledJob) -> None:
        log.info("custom_job_triggered", job_id=job.id, payload=job.payload)


# ============================================================================
# Registry
# ============================================================================


class ActionRegistry:
    """Explizite Zuordnung Aktionsname → Handler.

    Usage:
        registry = ActionRegistry()
        registry.register("reminder", ReminderHandler())
        handler = registry.get(job.action)  # None bei unbekannter Aktion
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ActionHandler] = {}

    def register(self, action: str, handler: ActionHandler) -> None:
        """Registriert (oder ersetzt) den Handler für eine Aktion."""
        if not isinstance(handler, ActionHandler):
            msg = f"Handler für '{action}' hat keine run()-Methode"
            raise ActionHandlerError(msg, details={"action": str(action)})
        if self.has_handler(str(action)):
            log.info("action_handler_replaced", action=str(action))
        self._handlers[str(action)] = handler

    def get(self, action: str) -> ActionHandler | None:
        return self._handlers.get(action)

    def has_handler(self, action: str) -> bool:
        return action in self._handlers

    @property
    def actions(self) -> list[str]:
        return sorted(self._handlers)

    def stats(self) -> dict[str, Any]:
        return {
            "registered_actions": self.actions,
            "registered_handlers": len(self._handlers),
        }


def create_default_registry() -> ActionRegistry:
    """Registry mit den vier eingebauten Aktionen."""
    registry = ActionRegistry()
    registry.register(JobAction.REMINDER, ReminderHandler())
    registry.register(JobAction.CROSS_TEAM_SUMMARY, CrossTeamSummaryHandler())
    registry.register(JobAction.CHECK_INBOX, CheckInboxHandler())
    registry.register(JobAction.CUSTOM, CustomHandler())
    return registry
