"""MyPA · Fehlerhierarchie des Schedulers.

Jede Ausnahme trägt einen maschinenlesbaren ``error_code`` und ein
optionales ``details``-Dict. Unterklassen setzen nur ``default_code``.

Usage::

    from mypa.core.errors import CronParseError, JobStoreError

    raise CronParseError("Expected 5 fields", details={"expression": "0 7 *"})
    raise JobStoreError("Update failed", error_code="STORE_UPDATE_FAILED")

Wer wirft was:
    CronParseError           cron.parse_cron_fields, Job-Verwaltung
    CronEvaluationExhausted  cron.find_next_match
    ActionHandlerError       ActionRegistry.register
    JobStoreError            ScheduledJobStore (Tick-Pfad)
    ConfigError              config.load_config
"""

from __future__ import annotations

from typing import Any


class MyPAError(Exception):
    """Basis aller MyPA-Fehler."""

    default_code = "MYPA_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code or self.default_code
        self.details = details or {}

    def to_log_context(self) -> dict[str, Any]:
        """Felder für strukturierte Log-Events."""
        return {"error_code": self.error_code, **self.details}


class ConfigError(MyPAError):
    """config.yaml oder MYPA_* Variablen ergeben keine gültige Konfiguration."""

    default_code = "CONFIG_ERROR"


class SchedulerError(MyPAError):
    """Oberklasse für Fehler aus Cron-Evaluator, Registry und Engine."""

    default_code = "SCHEDULER_ERROR"


class CronParseError(SchedulerError):
    default_code = "CRON_PARSE_ERROR"


class CronEvaluationExhausted(SchedulerError):
    """Kein passender Zeitpunkt innerhalb der Suchgrenze."""

    default_code = "CRON_EVALUATION_EXHAUSTED"


class ActionHandlerError(SchedulerError):
    default_code = "ACTION_HANDLER_ERROR"


class JobStoreError(MyPAError):
    """Lesen oder Schreiben von scheduled_jobs fehlgeschlagen. Beendet den Tick."""

    default_code = "JOB_STORE_ERROR"
