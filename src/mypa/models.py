"""
MyPA · Central data models.

All Pydantic models used by the scheduler engine.

Design principles:
  - Immutable (frozen) where sensible (run outcomes)
  - Mutable where necessary (ScheduledJob as read from the store)
  - JSON-serializable (for logging and persistence)
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

# ============================================================================
# Hilfsfunktionen
# ============================================================================


def _utc_now() -> datetime:
    """Aktuelle Zeit in UTC. Einheitlich im gesamten System."""
    return datetime.now(UTC)


def _new_id() -> str:
    """Neue UUID als String. Für alle IDs im System."""
    return uuid.uuid4().hex


# ============================================================================
# Enums
# ============================================================================


class JobAction(StrEnum):
    """Bekannte Aktionen eines ScheduledJob.

    Der Store akzeptiert beliebige Strings; unbekannte Werte werden
    vom Executor geloggt und übersprungen.
    """

    REMINDER = "reminder"
    CROSS_TEAM_SUMMARY = "cross-team-summary"
    CHECK_INBOX = "check-inbox"
    CUSTOM = "custom"


class RunResult(StrEnum):
    """Ergebnis des letzten Ausführungsversuchs."""

    SUCCESS = "success"
    ERROR = "error"


# ============================================================================
# Scheduled Jobs
# ============================================================================


class ScheduledJob(BaseModel):
    """Ein persistierter, zeitgesteuerter Job.

    ``action`` ist ein freier String (siehe JobAction für die bekannten Werte).
    """

    id: str = Field(default_factory=_new_id)
    name: str
    action: str
    schedule: str  # Cron-Expression, 5 Felder
    payload: dict[str, Any] = Field(default_factory=dict)
    scope: str = "personal"  # "personal" oder Team-ID
    user_id: str | None = None
    enabled: bool = True

    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_run_result: RunResult | None = None
    last_run_error: str | None = None
    run_count: int = Field(default=0, ge=0)

    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class JobRunUpdate(BaseModel, frozen=True):
    """Die Felder, die nach einem Ausführungsversuch zurückgeschrieben werden.

    Genau ein Update pro Versuch, unabhängig vom Ergebnis des Handlers.
    """

    last_run_at: datetime
    last_run_result: RunResult
    last_run_error: str | None = None
    next_run_at: datetime
    run_count: int = Field(ge=1)
    updated_at: datetime

    @property
    def success(self) -> bool:
        return self.last_run_result == RunResult.SUCCESS
