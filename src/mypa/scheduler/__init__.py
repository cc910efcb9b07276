"""mypa scheduler -- Zeitgesteuerte Jobs pro Nutzer.

Cron-Evaluator, Job-Store, Action-Handler und der Tick-Treiber.
"""

from mypa.scheduler.actions import ActionHandler, ActionRegistry, create_default_registry
from mypa.scheduler.cron import compute_next_run
from mypa.scheduler.engine import SchedulerEngine
from mypa.scheduler.executor import JobExecutor
from mypa.scheduler.jobs import DueJobSelector, JobStore, ScheduledJobStore

__all__ = [
    "ActionHandler",
    "ActionRegistry",
    "DueJobSelector",
    "JobExecutor",
    "JobStore",
    "ScheduledJobStore",
    "SchedulerEngine",
    "compute_next_run",
    "create_default_registry",
]
