"""MyPA · Scheduler Engine.

Polls the persisted scheduled jobs, runs the ones that are due and
advances each job along its cron schedule.
"""

__version__ = "0.4.0"
