"""cronhub · HTTP cron job scheduler.

Registers HTTP-triggered jobs on five-field cron schedules, executes them
under per-job deadlines and keeps execution and error history.
"""

__version__ = "0.4.0"
