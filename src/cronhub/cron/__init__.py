"""cronhub Cron-Modul: Cron-Auswertung, Job-Ausführung, Scheduler-Schleife und Job-Verwaltung."""

from cronhub.cron.engine import CronEngine
from cronhub.cron.executor import JobExecutor, build_request
from cronhub.cron.expression import describe_schedule, next_run, parse_cron, validate_schedule
from cronhub.cron.jobs import JobDefinition, JobDefinitionFile, JobService

__all__ = [
    "CronEngine",
    "JobDefinition",
    "JobDefinitionFile",
    "JobExecutor",
    "JobService",
    "build_request",
    "describe_schedule",
    "next_run",
    "parse_cron",
    "validate_schedule",
]
